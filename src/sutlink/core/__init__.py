"""Core types, plugin registry and target operations"""

from .errors import ErrorCode, SutlinkError, strerror, perror
from .command import Command, FileTransfer, Status
from .config import Config

__all__ = ["ErrorCode", "SutlinkError", "strerror", "perror", "Command", "FileTransfer", "Status", "Config"]
