"""Transport plugins for reaching the system under test"""

from .base import BaseTarget, Plugin

__all__ = ["BaseTarget", "Plugin"]
