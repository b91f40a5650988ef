"""Result codes shared by every sutlink component"""

import sys
from enum import IntEnum
from typing import Optional


class ErrorCode(IntEnum):
    """Closed set of result codes; 0 means success"""

    PARAMETER_ERROR = -1
    OPEN_SESSION_ERROR = -2
    SEND_COMMAND_ERROR = -3
    FORWARD_INPUT_ERROR = -4
    RECEIVE_RESULTS_ERROR = -5
    LOCAL_FILE_ERROR = -6
    SEND_FILE_ERROR = -7
    REMOTE_FILE_ERROR = -8
    RECEIVE_FILE_ERROR = -9
    INTERRUPT_COMMAND_ERROR = -10
    INVALID_TARGET_SPEC = -11
    UNKNOWN_PLUGIN = -12
    INCOMPATIBLE_PLUGIN = -13
    NOT_SUPPORTED = -14
    COMMAND_TIMEOUT_ERROR = -15


_MESSAGES = {
    ErrorCode.PARAMETER_ERROR: "Invalid command parameter",
    ErrorCode.OPEN_SESSION_ERROR: "Error opening the communication with the system under test",
    ErrorCode.SEND_COMMAND_ERROR: "Error sending command to the system under test",
    ErrorCode.FORWARD_INPUT_ERROR: "Error forwarding keyboard input",
    ErrorCode.RECEIVE_RESULTS_ERROR: "Error receiving the results of action",
    ErrorCode.LOCAL_FILE_ERROR: "Local error while transferring file",
    ErrorCode.SEND_FILE_ERROR: "Error sending file to the system under test",
    ErrorCode.REMOTE_FILE_ERROR: "Remote error while transferring file",
    ErrorCode.RECEIVE_FILE_ERROR: "Error receiving file from the system under test",
    ErrorCode.INTERRUPT_COMMAND_ERROR: "Failed to interrupt command",
    ErrorCode.INVALID_TARGET_SPEC: "Invalid target spec",
    ErrorCode.UNKNOWN_PLUGIN: "Unknown plugin",
    ErrorCode.INCOMPATIBLE_PLUGIN: "Incompatible plugin",
    ErrorCode.NOT_SUPPORTED: "Operation not supported by the plugin",
    ErrorCode.COMMAND_TIMEOUT_ERROR: "Remote command took too long to execute",
}


def strerror(rc: int) -> str:
    """Convert a result code to its fixed message

    Args:
        rc: Result code

    Returns:
        Human readable description, or "Unknown error"
    """
    try:
        return _MESSAGES[ErrorCode(rc)]
    except ValueError:
        return "Unknown error"


def perror(msg: str, rc: int) -> None:
    """Print "<msg>: <description>." to stderr"""
    sys.stderr.write(f"{msg}: {strerror(rc)}.\n")
    sys.stderr.flush()


class SutlinkError(Exception):
    """Raised where an API has no result code to return"""

    def __init__(self, code: int, message: Optional[str] = None):
        self.code = code
        super().__init__(message or strerror(code))
