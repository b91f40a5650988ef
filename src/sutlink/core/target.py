"""Generic operations dispatched through a target's plugin"""

import logging
from typing import Optional, Tuple

from sutlink.core.command import Command, FileTransfer, Status
from sutlink.core.errors import ErrorCode
from sutlink.core.iostream import BufferStream, FdStream
from sutlink.core.registry import PluginRegistry

logger = logging.getLogger(__name__)


def target_new(target_spec: str, registry: PluginRegistry):
    """Create a target from a "plugin:rest" spec

    Args:
        target_spec: Target specification string
        registry: Registry used to resolve the plugin

    Returns:
        Target handle

    Raises:
        SutlinkError: on malformed spec or plugin failure
    """
    return registry.create_target(target_spec)


def target_free(target) -> None:
    """Release a target"""
    end = target.plugin.end
    if end is not None:
        end(target)


def run_test(target, command: Command) -> Tuple[int, Status]:
    """Run a command on the target

    Returns:
        Tuple of (result_code, status)
    """
    if target.plugin.run_test is None:
        return ErrorCode.NOT_SUPPORTED, Status()
    return target.plugin.run_test(target, command)


def inject_file(target, xfer: FileTransfer) -> Tuple[int, Status]:
    """Copy a local stream to a file on the target"""
    if target.plugin.inject_file is None:
        return ErrorCode.NOT_SUPPORTED, Status()
    return target.plugin.inject_file(target, xfer)


def extract_file(target, xfer: FileTransfer) -> Tuple[int, Status]:
    """Copy a file from the target to a local stream"""
    if target.plugin.extract_file is None:
        return ErrorCode.NOT_SUPPORTED, Status()
    return target.plugin.extract_file(target, xfer)


def interrupt_command(target) -> int:
    """Interrupt the target's foreground command"""
    if target.plugin.interrupt_command is None:
        return ErrorCode.NOT_SUPPORTED
    return target.plugin.interrupt_command(target)


def exit_remote(target) -> int:
    """Ask the remote side to shut down its test server"""
    if target.plugin.exit_remote is None:
        return ErrorCode.NOT_SUPPORTED
    return target.plugin.exit_remote(target)


# Output mode wrappers

def run_and_print(target, command_line: str, user: Optional[str] = None,
                  timeout: float = 60) -> Tuple[int, Status]:
    """Run a command with its output going to the local screen"""
    command = Command(command_line, user=user, timeout=timeout,
                      stdin=FdStream(0), stdout=FdStream(1), stderr=FdStream(2))
    return run_test(target, command)


def run_and_drop(target, command_line: str, user: Optional[str] = None,
                 timeout: float = 60) -> Tuple[int, Status]:
    """Run a command and discard its output"""
    command = Command(command_line, user=user, timeout=timeout)
    return run_test(target, command)


def run_and_store_together(target, command_line: str, size: int, user: Optional[str] = None,
                           timeout: float = 60) -> Tuple[int, Status, bytes]:
    """Run a command, collecting stdout and stderr in one bounded buffer

    Returns:
        Tuple of (result_code, status, output)
    """
    buf = BufferStream(limit=size)
    command = Command(command_line, user=user, timeout=timeout, stdout=buf, stderr=buf)
    rc, status = run_test(target, command)
    return rc, status, buf.getvalue()


def run_and_store_separately(target, command_line: str, size: int, user: Optional[str] = None,
                             timeout: float = 60) -> Tuple[int, Status, bytes, bytes]:
    """Run a command, collecting stdout and stderr in two bounded buffers

    Returns:
        Tuple of (result_code, status, stdout_output, stderr_output)
    """
    outbuf = BufferStream(limit=size)
    errbuf = BufferStream(limit=size)
    command = Command(command_line, user=user, timeout=timeout, stdout=outbuf, stderr=errbuf)
    rc, status = run_test(target, command)
    return rc, status, outbuf.getvalue(), errbuf.getvalue()
