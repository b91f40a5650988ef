"""SSH transport plugin

Sends commands and files to real machines or VMs over SSH. The target spec
following "ssh:" is "host", "host:port", "[ipv6-address]" or "[ipv6-address]:port".
"""

import logging
import posixpath
import re
from typing import Any, Dict, Optional, Tuple

from sutlink.core.command import Command, FileTransfer, Status
from sutlink.core.errors import ErrorCode
from sutlink.core.sink import OutputSink
from sutlink.engine import transfer
from sutlink.engine.multiplexer import Multiplexer
from sutlink.engine.transaction import Transaction
from sutlink.plugins.base import BaseTarget, Plugin
from sutlink.transport.base import SessionProvider, SessionTemplate
from sutlink.transport.ssh import ParamikoSessionProvider

logger = logging.getLogger(__name__)

DEFAULT_PORT = 22
MAX_PORT = 65535

_PORT_RE = re.compile(r"[0-9]+")


def parse_target_spec(arg: str) -> Optional[Tuple[str, int]]:
    """Split "host[:port]" into hostname and port

    Args:
        arg: Part of the target spec following "ssh:"

    Returns:
        Tuple of (hostname, port), or None if the port is malformed
    """
    if arg.startswith("[") and arg.endswith("]"):
        return arg[1:-1], DEFAULT_PORT

    if ":" not in arg:
        return arg, DEFAULT_PORT

    hostname, _, port_string = arg.rpartition(":")
    if not _PORT_RE.fullmatch(port_string):
        return None
    port = int(port_string)
    if port >= MAX_PORT:
        return None

    # The hostname may be an IPv6 address like [::1]
    if hostname.startswith("[") and hostname.endswith("]"):
        hostname = hostname[1:-1]
    if not hostname:
        return None

    return hostname, port


class SSHTarget(BaseTarget):
    """Target reached over SSH

    Every command and every file copy runs on its own session; only one
    command at a time is in the foreground and can be interrupted.
    """

    def __init__(self, hostname: str, port: int = DEFAULT_PORT,
                 provider: Optional[SessionProvider] = None, sink: Optional[OutputSink] = None):
        """Initialize SSH target

        Args:
            hostname: Hostname or IP address (can be SSH config alias)
            port: SSH port
            provider: Session provider (default: paramiko based)
            sink: Router for progress output
        """
        super().__init__(plugin, sink)
        self.template = SessionTemplate(hostname, port)
        self._provider = provider
        self.provider_options: Dict[str, Any] = {}
        self.foreground: Optional[Transaction] = None

    @property
    def provider(self) -> SessionProvider:
        if self._provider is None:
            self._provider = ParamikoSessionProvider(**self.provider_options)
        return self._provider

    def configure(self, options: Dict[str, Any]) -> None:
        """Apply SSH options from the configuration

        Args:
            options: Keys key_file (str or list), allow_agent, look_for_keys,
                connect_timeout, ssh_config, known_hosts, skip_host_verification
        """
        key_files = options.get("key_file")
        if key_files:
            if isinstance(key_files, str):
                key_files = [key_files]
            self.template.key_filenames = list(key_files)
        if "allow_agent" in options:
            self.template.allow_agent = bool(options["allow_agent"])
        if "look_for_keys" in options:
            self.template.look_for_keys = bool(options["look_for_keys"])
        if "connect_timeout" in options:
            self.template.connect_timeout = options["connect_timeout"]

        for key in ("ssh_config", "known_hosts", "skip_host_verification"):
            if key in options:
                self.provider_options[key] = options[key]
                # Rebuilt with the new options on next use
                self._provider = None

    def run_test(self, command: Command) -> Tuple[int, Status]:
        """Run a command and collect its status

        Returns:
            Tuple of (result_code, status)
        """
        status = Status()
        if not command.command:
            return ErrorCode.PARAMETER_ERROR, status

        return self._run_command(command, status), status

    def _run_command(self, command: Command, status: Status) -> int:
        trans = Transaction(self, command.timeout)
        self.foreground = trans
        try:
            rc = trans.open_session(command.user)
            if rc < 0:
                return rc

            rc = trans.execute_command(command, status)
            if rc < 0:
                return rc

            # Read stdout, stderr and the remote exit status
            if not Multiplexer(trans).run():
                return trans.exception
            return 0
        finally:
            trans.close()
            self.foreground = None

    def inject_file(self, xfer: FileTransfer) -> Tuple[int, Status]:
        """Copy a local stream to a file on the target

        Returns:
            Tuple of (result_code, status)
        """
        status = Status()
        if not posixpath.basename(xfer.remote_name):
            return ErrorCode.PARAMETER_ERROR, status

        rc = transfer.inject_file(self, xfer, status)
        if rc == 0 and (status.major != 0 or status.minor != 0):
            rc = ErrorCode.REMOTE_FILE_ERROR
        return rc, status

    def extract_file(self, xfer: FileTransfer) -> Tuple[int, Status]:
        """Copy a file from the target to a local stream

        Returns:
            Tuple of (result_code, status)
        """
        status = Status()
        if not xfer.remote_name:
            return ErrorCode.PARAMETER_ERROR, status

        rc = transfer.extract_file(self, xfer, status)
        if rc == 0 and (status.major != 0 or status.minor != 0):
            rc = ErrorCode.REMOTE_FILE_ERROR
        return rc, status

    def interrupt_command(self) -> int:
        """Send Ctrl-C to the foreground command

        Only commands running in a tty can be interrupted; the remote sshd
        does not act on signal requests.
        """
        trans = self.foreground
        if trans is None or trans.channel is None:
            return ErrorCode.OPEN_SESSION_ERROR

        if not trans.use_tty:
            logger.warning("Command not being run in tty, cannot interrupt it")
            trans.interrupted = True
            return ErrorCode.INTERRUPT_COMMAND_ERROR

        if trans.eof_sent:
            logger.warning("Cannot send Ctrl-C, channel already closed for writing")
            return ErrorCode.INTERRUPT_COMMAND_ERROR

        # The poll loop writes the Ctrl-C on its next pass
        trans.request_interrupt()
        return 0

    def end(self) -> None:
        """Release the target"""
        if self.foreground is not None:
            self.foreground.close()
            self.foreground = None
        logger.debug(f"Released SSH target {self.template.host}:{self.template.port}")


def init(arg: str) -> Optional[SSHTarget]:
    """Create an SSH target from the part of the spec following "ssh:"

    Returns:
        Target, or None if the spec is malformed
    """
    parsed = parse_target_spec(arg)
    if parsed is None:
        # No diagnostic at the API level, as with every other malformed input
        logger.debug(f"Invalid SSH target spec: {arg}")
        return None

    hostname, port = parsed
    return SSHTarget(hostname, port)


# Capability vector; exit_remote makes no sense with SSH
plugin = Plugin(
    "ssh",
    init=init,
    run_test=SSHTarget.run_test,
    inject_file=SSHTarget.inject_file,
    extract_file=SSHTarget.extract_file,
    interrupt_command=SSHTarget.interrupt_command,
    end=SSHTarget.end,
)
