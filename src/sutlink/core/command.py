"""Command, file transfer and status descriptors"""

from typing import Optional

from sutlink.core.iostream import IOStream

DEFAULT_TIMEOUT = 60
DEFAULT_FILE_MODE = 0o644


class Status:
    """Two-field completion status

    For SSH, major is 0 and minor holds the remote exit code, except when the
    remote process died from a signal (see the transaction engine).
    """

    def __init__(self, major: int = 0, minor: int = 0):
        self.major = major
        self.minor = minor

    def __eq__(self, other):
        if not isinstance(other, Status):
            return NotImplemented
        return (self.major, self.minor) == (other.major, other.minor)

    def __repr__(self):
        return f"Status(major={self.major}, minor={self.minor})"


class Command:
    """Command to run on the system under test"""

    def __init__(self, command: str, user: Optional[str] = None, timeout: float = DEFAULT_TIMEOUT,
                 request_tty: bool = False, stdin: Optional[IOStream] = None,
                 stdout: Optional[IOStream] = None, stderr: Optional[IOStream] = None):
        """Initialize command

        Args:
            command: Command line, passed verbatim to the remote side
            user: Remote user (None means root)
            timeout: Seconds after which the command is failed
            request_tty: Run the command inside a pseudo terminal
            stdin: Local stream forwarded to the command's standard input
            stdout: Local stream receiving the command's standard output
            stderr: Local stream receiving the command's standard error
        """
        self.command = command
        self.user = user
        self.timeout = timeout
        self.request_tty = request_tty
        self.stdin = stdin
        self.stdout = stdout
        self.stderr = stderr


class FileTransfer:
    """Descriptor of one file copy"""

    def __init__(self, local_stream: IOStream, remote_name: str, user: Optional[str] = None,
                 remote_mode: int = DEFAULT_FILE_MODE):
        """Initialize file transfer

        Args:
            local_stream: Source (inject) or destination (extract) stream
            remote_name: Path on the system under test
            user: Remote user (None means root)
            remote_mode: Permission bits of the file created remotely
        """
        self.local_stream = local_stream
        self.remote_name = remote_name
        self.user = user
        self.remote_mode = remote_mode
