"""Abstract remote session provider"""

import select
from abc import ABC, abstractmethod
from enum import Enum
from typing import Callable, List, Optional, Sequence

STDOUT = 0
STDERR = 1

# Error codes carried by SessionError, recorded as a remote status
SSH_NO_ERROR = 0
SSH_REQUEST_DENIED = 1
SSH_FATAL = 2

# Exit status reported when the remote side sent none (e.g. death by signal)
EXIT_STATUS_ERROR = -1


class SessionError(Exception):
    """Failure reported by a session provider"""

    def __init__(self, message: str, code: int = SSH_FATAL):
        super().__init__(message)
        self.code = code


class SessionTimeout(SessionError):
    """No answer from the remote side within the allotted time"""


class SessionTemplate:
    """Connection options shared by all sessions opened for one target"""

    def __init__(self, host: str, port: int = 22, user: Optional[str] = None,
                 key_filenames: Optional[List[str]] = None, allow_agent: bool = True,
                 look_for_keys: bool = True, connect_timeout: float = 10):
        """Initialize session template

        Args:
            host: Hostname or IP address (can be SSH config alias)
            port: SSH port (default: 22)
            user: Username for authentication
            key_filenames: Identity files tried for public key authentication
            allow_agent: Try keys offered by the SSH agent
            look_for_keys: Try the default identity files in ~/.ssh/
            connect_timeout: Seconds allowed for TCP connect and handshake
        """
        self.host = host
        self.port = port
        self.user = user
        self.key_filenames = list(key_filenames or [])
        self.allow_agent = allow_agent
        self.look_for_keys = look_for_keys
        self.connect_timeout = connect_timeout

    def copy(self, **overrides) -> "SessionTemplate":
        """Clone the template, replacing the given options"""
        options = dict(
            host=self.host,
            port=self.port,
            user=self.user,
            key_filenames=self.key_filenames,
            allow_agent=self.allow_agent,
            look_for_keys=self.look_for_keys,
            connect_timeout=self.connect_timeout,
        )
        options.update(overrides)
        return SessionTemplate(**options)

    def __repr__(self):
        return f"SessionTemplate({self.user}@{self.host}:{self.port})"


class ScpDirection(Enum):
    READ = "read"
    WRITE = "write"


class ScpRequestType(Enum):
    NEWFILE = "newfile"
    NEWDIR = "newdir"
    ENDDIR = "enddir"
    WARNING = "warning"
    EOF = "eof"


class ScpRequest:
    """Request pulled from a remote SCP source"""

    def __init__(self, kind: ScpRequestType, size: int = 0, mode: int = 0,
                 name: str = "", message: str = ""):
        self.kind = kind
        self.size = size
        self.mode = mode
        self.name = name
        self.message = message

    def __repr__(self):
        return f"ScpRequest({self.kind.value}, size={self.size}, name={self.name!r})"


class ScpHandle(ABC):
    """One SCP copy in either direction"""

    @abstractmethod
    def push_file(self, name: str, size: int, mode: int) -> None:
        """Announce a file of size bytes to a remote SCP sink"""
        pass

    @abstractmethod
    def pull_request(self) -> ScpRequest:
        """Read the next request from a remote SCP source"""
        pass

    @abstractmethod
    def accept_request(self) -> None:
        """Accept the pending file or directory request"""
        pass

    @abstractmethod
    def read(self, size: int) -> bytes:
        """Read up to size bytes of the accepted file"""
        pass

    @abstractmethod
    def write(self, data: bytes) -> None:
        """Write file content after push_file"""
        pass

    @abstractmethod
    def close(self) -> None:
        pass


class RemoteChannel(ABC):
    """Command channel on a remote session

    All methods raise SessionError on failure.
    """

    @abstractmethod
    def open_session(self) -> None:
        pass

    @abstractmethod
    def request_pty(self) -> None:
        pass

    @abstractmethod
    def request_exec(self, command: str) -> None:
        pass

    @abstractmethod
    def write(self, data: bytes) -> int:
        """Write to the command's input

        Returns:
            Number of bytes written
        """
        pass

    @abstractmethod
    def read_nonblocking(self, index: int, size: int) -> Optional[bytes]:
        """Read what is available on stream index (STDOUT or STDERR)

        Returns:
            Data (possibly empty), or None once the stream is at EOF
        """
        pass

    @abstractmethod
    def poll(self, index: int) -> bool:
        """Return True if a read on stream index would not block"""
        pass

    @abstractmethod
    def send_eof(self) -> None:
        """Signal that no more input will be sent"""
        pass

    @abstractmethod
    def get_exit_status(self, timeout: Optional[float] = None) -> int:
        """Exit code of the command, EXIT_STATUS_ERROR if none was reported

        Args:
            timeout: Seconds to wait for the status (None waits forever)

        Raises:
            SessionTimeout: if no status arrived in time
        """
        pass

    @abstractmethod
    def register_exit_signal_callback(self, handler: Callable[[str, bool, str, str], None]) -> None:
        """Install handler(signal_name, core_dumped, message, lang) for exit-signal events"""
        pass

    @abstractmethod
    def close(self) -> None:
        pass

    def fileno(self) -> Optional[int]:
        """Descriptor that becomes readable when the channel has events"""
        return None

    def wait(self, fds: Sequence[int], timeout: Optional[float]) -> List[int]:
        """Block until the channel or one of fds is readable, or timeout

        Args:
            fds: Extra local descriptors to watch
            timeout: Seconds to wait (None waits forever)

        Returns:
            Those of fds that are readable
        """
        watched = list(fds)
        channel_fd = self.fileno()
        if channel_fd is not None:
            watched.append(channel_fd)
        try:
            readable, _, _ = select.select(watched, [], [], timeout)
        except (OSError, ValueError) as e:
            raise SessionError(f"poll failed: {e}")
        return [fd for fd in readable if fd in fds]


class RemoteSession(ABC):
    """Connected (and eventually authenticated) remote session"""

    @abstractmethod
    def connect(self) -> None:
        pass

    @abstractmethod
    def authenticate(self, username: str) -> bool:
        """Authenticate with public keys only

        Returns:
            True if the server accepted one of the keys
        """
        pass

    @abstractmethod
    def new_channel(self) -> RemoteChannel:
        pass

    @abstractmethod
    def scp_open(self, direction: ScpDirection, path: str, recursive: bool = False) -> ScpHandle:
        pass

    @abstractmethod
    def disconnect(self) -> None:
        pass


class SessionProvider(ABC):
    """Factory of remote sessions"""

    @abstractmethod
    def open(self, template: SessionTemplate) -> RemoteSession:
        """Create an unconnected session configured from template"""
        pass
