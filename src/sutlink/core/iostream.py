"""Local stream endpoints bound to a command or a file transfer"""

import logging
import os
import select
import stat
from abc import ABC, abstractmethod
from typing import Optional

logger = logging.getLogger(__name__)

READ_CHUNK = 16384


class IOStream(ABC):
    """Abstract local byte stream"""

    @abstractmethod
    def read(self, size: int) -> Optional[bytes]:
        """Read up to size bytes

        Returns:
            Data read, b"" at end of stream, or None if a non-blocking
            stream has nothing available right now
        """
        pass

    @abstractmethod
    def write(self, data: bytes) -> int:
        """Write data

        Returns:
            Number of bytes accepted
        """
        pass

    @abstractmethod
    def eof(self) -> bool:
        """Return True once the read side reached end of stream"""
        pass

    def fileno(self) -> Optional[int]:
        """Pollable descriptor, or None for memory backed streams"""
        return None

    def set_blocking(self, blocking: bool) -> Optional[bool]:
        """Switch blocking mode

        Returns:
            Previous mode, or None if the stream has no such notion
        """
        return None

    def filesize(self) -> Optional[int]:
        """Size of the remaining content, or None if it cannot be known up front"""
        return None

    def read_all(self) -> bytes:
        chunks = []
        while True:
            data = self.read(READ_CHUNK)
            if not data:
                if data is None and not self.eof():
                    continue
                break
            chunks.append(data)
        return b"".join(chunks)

    def close(self) -> None:
        pass


class FdStream(IOStream):
    """Stream backed by an OS file descriptor (file, pipe or tty)"""

    def __init__(self, fd: int, close_fd: bool = False):
        """Initialize descriptor stream

        Args:
            fd: Open file descriptor
            close_fd: Close the descriptor when the stream is closed
        """
        self.fd = fd
        self.close_fd = close_fd
        self._eof = False

    @classmethod
    def open(cls, path: str, write: bool = False, mode: int = 0o644) -> "FdStream":
        """Open a local file

        Args:
            path: Local path
            write: Open for writing (created and truncated) instead of reading
            mode: Permission bits for a newly created file
        """
        path = os.path.expanduser(path)
        if write:
            fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, mode)
        else:
            fd = os.open(path, os.O_RDONLY)
        return cls(fd, close_fd=True)

    def read(self, size: int) -> Optional[bytes]:
        try:
            data = os.read(self.fd, size)
        except BlockingIOError:
            return None
        if not data:
            self._eof = True
        return data

    def write(self, data: bytes) -> int:
        view = memoryview(data)
        written = 0
        while written < len(data):
            try:
                written += os.write(self.fd, view[written:])
            except BlockingIOError:
                # stdout may share a non-blocking file description with stdin
                select.select([], [self.fd], [])
        return written

    def eof(self) -> bool:
        return self._eof

    def fileno(self) -> Optional[int]:
        if self._eof:
            return None
        return self.fd

    def set_blocking(self, blocking: bool) -> Optional[bool]:
        try:
            was_blocking = os.get_blocking(self.fd)
            os.set_blocking(self.fd, blocking)
        except OSError as e:
            logger.debug(f"Cannot change blocking mode of fd {self.fd}: {e}")
            return None
        return was_blocking

    def filesize(self) -> Optional[int]:
        try:
            st = os.fstat(self.fd)
        except OSError:
            return None
        if not stat.S_ISREG(st.st_mode):
            return None
        try:
            offset = os.lseek(self.fd, 0, os.SEEK_CUR)
        except OSError:
            offset = 0
        return max(st.st_size - offset, 0)

    def close(self) -> None:
        if self.close_fd and self.fd >= 0:
            os.close(self.fd)
            self.fd = -1


class BufferStream(IOStream):
    """Memory backed stream

    Reads consume the buffer from the front; writes append to it, up to an
    optional bound past which bytes are silently dropped.
    """

    def __init__(self, data: bytes = b"", limit: Optional[int] = None):
        self.data = bytearray(data)
        self.limit = limit
        self.pos = 0

    def read(self, size: int) -> Optional[bytes]:
        chunk = bytes(self.data[self.pos:self.pos + size])
        self.pos += len(chunk)
        return chunk

    def write(self, data: bytes) -> int:
        if self.limit is not None:
            data = data[:max(self.limit - len(self.data), 0)]
        self.data.extend(data)
        return len(data)

    def eof(self) -> bool:
        return self.pos >= len(self.data)

    def filesize(self) -> Optional[int]:
        return len(self.data) - self.pos

    def getvalue(self) -> bytes:
        return bytes(self.data)
