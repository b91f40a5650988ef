"""SCP protocol client running over an SSH exec channel

paramiko only ships SFTP, so the classic rcp/scp message exchange is spoken
here directly against a remote "scp -t" (sink) or "scp -f" (source).
"""

import logging
import shlex
import socket
from typing import Optional

import paramiko

from .base import (
    SSH_FATAL,
    SSH_REQUEST_DENIED,
    ScpDirection,
    ScpHandle,
    ScpRequest,
    ScpRequestType,
    SessionError,
)

logger = logging.getLogger(__name__)

_IDLE = "idle"
_WRITING = "writing"
_REQUESTED = "requested"
_READING = "reading"


class ScpChannel(ScpHandle):
    """One SCP copy over a paramiko channel"""

    def __init__(self, channel, direction: ScpDirection, path: str, recursive: bool = False,
                 timeout: Optional[float] = None):
        """Initialize SCP copy

        Args:
            channel: Freshly opened paramiko session channel
            direction: READ pulls from the remote side, WRITE pushes to it
            path: Remote file or directory
            recursive: Pass -r to the remote scp
            timeout: Seconds any single channel operation may block
        """
        self.channel = channel
        self.direction = direction
        self.path = path
        self.recursive = recursive
        self.state = _IDLE
        self.pending: Optional[ScpRequest] = None
        self.filelen = 0
        self.processed = 0

        if timeout is not None:
            self.channel.settimeout(timeout)

    def init(self) -> None:
        """Start the remote scp and perform the initial handshake"""
        flags = "-r " if self.recursive else ""
        mode = "-t" if self.direction == ScpDirection.WRITE else "-f"
        command = f"scp {flags}{mode} {shlex.quote(self.path)}"

        logger.debug(f"Starting remote {command}")
        try:
            self.channel.exec_command(command)
        except paramiko.SSHException as e:
            raise SessionError(f"Failed to start remote scp: {e}")

        if self.direction == ScpDirection.WRITE:
            self._read_ack()
        else:
            self._send(b"\0")

    def _send(self, data: bytes) -> None:
        try:
            self.channel.sendall(data)
        except (paramiko.SSHException, socket.timeout, OSError) as e:
            raise SessionError(f"scp write failed: {e}")

    def _recv(self, size: int) -> bytes:
        try:
            return self.channel.recv(size)
        except (paramiko.SSHException, socket.timeout, OSError) as e:
            raise SessionError(f"scp read failed: {e}")

    def _recv_exact(self, size: int) -> bytes:
        chunks = []
        remaining = size
        while remaining > 0:
            data = self._recv(remaining)
            if not data:
                raise SessionError("scp connection closed during transfer")
            chunks.append(data)
            remaining -= len(data)
        return b"".join(chunks)

    def _read_line(self) -> Optional[str]:
        """Read one protocol line, None if the channel is at EOF"""
        line = bytearray()
        while True:
            c = self._recv(1)
            if not c:
                if not line:
                    return None
                raise SessionError("scp connection closed in the middle of a message")
            if c == b"\n":
                return line.decode("utf-8", errors="replace")
            line.extend(c)

    def _read_ack(self) -> None:
        c = self._recv(1)
        if not c:
            raise SessionError("scp connection closed while waiting for acknowledgement")
        if c == b"\0":
            return

        message = self._read_line() or ""
        code = c[0] if c[0] in (SSH_REQUEST_DENIED, SSH_FATAL) else SSH_FATAL
        raise SessionError(f"remote scp: {message}", code=code)

    def push_file(self, name: str, size: int, mode: int) -> None:
        if self.direction != ScpDirection.WRITE or self.state != _IDLE:
            raise SessionError("scp handle not ready to push a file", code=SSH_REQUEST_DENIED)

        self._send(f"C{mode & 0o7777:04o} {size} {name}\n".encode())
        self._read_ack()

        self.filelen = size
        self.processed = 0
        self.state = _WRITING
        if size == 0:
            self._finish_write()

    def write(self, data: bytes) -> None:
        if self.state != _WRITING:
            raise SessionError("scp handle not ready for writing", code=SSH_REQUEST_DENIED)

        data = data[:self.filelen - self.processed]
        self._send(data)
        self.processed += len(data)
        if self.processed == self.filelen:
            self._finish_write()

    def _finish_write(self) -> None:
        self._send(b"\0")
        self._read_ack()
        self.state = _IDLE

    def pull_request(self) -> ScpRequest:
        if self.direction != ScpDirection.READ:
            raise SessionError("scp handle not opened for reading", code=SSH_REQUEST_DENIED)

        while True:
            line = self._read_line()
            if line is None:
                return ScpRequest(ScpRequestType.EOF)

            code, body = line[:1], line[1:]
            if code in ("C", "D"):
                try:
                    mode, size, name = body.split(" ", 2)
                    request = ScpRequest(
                        ScpRequestType.NEWFILE if code == "C" else ScpRequestType.NEWDIR,
                        size=int(size),
                        mode=int(mode, 8),
                        name=name,
                    )
                except ValueError:
                    raise SessionError(f"malformed scp request: {line!r}")
                self.pending = request
                self.state = _REQUESTED
                return request
            if code == "E":
                self._send(b"\0")
                return ScpRequest(ScpRequestType.ENDDIR)
            if code == "T":
                # Timestamps are acknowledged and otherwise ignored
                self._send(b"\0")
                continue
            if code == "\x01":
                return ScpRequest(ScpRequestType.WARNING, message=body)
            if code == "\x02":
                raise SessionError(f"remote scp: {body}", code=SSH_FATAL)

            raise SessionError(f"unexpected scp message: {line!r}")

    def accept_request(self) -> None:
        if self.state != _REQUESTED or self.pending is None:
            raise SessionError("no scp request to accept", code=SSH_REQUEST_DENIED)

        self._send(b"\0")
        if self.pending.kind == ScpRequestType.NEWFILE:
            self.filelen = self.pending.size
            self.processed = 0
            self.state = _READING
        else:
            self.state = _IDLE
        self.pending = None

    def read(self, size: int) -> bytes:
        if self.state != _READING:
            raise SessionError("scp handle not ready for reading", code=SSH_REQUEST_DENIED)

        data = self._recv_exact(min(size, self.filelen - self.processed))
        self.processed += len(data)
        if self.processed == self.filelen:
            # Source terminates every file with a status byte
            self._read_ack()
            self._send(b"\0")
            self.state = _IDLE
        return data

    def close(self) -> None:
        try:
            self.channel.close()
        except Exception as e:
            logger.debug(f"Error closing scp channel: {e}")
