"""Chunked file copies over SCP"""

import logging
import posixpath
from typing import Optional

from sutlink.core.command import FileTransfer, Status
from sutlink.core.errors import ErrorCode
from sutlink.core.iostream import BufferStream, IOStream
from sutlink.engine.session import open_session
from sutlink.engine.transaction import BUFFER_SIZE
from sutlink.transport.base import (
    SSH_REQUEST_DENIED,
    RemoteSession,
    ScpDirection,
    ScpRequestType,
    SessionError,
)

logger = logging.getLogger(__name__)


def check_remote_dir(session: RemoteSession, remote_dirname: str) -> bool:
    """Check that a remote directory exists

    Pushing "foo" into a non-existent directory "/bar" makes some scp
    servers create a regular file "/bar" holding the content, so the
    directory is checked with a recursive read first.
    """
    try:
        scp = session.scp_open(ScpDirection.READ, remote_dirname, recursive=True)
    except SessionError as e:
        logger.debug(f"Cannot check remote directory {remote_dirname}: {e}")
        return False

    try:
        return scp.pull_request().kind == ScpRequestType.NEWDIR
    except SessionError as e:
        logger.debug(f"Remote directory check of {remote_dirname} failed: {e}")
        return False
    finally:
        scp.close()


class Transfer:
    """One file copy on its own session"""

    def __init__(self, target):
        """Initialize transfer

        Args:
            target: SSH target providing session provider, template and sink
        """
        self.target = target
        self.session: Optional[RemoteSession] = None
        self.scp = None
        self.local_stream: Optional[IOStream] = None
        self.remaining = 0

    def _progress(self, c: str) -> None:
        self.target.putc(False, c)

    def open_session(self, username: Optional[str]) -> int:
        self.session = open_session(self.target.provider, self.target.template, username)
        if self.session is None:
            return ErrorCode.OPEN_SESSION_ERROR
        return 0

    def init_copy(self, direction: ScpDirection, remote_name: str) -> int:
        try:
            self.scp = self.session.scp_open(direction, remote_name)
        except SessionError as e:
            logger.error(f"Cannot start scp for {remote_name}: {e}")
            return ErrorCode.OPEN_SESSION_ERROR
        return 0

    def send_file(self, status: Status) -> int:
        """Send the local stream in chunks, one progress dot per chunk"""
        while self.remaining > 0:
            size = min(self.remaining, BUFFER_SIZE)

            try:
                data = self.local_stream.read(size)
            except OSError as e:
                logger.error(f"Cannot read local file: {e}")
                data = None
            if data is None or len(data) != size:
                self._progress("\n")
                return ErrorCode.LOCAL_FILE_ERROR

            try:
                self.scp.write(data)
            except SessionError as e:
                logger.error(f"Cannot send file data: {e}")
                status.major = e.code
                self._progress("\n")
                return ErrorCode.SEND_FILE_ERROR

            self._progress(".")
            self.remaining -= size

        self._progress("\n")
        return 0

    def receive_file(self, status: Status) -> int:
        """Receive the remote file in chunks, one progress dot per chunk"""
        while self.remaining > 0:
            size = min(self.remaining, BUFFER_SIZE)

            try:
                data = self.scp.read(size)
            except SessionError as e:
                logger.error(f"Cannot receive file data: {e}")
                status.major = e.code
                self._progress("\n")
                return ErrorCode.RECEIVE_FILE_ERROR

            try:
                written = self.local_stream.write(data)
            except OSError as e:
                logger.error(f"Cannot write local file: {e}")
                written = -1
            if written != size:
                self._progress("\n")
                return ErrorCode.LOCAL_FILE_ERROR

            self._progress(".")
            self.remaining -= size

        self._progress("\n")
        return 0

    def inject(self, stream: IOStream, remote_dirname: str, remote_basename: str,
               mode: int, status: Status) -> int:
        filesize = stream.filesize()

        if not check_remote_dir(self.session, remote_dirname):
            logger.error(f"Remote directory {remote_dirname} does not exist")
            return ErrorCode.SEND_FILE_ERROR

        rc = self.init_copy(ScpDirection.WRITE, remote_dirname)
        if rc < 0:
            return rc

        # Tell the remote host about the file size
        try:
            self.scp.push_file(remote_basename, filesize, mode)
        except SessionError as e:
            logger.error(f"Remote side refused {remote_basename}: {e}")
            status.major = e.code
            return ErrorCode.SEND_FILE_ERROR

        self.local_stream = stream
        self.remaining = filesize
        return self.send_file(status)

    def extract(self, remote_name: str, stream: IOStream, status: Status) -> int:
        rc = self.init_copy(ScpDirection.READ, remote_name)
        if rc < 0:
            return rc

        try:
            request = self.scp.pull_request()
            if request.kind != ScpRequestType.NEWFILE:
                logger.error(f"Remote side did not offer a file for {remote_name}: {request}")
                status.major = SSH_REQUEST_DENIED
                return ErrorCode.RECEIVE_FILE_ERROR

            if request.size == 0:
                return 0

            self.scp.accept_request()
        except SessionError as e:
            logger.error(f"Cannot start download of {remote_name}: {e}")
            status.major = e.code
            return ErrorCode.RECEIVE_FILE_ERROR

        self.local_stream = stream
        self.remaining = request.size

        rc = self.receive_file(status)
        if rc < 0:
            return rc

        # Check for proper termination
        try:
            request = self.scp.pull_request()
        except SessionError as e:
            status.major = e.code
            return ErrorCode.RECEIVE_FILE_ERROR
        if request.kind != ScpRequestType.EOF:
            logger.error(f"Unexpected trailing scp request for {remote_name}: {request}")
            status.major = SSH_REQUEST_DENIED
            return ErrorCode.RECEIVE_FILE_ERROR

        return 0

    def close(self) -> None:
        """Destroy all state and disconnect from the remote host"""
        if self.scp is not None:
            self.scp.close()
            self.scp = None
        if self.session is not None:
            self.session.disconnect()
            self.session = None


def inject_file(target, xfer: FileTransfer, status: Status) -> int:
    """Copy xfer.local_stream to xfer.remote_name on the target"""
    transfer = Transfer(target)
    try:
        rc = transfer.open_session(xfer.user)
        if rc < 0:
            return rc

        remote_dirname = posixpath.dirname(xfer.remote_name) or "."
        remote_basename = posixpath.basename(xfer.remote_name)

        # SCP needs the size up front: a pipe or similar is buffered whole
        stream = xfer.local_stream
        if stream.filesize() is None:
            try:
                stream = BufferStream(stream.read_all())
            except OSError as e:
                logger.error(f"Cannot read local stream: {e}")
                return ErrorCode.LOCAL_FILE_ERROR

        return transfer.inject(stream, remote_dirname, remote_basename, xfer.remote_mode, status)
    finally:
        transfer.close()


def extract_file(target, xfer: FileTransfer, status: Status) -> int:
    """Copy xfer.remote_name on the target to xfer.local_stream"""
    transfer = Transfer(target)
    try:
        rc = transfer.open_session(xfer.user)
        if rc < 0:
            return rc
        return transfer.extract(xfer.remote_name, xfer.local_stream, status)
    finally:
        transfer.close()
