"""Routing of progress and diagnostic output"""

import logging
import os
from enum import Enum
from typing import Optional

logger = logging.getLogger(__name__)


class OutputMode(Enum):
    """Where unsolicited output ends up"""

    NONE = "none"
    SCREEN = "screen"
    BUFFER = "buffer"
    BUFFER_SEPARATELY = "buffer_separately"


class BoundedBuffer:
    """Byte buffer with a fixed upper bound

    Bytes written past the bound are dropped; the cursor simply stops
    advancing.
    """

    def __init__(self, size: int):
        self.size = size
        self.data = bytearray()

    def write(self, data: bytes) -> int:
        room = self.size - len(self.data)
        if room <= 0:
            return 0
        accepted = data[:room]
        self.data.extend(accepted)
        return len(accepted)

    @property
    def full(self) -> bool:
        return len(self.data) >= self.size

    def getvalue(self) -> bytes:
        return bytes(self.data)


class OutputSink:
    """Byte level router for progress dots and diagnostics"""

    def __init__(self, mode: OutputMode = OutputMode.NONE, buffer_size: int = 0):
        """Initialize output sink

        Args:
            mode: Routing mode
            buffer_size: Bound of each buffer, required by the buffer modes
        """
        self.mode = mode
        self.outbuf: Optional[BoundedBuffer] = None
        self.errbuf: Optional[BoundedBuffer] = None

        if mode == OutputMode.BUFFER:
            if buffer_size > 0:
                self.outbuf = BoundedBuffer(buffer_size)
            else:
                logger.warning("No buffer size supplied for buffered output mode, falling back to none")
                self.mode = OutputMode.NONE
        elif mode == OutputMode.BUFFER_SEPARATELY:
            if buffer_size > 0:
                self.outbuf = BoundedBuffer(buffer_size)
                self.errbuf = BoundedBuffer(buffer_size)
            else:
                logger.warning("No buffer size supplied for separately buffered output mode, falling back to none")
                self.mode = OutputMode.NONE

    def putc(self, is_error: bool, c: int) -> int:
        """Route a single byte

        Args:
            is_error: Route to the stderr side instead of stdout
            c: Byte value

        Returns:
            Number of bytes accepted (0 or 1)
        """
        if self.mode == OutputMode.NONE:
            return 0

        if self.mode == OutputMode.SCREEN:
            return os.write(2 if is_error else 1, bytes((c,)))

        if is_error and self.mode == OutputMode.BUFFER_SEPARATELY:
            return self.errbuf.write(bytes((c,)))
        return self.outbuf.write(bytes((c,)))

    def write(self, is_error: bool, data: bytes) -> int:
        """Route a byte string one byte at a time

        Returns:
            Number of bytes accepted
        """
        count = 0
        for c in data:
            count += self.putc(is_error, c)
        return count

    @property
    def stdout_data(self) -> bytes:
        return self.outbuf.getvalue() if self.outbuf is not None else b""

    @property
    def stderr_data(self) -> bytes:
        if self.mode == OutputMode.BUFFER:
            return self.stdout_data
        return self.errbuf.getvalue() if self.errbuf is not None else b""
