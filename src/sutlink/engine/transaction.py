"""State of one command executing on the system under test"""

import errno
import logging
import os
import time
from enum import Enum
from typing import Optional

from sutlink.core.command import Command, Status
from sutlink.core.errors import ErrorCode
from sutlink.core.iostream import IOStream
from sutlink.engine.session import open_session
from sutlink.engine.signals import ExitSignal
from sutlink.transport.base import EXIT_STATUS_ERROR, STDERR, STDOUT, SessionError, SessionTimeout

logger = logging.getLogger(__name__)

# Size in bytes of the work buffer for data exchanged with the remote host
BUFFER_SIZE = 16384

CTRL_C = b"\x03"
CTRL_D = b"\x04"


class TransactionState(Enum):
    INIT = "init"
    SESSION_OPENED = "session_opened"
    EXECUTING = "executing"
    POLLING = "polling"
    DONE = "done"
    FAILED = "failed"


class StdinState:
    """Local input forwarded to the remote command"""

    def __init__(self):
        self.stream: Optional[IOStream] = None
        self.fd: Optional[int] = None
        self.eof = False
        self.was_blocking: Optional[bool] = None
        self.ready = False


class OutputState:
    """One remote output stream and where its data goes"""

    def __init__(self, index: int, name: str):
        self.index = index
        self.name = name
        self.stream: Optional[IOStream] = None
        self.eof = False


class Transaction:
    """One command from session open to final status

    The first failure is recorded in exception and never overwritten.
    """

    def __init__(self, target, timeout: float):
        """Initialize transaction

        Args:
            target: SSH target providing the session provider and template
            timeout: Seconds from now after which the command is failed
        """
        self.target = target
        self.session = None
        self.channel = None
        self.exception: Optional[int] = None
        self.status_ret: Optional[Status] = None

        self.stdin = StdinState()
        self.stdout = OutputState(STDOUT, "stdout")
        self.stderr = OutputState(STDERR, "stderr")

        self.deadline = time.monotonic() + timeout

        self.eof_sent = False
        self.use_tty = False
        self.interrupted = False
        self.interrupt_requested = False
        # Write end of the poll loop's wakeup pipe, set while the loop runs
        self.wakeup_fd: Optional[int] = None
        self.exit_signal: Optional[ExitSignal] = None
        self.state = TransactionState.INIT

    def fail(self, code: int) -> bool:
        """Record a failure, keeping the first one

        Returns:
            Always False, so step functions can return it directly
        """
        if self.exception is None:
            self.exception = code
        else:
            logger.debug(f"Ignoring {ErrorCode(code).name} after {ErrorCode(self.exception).name}")
        self.state = TransactionState.FAILED
        return False

    def remaining(self) -> Optional[float]:
        """Seconds left until the deadline, None once it has passed"""
        now = time.monotonic()
        if self.deadline < now:
            return None
        return self.deadline - now

    def open_session(self, username: Optional[str]) -> int:
        self.session = open_session(self.target.provider, self.target.template, username)
        if self.session is None:
            self.fail(ErrorCode.OPEN_SESSION_ERROR)
            return ErrorCode.OPEN_SESSION_ERROR

        try:
            self.channel = self.session.new_channel()
            self.channel.open_session()
        except SessionError as e:
            logger.error(f"Cannot open channel to {self.target.template.host}: {e}")
            self.fail(ErrorCode.OPEN_SESSION_ERROR)
            return ErrorCode.OPEN_SESSION_ERROR

        self.state = TransactionState.SESSION_OPENED
        return 0

    def setup_stdio(self, stdin_stream: Optional[IOStream], stdout_stream: Optional[IOStream],
                    stderr_stream: Optional[IOStream]) -> None:
        if stdin_stream is not None:
            self.stdin.was_blocking = stdin_stream.set_blocking(False)
            self.stdin.stream = stdin_stream
            self.stdin.fd = None
            self.stdin.ready = False

        self.stdout.stream = stdout_stream
        self.stderr.stream = stderr_stream

    def on_exit_signal(self, signal_name: str, core_dumped: bool, message: str, lang: str) -> None:
        self.exit_signal = ExitSignal.from_name(signal_name, core_dumped, message)
        if not self.exit_signal.known:
            logger.warning(f"Remote command died from unknown signal {signal_name}")

    def execute_command(self, command: Command, status: Status) -> int:
        if self.channel is None:
            self.fail(ErrorCode.OPEN_SESSION_ERROR)
            return ErrorCode.OPEN_SESSION_ERROR

        try:
            self.channel.register_exit_signal_callback(self.on_exit_signal)

            if command.request_tty:
                self.channel.request_pty()
                self.use_tty = True
        except SessionError as e:
            logger.error(f"Cannot set up channel: {e}")
            self.close()
            self.fail(ErrorCode.OPEN_SESSION_ERROR)
            return ErrorCode.OPEN_SESSION_ERROR

        self.setup_stdio(command.stdin, command.stdout, command.stderr)

        logger.debug(f"Executing on {self.target.template.host}: {command.command}")
        try:
            self.channel.request_exec(command.command)
        except SessionError as e:
            logger.error(f"Cannot execute command: {e}")
            self.close()
            self.fail(ErrorCode.SEND_COMMAND_ERROR)
            return ErrorCode.SEND_COMMAND_ERROR

        self.status_ret = status
        self.state = TransactionState.EXECUTING
        return 0

    def send_eof(self) -> bool:
        """Signal end of input once; under a tty a Ctrl-D goes first"""
        if self.channel is None or self.eof_sent:
            return True

        try:
            if self.use_tty:
                self.channel.write(CTRL_D)
            self.channel.send_eof()
        except SessionError as e:
            logger.error(f"Cannot send EOF: {e}")
            return False

        self.eof_sent = True
        return True

    def request_interrupt(self) -> None:
        """Have the poll loop send Ctrl-C on its next pass

        Only sets a flag and wakes the loop, so it may run in a signal
        handler that interrupted a channel write.
        """
        self.interrupt_requested = True
        if self.wakeup_fd is None:
            return
        try:
            os.write(self.wakeup_fd, b"\0")
        except BlockingIOError:
            # Pipe full: a wakeup is already pending
            pass

    def send_interrupt(self) -> None:
        """Write the Ctrl-C asked for by request_interrupt"""
        self.interrupt_requested = False
        if self.channel is None or self.eof_sent:
            logger.warning("Cannot send Ctrl-C, channel already closed for writing")
            return

        try:
            self.channel.write(CTRL_C)
        except SessionError as e:
            logger.error(f"Cannot send Ctrl-C: {e}")
            return
        logger.debug("Sent Ctrl-C to foreground command")

    def mark_stdin_eof(self) -> bool:
        logger.debug("stdin is at EOF")
        self.stdin.eof = True
        self.stdin.fd = None
        return self.send_eof()

    def forward_stdin(self) -> bool:
        """Read what local stdin has and write it to the remote command"""
        stream = self.stdin.stream
        if stream is None or stream.eof():
            return self.mark_stdin_eof()

        try:
            data = stream.read(BUFFER_SIZE)
        except OSError as e:
            logger.error(f"Cannot read from local stdin: {e}")
            return False

        if data is None:
            # Nothing available yet
            return True
        if not data:
            return self.mark_stdin_eof()

        logger.debug(f"Writing {len(data)} bytes to command")
        try:
            written = self.channel.write(data)
        except SessionError as e:
            logger.error(f"Cannot forward stdin: {e}")
            return False
        return written == len(data)

    def forward_output(self, out: OutputState) -> bool:
        """Drain one remote output stream into its local stream"""
        if out.eof:
            return True

        try:
            if not self.channel.poll(out.index):
                return True
            data = self.channel.read_nonblocking(out.index, BUFFER_SIZE)
        except SessionError as e:
            logger.error(f"Cannot read {out.name}: {e}")
            return self.fail(ErrorCode.RECEIVE_RESULTS_ERROR)

        if data is None:
            logger.debug(f"{out.name} is at EOF")
            out.eof = True
            return True

        # Without a local stream, the data is dropped on the floor
        if data and out.stream is not None:
            try:
                if out.stream.write(data) < 0:
                    return self.fail(ErrorCode.RECEIVE_RESULTS_ERROR)
            except OSError as e:
                logger.error(f"Cannot write {out.name} locally: {e}")
                return self.fail(ErrorCode.RECEIVE_RESULTS_ERROR)
        return True

    def get_exit_status(self) -> bool:
        """Report the command's exit status, at most once"""
        status = self.status_ret
        if status is None or self.channel is None:
            return True

        if not self.send_eof():
            return self.fail(ErrorCode.RECEIVE_RESULTS_ERROR)

        timeout = self.remaining()
        if timeout is None:
            logger.error("Command timed out before reporting its exit status")
            return self.fail(ErrorCode.COMMAND_TIMEOUT_ERROR)

        try:
            status.minor = self.channel.get_exit_status(timeout)
        except SessionTimeout as e:
            logger.error(f"Command timed out: {e}")
            return self.fail(ErrorCode.COMMAND_TIMEOUT_ERROR)
        except SessionError as e:
            logger.error(f"Cannot get exit status: {e}")
            return self.fail(ErrorCode.RECEIVE_RESULTS_ERROR)

        # A command killed by a signal has no exit status; report it the
        # way the test server does
        if status.minor == EXIT_STATUS_ERROR and self.exit_signal is not None:
            status.major = errno.EFAULT
            status.minor = self.exit_signal.code

        self.status_ret = None
        self.state = TransactionState.DONE
        return True

    def close(self) -> None:
        """Tear down channel and session, restoring stdin's blocking mode"""
        try:
            stream = self.stdin.stream
            if stream is not None and self.stdin.was_blocking is not None:
                stream.set_blocking(self.stdin.was_blocking)
                self.stdin.was_blocking = None
        finally:
            if self.channel is not None:
                self.channel.close()
                self.channel = None
            if self.session is not None:
                self.session.disconnect()
                self.session = None
