"""Single threaded poll loop driving a transaction to completion"""

import logging
import os

from sutlink.core.errors import ErrorCode
from sutlink.engine.transaction import Transaction, TransactionState
from sutlink.transport.base import SessionError

logger = logging.getLogger(__name__)


class Multiplexer:
    """Moves bytes between local streams and the remote command

    Each pass forwards local stdin first, then drains stdout and stderr,
    then blocks until the channel or stdin is readable or the deadline
    expires. The loop ends when both remote output streams are at EOF.
    """

    def __init__(self, transaction: Transaction):
        self.transaction = transaction

    def _setup_stdin(self) -> bool:
        trans = self.transaction
        stdin = trans.stdin

        if stdin.eof:
            return True

        if stdin.stream is None:
            if not trans.mark_stdin_eof():
                return trans.fail(ErrorCode.FORWARD_INPUT_ERROR)
            return True

        # None means the stream has no descriptor (memory backed) and is
        # forwarded synchronously on every pass instead
        stdin.fd = stdin.stream.fileno()
        if stdin.fd is None:
            logger.debug("stdin has no descriptor, forwarding synchronously")
        return True

    def run(self) -> bool:
        """Run the loop

        Returns:
            True once the exit status was collected, False on failure (the
            cause is in the transaction's exception)
        """
        trans = self.transaction
        trans.state = TransactionState.POLLING

        if not self._setup_stdin():
            return False

        wakeup_r, wakeup_w = os.pipe()
        os.set_blocking(wakeup_r, False)
        os.set_blocking(wakeup_w, False)
        trans.wakeup_fd = wakeup_w
        try:
            return self._loop(wakeup_r)
        finally:
            trans.wakeup_fd = None
            os.close(wakeup_r)
            os.close(wakeup_w)

    @staticmethod
    def _drain(fd: int) -> None:
        try:
            while os.read(fd, 64):
                pass
        except BlockingIOError:
            # Empty
            pass

    def _loop(self, wakeup_fd: int) -> bool:
        trans = self.transaction
        stdin = trans.stdin
        while True:
            # Ctrl-C is written here rather than in the signal handler, which
            # may have interrupted a channel write
            if trans.interrupt_requested:
                trans.send_interrupt()

            if not stdin.eof and (stdin.ready or stdin.fd is None):
                if not trans.forward_stdin():
                    return trans.fail(ErrorCode.FORWARD_INPUT_ERROR)
            stdin.ready = False

            if not trans.forward_output(trans.stdout):
                return False
            if not trans.forward_output(trans.stderr):
                return False

            if trans.stdout.eof and trans.stderr.eof:
                return trans.get_exit_status()

            timeout = trans.remaining()
            if timeout is None:
                logger.error("Command timed out")
                return trans.fail(ErrorCode.COMMAND_TIMEOUT_ERROR)

            fds = [wakeup_fd]
            if not stdin.eof:
                if stdin.fd is None:
                    timeout = 0
                else:
                    fds.append(stdin.fd)

            try:
                ready = trans.channel.wait(fds, timeout)
            except SessionError as e:
                logger.error(f"Polling failed: {e}")
                return trans.fail(ErrorCode.RECEIVE_RESULTS_ERROR)

            if wakeup_fd in ready:
                self._drain(wakeup_fd)
            stdin.ready = stdin.fd is not None and stdin.fd in ready
