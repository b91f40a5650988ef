"""Tests for the transaction engine and its poll loop"""

import errno
import os
import select
from unittest.mock import MagicMock

import pytest

from sutlink.core.command import Command, Status
from sutlink.core.errors import ErrorCode
from sutlink.core.iostream import FdStream
from sutlink.engine.multiplexer import Multiplexer
from sutlink.engine.signals import UNKNOWN_SIGNAL, ExitSignal
from sutlink.engine.transaction import Transaction, TransactionState
from sutlink.transport.base import RemoteChannel, SessionError


@pytest.fixture
def transaction(ssh_target):
    return Transaction(ssh_target, 60)


def start(trans, command):
    """Open the session and start the command"""
    status = Status()
    assert trans.open_session(command.user) == 0
    assert trans.execute_command(command, status) == 0
    return status


class TestTransactionState:
    """Test the transaction's own bookkeeping"""

    def test_first_failure_is_kept(self, transaction):
        """Test that later failures do not overwrite the first one"""
        assert transaction.fail(ErrorCode.RECEIVE_RESULTS_ERROR) is False
        assert transaction.fail(ErrorCode.COMMAND_TIMEOUT_ERROR) is False

        assert transaction.exception == ErrorCode.RECEIVE_RESULTS_ERROR
        assert transaction.state == TransactionState.FAILED

    def test_deadline(self, ssh_target):
        """Test that remaining time runs out after the timeout"""
        assert Transaction(ssh_target, 60).remaining() > 59
        assert Transaction(ssh_target, -1).remaining() is None

    def test_execute_without_channel(self, transaction):
        """Test that executing before the session is open fails"""
        rc = transaction.execute_command(Command("true"), Status())

        assert rc == ErrorCode.OPEN_SESSION_ERROR
        assert transaction.exception == ErrorCode.OPEN_SESSION_ERROR

    def test_exit_status_reported_once(self, transaction, fake_provider, make_channel):
        """Test that the status is written at most once"""
        fake_provider.channel = make_channel(exit_status=4)
        status = start(transaction, Command("exit 4"))

        assert transaction.get_exit_status() is True
        assert status == Status(0, 4)

        status.minor = 99
        assert transaction.get_exit_status() is True
        assert status.minor == 99
        assert fake_provider.channel.exit_status_calls == 1

    def test_exit_status_without_signal(self, transaction, fake_provider, make_channel):
        """Test that a missing exit status without signal event is passed through"""
        fake_provider.channel = make_channel(exit_status=-1)
        status = start(transaction, Command("true"))

        transaction.get_exit_status()

        assert status == Status(0, -1)

    def test_exit_status_bounded_by_deadline(self, ssh_target, fake_provider, make_channel):
        """Test that waiting for a missing exit status fails at the deadline"""
        fake_provider.channel = make_channel(exit_status=None)
        trans = Transaction(ssh_target, 5)
        status = start(trans, Command("exec >&- 2>&-; sleep 100"))

        assert trans.get_exit_status() is False
        assert trans.exception == ErrorCode.COMMAND_TIMEOUT_ERROR
        assert status == Status()
        timeout, = fake_provider.channel.exit_status_timeouts
        assert 0 < timeout <= 5

    def test_exit_status_after_deadline(self, ssh_target, fake_provider, make_channel):
        """Test that no exit status is awaited once the deadline has passed"""
        fake_provider.channel = make_channel(exit_status=3)
        trans = Transaction(ssh_target, -1)
        status = start(trans, Command("true"))

        assert trans.get_exit_status() is False
        assert trans.exception == ErrorCode.COMMAND_TIMEOUT_ERROR
        assert fake_provider.channel.exit_status_calls == 0
        assert status == Status()

    def test_exit_signal_event(self, transaction):
        """Test that the exit-signal event is recorded as known or unknown"""
        transaction.on_exit_signal("TERM", True, "terminated", "")
        assert transaction.exit_signal.code == 15
        assert transaction.exit_signal.core_dumped is True

        transaction.on_exit_signal("NOPE", False, "", "")
        assert not transaction.exit_signal.known
        assert transaction.exit_signal.code == UNKNOWN_SIGNAL

    def test_send_eof_once(self, transaction, fake_provider):
        """Test that repeated end of input is sent only once"""
        start(transaction, Command("cat"))

        for _ in range(3):
            assert transaction.send_eof() is True
            assert transaction.mark_stdin_eof() is True

        assert fake_provider.channel.eof_count == 1

    def test_send_eof_failure(self, transaction, fake_provider, make_channel):
        """Test that a failed EOF can be retried"""
        fake_provider.channel = make_channel(fail_on={"send_eof"})
        start(transaction, Command("cat"))

        assert transaction.send_eof() is False
        assert transaction.eof_sent is False

    def test_close_tears_down(self, transaction, fake_provider):
        """Test that close releases channel and session"""
        start(transaction, Command("true"))
        channel = fake_provider.channel

        transaction.close()

        assert channel.closed
        assert fake_provider.sessions[0].disconnected
        assert transaction.channel is None
        assert transaction.session is None


class TestSignals:
    """Test exit signal names"""

    @pytest.mark.parametrize("name,number", [("HUP", 1), ("INT", 2), ("KILL", 9), ("TERM", 15), ("IOT", 6)])
    def test_known(self, name, number):
        """Test Linux numbering of common signals"""
        assert ExitSignal.from_name(name).code == number

    def test_unknown(self):
        """Test the unknown signal sentinel"""
        signal = ExitSignal.from_name("SIGWHATEVER")
        assert signal.number is None
        assert signal.code == -1


class TestMultiplexer:
    """Test the poll loop"""

    def test_pipe_stdin_forwarded_and_restored(self, transaction, fake_provider, make_channel):
        """Test forwarding a pipe and restoring its blocking mode afterwards"""
        rfd, wfd = os.pipe()
        os.write(wfd, b"abc")
        os.close(wfd)
        stdin = FdStream(rfd, close_fd=True)

        try:
            fake_provider.channel = make_channel(stdout=b"x" * 12, chunk=2)
            status = start(transaction, Command("cat", stdin=stdin))
            assert os.get_blocking(rfd) is False

            assert Multiplexer(transaction).run() is True
            transaction.close()

            assert os.get_blocking(rfd) is True
            assert bytes(fake_provider.channel.written) == b"abc"
            assert fake_provider.channel.eof_count == 1
            assert status == Status(0, 0)
            assert transaction.state == TransactionState.DONE
        finally:
            stdin.close()

    def test_output_without_local_stream(self, transaction, fake_provider, make_channel):
        """Test that output without a destination is drained and dropped"""
        fake_provider.channel = make_channel(stdout=b"a" * 30, stderr=b"b" * 30)
        start(transaction, Command("noisy"))

        assert Multiplexer(transaction).run() is True
        assert fake_provider.channel.output == {0: bytearray(), 1: bytearray()}

    def test_timeout_leaves_status_untouched(self, ssh_target, fake_provider, make_channel):
        """Test that a timed out command reports no status"""
        fake_provider.channel = make_channel(hang=True)
        trans = Transaction(ssh_target, 0.03)
        status = start(trans, Command("sleep 10"))

        assert Multiplexer(trans).run() is False
        assert trans.exception == ErrorCode.COMMAND_TIMEOUT_ERROR
        assert status == Status()

    def test_closed_output_still_times_out(self, ssh_target, fake_provider, make_channel):
        """Test that a command closing its output but never exiting fails at the deadline"""
        fake_provider.channel = make_channel(exit_status=None)
        trans = Transaction(ssh_target, 0.5)
        status = start(trans, Command("exec >&- 2>&-; sleep 4; exit 7"))

        assert Multiplexer(trans).run() is False
        assert trans.exception == ErrorCode.COMMAND_TIMEOUT_ERROR
        assert status == Status()

    def test_interrupt_request_wakes_loop(self, transaction, fake_provider, make_channel):
        """Test that an interrupt request only flags the loop and wakes its wait"""
        channel = make_channel(stdout=b"x" * 4, chunk=2)
        fake_provider.channel = channel
        original_wait = channel.wait
        seen = []

        def wait(fds, timeout):
            if not seen:
                transaction.request_interrupt()
                readable, _, _ = select.select(fds, [], [], 0)
                seen.append((bytes(channel.written), bool(readable)))
            return original_wait(fds, timeout)

        channel.wait = wait
        # Input that stays open but idle
        rfd, wfd = os.pipe()
        stdin = FdStream(rfd, close_fd=True)

        try:
            start(transaction, Command("top", request_tty=True, stdin=stdin))
            assert Multiplexer(transaction).run() is True
        finally:
            transaction.close()
            stdin.close()
            os.close(wfd)

        assert seen == [(b"", True)]
        assert bytes(channel.written) == b"\x03\x04"
        assert transaction.interrupt_requested is False
        assert transaction.wakeup_fd is None

    def test_interrupt_after_input_closed(self, transaction, fake_provider):
        """Test that a pending Ctrl-C is dropped once input is closed"""
        start(transaction, Command("top", request_tty=True))
        transaction.eof_sent = True
        transaction.interrupt_requested = True

        transaction.send_interrupt()

        assert transaction.interrupt_requested is False
        assert bytes(fake_provider.channel.written) == b""

    def test_wait_failure(self, transaction, fake_provider, make_channel):
        """Test that a failing poll is a receive results error"""
        fake_provider.channel = make_channel(hang=True, fail_on={"wait"})
        start(transaction, Command("true"))

        assert Multiplexer(transaction).run() is False
        assert transaction.exception == ErrorCode.RECEIVE_RESULTS_ERROR

    def test_signal_death(self, transaction, fake_provider, make_channel):
        """Test the status of a command killed by a signal"""
        fake_provider.channel = make_channel(stdout=b"partial", exit_signal="KILL")
        status = start(transaction, Command("kill -9 $$"))

        assert Multiplexer(transaction).run() is True
        assert status == Status(errno.EFAULT, 9)


class TestChannelWait:
    """Test the default select based wait"""

    def test_reports_ready_descriptors(self, make_channel):
        """Test that only readable local descriptors are returned"""
        channel = make_channel()
        rfd, wfd = os.pipe()
        try:
            assert RemoteChannel.wait(channel, [rfd], 0) == []
            os.write(wfd, b"x")
            assert RemoteChannel.wait(channel, [rfd], 0) == [rfd]
        finally:
            os.close(rfd)
            os.close(wfd)

    def test_includes_channel_descriptor(self, make_channel):
        """Test that the channel's own descriptor is watched but not reported"""
        rfd, wfd = os.pipe()
        channel = make_channel()
        channel.fileno = MagicMock(return_value=rfd)
        try:
            os.write(wfd, b"x")
            assert RemoteChannel.wait(channel, [], 0) == []
        finally:
            os.close(rfd)
            os.close(wfd)

    def test_bad_descriptor(self, make_channel):
        """Test that select errors become session errors"""
        with pytest.raises(SessionError):
            RemoteChannel.wait(make_channel(), [-1], 0)
