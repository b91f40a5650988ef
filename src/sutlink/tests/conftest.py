"""Pytest configuration and shared fixtures"""

import posixpath
import tempfile
import time

import pytest

from sutlink.core.sink import OutputMode, OutputSink
from sutlink.plugins.ssh import SSHTarget
from sutlink.transport.base import (
    EXIT_STATUS_ERROR,
    SSH_REQUEST_DENIED,
    RemoteChannel,
    RemoteSession,
    ScpHandle,
    ScpRequest,
    ScpRequestType,
    SessionError,
    SessionProvider,
    SessionTimeout,
)


class FakeChannel(RemoteChannel):
    """Scripted command channel

    Output is handed out in chunks; a channel with hang=True never reaches
    end of stream, one with exit_status=None never reports an exit status.
    """

    def __init__(self, stdout=b"", stderr=b"", exit_status=0, exit_signal=None,
                 chunk=4, hang=False, fail_on=()):
        self.output = {0: bytearray(stdout), 1: bytearray(stderr)}
        self.exit_status = exit_status
        self.exit_signal = exit_signal
        self.chunk = chunk
        self.hang = hang
        self.fail_on = set(fail_on)

        self.command = None
        self.pty = False
        self.written = bytearray()
        self.eof_count = 0
        self.exit_status_calls = 0
        self.exit_status_timeouts = []
        self.handler = None
        self.opened = False
        self.closed = False

    def _maybe_fail(self, what):
        if what in self.fail_on:
            raise SessionError(f"{what} failed")

    def open_session(self):
        self._maybe_fail("open_session")
        self.opened = True

    def request_pty(self):
        self._maybe_fail("request_pty")
        self.pty = True

    def request_exec(self, command):
        self._maybe_fail("request_exec")
        self.command = command

    def write(self, data):
        self._maybe_fail("write")
        self.written.extend(data)
        return len(data)

    def read_nonblocking(self, index, size):
        self._maybe_fail("read")
        pending = self.output[index]
        if pending:
            data = bytes(pending[:min(size, self.chunk)])
            del pending[:len(data)]
            return data
        if self.hang:
            return b""
        return None

    def poll(self, index):
        return bool(self.output[index]) or not self.hang

    def send_eof(self):
        self._maybe_fail("send_eof")
        self.eof_count += 1

    def get_exit_status(self, timeout=None):
        self._maybe_fail("get_exit_status")
        self.exit_status_calls += 1
        self.exit_status_timeouts.append(timeout)
        if self.exit_status is None:
            raise SessionTimeout("no exit status")
        if self.exit_signal is not None:
            # The event arrives while the exit status is being collected
            self.handler(self.exit_signal, False, "", "")
            return EXIT_STATUS_ERROR
        return self.exit_status

    def register_exit_signal_callback(self, handler):
        self.handler = handler

    def wait(self, fds, timeout):
        self._maybe_fail("wait")
        if self.hang and timeout:
            time.sleep(min(timeout, 0.01))
        return list(fds)

    def close(self):
        self.closed = True


class FakeFilesystem:
    """Remote files and directories seen through FakeScp"""

    def __init__(self, dirs=("/", "/tmp"), files=None):
        self.dirs = set(dirs)
        self.files = dict(files or {})
        self.modes = {}


class FakeScp(ScpHandle):
    """SCP copy against a FakeFilesystem"""

    def __init__(self, fs, direction, path, recursive=False):
        self.fs = fs
        self.direction = direction
        self.path = path
        self.recursive = recursive
        self.pending = None
        self.upload = None
        self.download = None
        self.offered = False
        self.closed = False
        self.bytes_written = 0

    def push_file(self, name, size, mode):
        if self.path not in self.fs.dirs:
            raise SessionError(f"{self.path}: No such file or directory", code=SSH_REQUEST_DENIED)
        self.upload = (posixpath.join(self.path, name), size, bytearray())
        self.fs.modes[self.upload[0]] = mode
        if size == 0:
            self.fs.files[self.upload[0]] = b""

    def write(self, data):
        path, size, content = self.upload
        content.extend(data)
        self.bytes_written += len(data)
        if len(content) >= size:
            self.fs.files[path] = bytes(content[:size])

    def pull_request(self):
        if self.offered:
            return ScpRequest(ScpRequestType.EOF)
        self.offered = True

        if self.path in self.fs.dirs and self.recursive:
            self.pending = ScpRequest(ScpRequestType.NEWDIR, mode=0o755, name=posixpath.basename(self.path))
        elif self.path in self.fs.files:
            content = self.fs.files[self.path]
            self.pending = ScpRequest(ScpRequestType.NEWFILE, size=len(content), mode=0o644,
                                      name=posixpath.basename(self.path))
        else:
            return ScpRequest(ScpRequestType.WARNING, message=f"{self.path}: No such file or directory")
        return self.pending

    def accept_request(self):
        self.download = bytearray(self.fs.files[self.path])

    def read(self, size):
        data = bytes(self.download[:size])
        del self.download[:size]
        return data

    def close(self):
        self.closed = True


class FakeSession(RemoteSession):
    def __init__(self, provider, template):
        self.provider = provider
        self.template = template
        self.connected = False
        self.username = None
        self.disconnected = False
        self.scp_handles = []

    def connect(self):
        if self.provider.connect_error:
            raise SessionError(self.provider.connect_error)
        self.connected = True

    def authenticate(self, username):
        self.username = username
        return self.provider.auth_ok

    def new_channel(self):
        return self.provider.channel

    def scp_open(self, direction, path, recursive=False):
        if self.provider.scp_error:
            raise SessionError(self.provider.scp_error)
        scp = FakeScp(self.provider.fs, direction, path, recursive=recursive)
        self.scp_handles.append(scp)
        return scp

    def disconnect(self):
        self.disconnected = True


class FakeProvider(SessionProvider):
    """Hands out FakeSessions sharing one channel and one filesystem"""

    def __init__(self, channel=None, fs=None):
        self.channel = channel or FakeChannel()
        self.fs = fs or FakeFilesystem()
        self.connect_error = None
        self.scp_error = None
        self.auth_ok = True
        self.sessions = []

    def open(self, template):
        session = FakeSession(self, template)
        self.sessions.append(session)
        return session


@pytest.fixture
def temp_dir():
    """Create a temporary directory for test files"""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield tmpdir


@pytest.fixture
def make_channel():
    """Factory of scripted command channels"""
    return FakeChannel


@pytest.fixture
def fake_fs():
    """Remote filesystem with / and /tmp"""
    return FakeFilesystem()


@pytest.fixture
def fake_provider(fake_fs):
    """Session provider that never touches the network"""
    return FakeProvider(fs=fake_fs)


@pytest.fixture
def progress_sink():
    """Sink capturing progress output in a buffer"""
    return OutputSink(OutputMode.BUFFER, 4096)


@pytest.fixture
def ssh_target(fake_provider, progress_sink):
    """SSH target wired to the fake provider"""
    return SSHTarget("sut.example.com", 22, provider=fake_provider, sink=progress_sink)


@pytest.fixture
def sample_config_data():
    """Sample configuration data for testing"""
    return {
        "target": "ssh:sut.example.com:2222",
        "user": "tester",
        "timeout": 30,
        "tty": False,
        "output": "buffer",
        "buffer_size": 1024,
        "ssh": {
            "key_file": "~/.ssh/id_ed25519",
            "allow_agent": False,
            "look_for_keys": True,
            "connect_timeout": 5,
            "skip_host_verification": True,
        },
        "plugins": {
            "ssh": "sutlink.plugins.ssh",
        },
    }
