"""SSH session provider built on paramiko"""

import logging
import os
import socket
from typing import Any, Callable, Dict, Iterator, List, Optional

import paramiko
from paramiko import Channel
from paramiko.common import MSG_CHANNEL_REQUEST

from .base import (
    STDOUT,
    RemoteChannel,
    RemoteSession,
    ScpDirection,
    ScpHandle,
    SessionError,
    SessionProvider,
    SessionTemplate,
    SessionTimeout,
)
from .scp import ScpChannel

logger = logging.getLogger(__name__)

DEFAULT_IDENTITIES = ("id_ed25519", "id_ecdsa", "id_rsa")


class ParamikoSessionProvider(SessionProvider):
    """Opens paramiko sessions honouring the OpenSSH client config"""

    def __init__(self, ssh_config: Optional[str] = None, known_hosts: Optional[str] = None,
                 skip_host_verification: bool = False):
        """Initialize SSH session provider

        Args:
            ssh_config: Path to SSH config file (auto-detected if None)
            known_hosts: Path to known_hosts file (default: ~/.ssh/known_hosts)
            skip_host_verification: Skip SSH host key verification (insecure, for testing only)
        """
        self.ssh_config_parser = None
        self.skip_host_verification = skip_host_verification
        if skip_host_verification:
            logger.warning("SSH host key verification is DISABLED - only use for testing!")
        self._load_ssh_config(ssh_config)
        self.host_keys = self._load_host_keys(known_hosts)

    def _load_ssh_config(self, ssh_config_path: Optional[str] = None) -> None:
        """Load SSH config file with auto-detection

        Args:
            ssh_config_path: Path to SSH config file (None = auto-detect ~/.ssh/config)
        """
        if ssh_config_path is None:
            ssh_config_path = os.path.expanduser("~/.ssh/config")
        else:
            ssh_config_path = os.path.expanduser(ssh_config_path)

        if os.path.exists(ssh_config_path):
            try:
                self.ssh_config_parser = paramiko.SSHConfig.from_path(ssh_config_path)
                logger.info(f"Loaded SSH config from {ssh_config_path}")
            except Exception as e:
                logger.warning(f"Failed to load SSH config from {ssh_config_path}: {e}")
                self.ssh_config_parser = None
        else:
            logger.debug(f"SSH config not found at {ssh_config_path}")
            self.ssh_config_parser = None

    @staticmethod
    def _load_host_keys(known_hosts: Optional[str]) -> paramiko.HostKeys:
        host_keys = paramiko.HostKeys()
        path = os.path.expanduser(known_hosts or "~/.ssh/known_hosts")
        if os.path.exists(path):
            try:
                host_keys.load(path)
            except IOError as e:
                logger.warning(f"Failed to load known hosts from {path}: {e}")
        return host_keys

    def merge_ssh_config(self, template: SessionTemplate) -> Dict[str, Any]:
        """Merge SSH config with precedence: template > SSH config > defaults

        Args:
            template: Session template of the target

        Returns:
            Resolved connection parameters
        """
        config: Dict[str, Any] = {
            "hostname": template.host,
            "port": template.port,
            "username": template.user,
            "key_filename": [],
            "timeout": template.connect_timeout,
        }

        if self.ssh_config_parser:
            ssh_config = self.ssh_config_parser.lookup(template.host)
            config["hostname"] = ssh_config.get("hostname", template.host)

            # A port given in the target wins over ssh_config; 22 means none was given
            if template.port == 22 and "port" in ssh_config:
                config["port"] = int(ssh_config["port"])
            if not config["username"] and "user" in ssh_config:
                config["username"] = ssh_config["user"]

            identity_files = ssh_config.get("identityfile", [])
            if identity_files:
                config["key_filename"] = list(identity_files)

            # Handle ProxyJump/ProxyCommand
            if "proxyjump" in ssh_config:
                proxy_host = ssh_config["proxyjump"]
                config["proxy_command"] = f"ssh -W %h:%p {proxy_host}"
            elif "proxycommand" in ssh_config:
                config["proxy_command"] = ssh_config["proxycommand"]

        # Identity files from the target configuration take precedence
        key_files = []
        for key_file in template.key_filenames:
            expanded_key = os.path.expanduser(key_file)
            if os.path.exists(expanded_key):
                key_files.append(expanded_key)
            else:
                logger.warning(f"SSH key file not found: {expanded_key}")
        if key_files:
            config["key_filename"] = key_files

        config["allow_agent"] = template.allow_agent
        config["look_for_keys"] = template.look_for_keys
        return config

    def check_host_key(self, hostname: str, port: int, key: paramiko.PKey) -> None:
        """Verify the server's host key against known_hosts

        Unknown hosts are accepted and remembered for the lifetime of the
        provider; a mismatching key is rejected unless verification is off.

        Raises:
            SessionError: if the key does not match the recorded one
        """
        lookup_name = hostname if port == 22 else f"[{hostname}]:{port}"
        known = self.host_keys.lookup(lookup_name)

        if known is None or key.get_name() not in known:
            if self.skip_host_verification:
                logger.warning(f"Accepting unknown {key.get_name()} host key for {lookup_name}")
            else:
                logger.info(f"Adding {key.get_name()} host key for {lookup_name}")
                self.host_keys.add(lookup_name, key.get_name(), key)
            return

        if known[key.get_name()].asbytes() != key.asbytes():
            if self.skip_host_verification:
                logger.warning(f"Host key for {lookup_name} changed, ignoring")
                return
            raise SessionError(f"Host key for {lookup_name} does not match known_hosts")

    def open(self, template: SessionTemplate) -> "ParamikoSession":
        return ParamikoSession(self, template)


class ParamikoSession(RemoteSession):
    """One paramiko transport to the system under test"""

    def __init__(self, provider: ParamikoSessionProvider, template: SessionTemplate):
        self.provider = provider
        self.template = template
        self.config = provider.merge_ssh_config(template)
        self.transport: Optional[paramiko.Transport] = None
        self.exit_signal_handlers: Dict[int, Callable] = {}

    def connect(self) -> None:
        hostname = self.config["hostname"]
        port = self.config["port"]
        timeout = self.config["timeout"]

        logger.debug(f"Connecting to {self.template.host} (resolved: {hostname}:{port})")
        transport = None
        try:
            if self.config.get("proxy_command"):
                command = self.config["proxy_command"].replace("%h", hostname).replace("%p", str(port))
                sock = paramiko.ProxyCommand(command)
            else:
                sock = socket.create_connection((hostname, port), timeout=timeout)

            transport = paramiko.Transport(sock)
            transport.start_client(timeout=timeout)
        except (paramiko.SSHException, OSError) as e:
            if transport is not None:
                transport.close()
            logger.error(f"Failed to connect to {self.template.host}: {e}")
            raise SessionError(f"connect to {hostname}:{port} failed: {e}")

        self.transport = transport
        self._install_request_dispatch()
        self.provider.check_host_key(hostname, port, transport.get_remote_server_key())
        logger.info(f"Connected to {self.template.host}")

    def _install_request_dispatch(self) -> None:
        """Intercept exit-signal channel requests, which paramiko drops

        The handler table is replaced on this transport instance only; every
        request is still handed to paramiko afterwards.
        """
        handlers = self.exit_signal_handlers

        def dispatch(chan, m):
            handler = handlers.get(chan.get_id())
            if handler is not None:
                mark = m.packet.tell()
                if m.get_text() == "exit-signal":
                    m.get_boolean()
                    signal_name = m.get_text()
                    core_dumped = m.get_boolean()
                    message = m.get_text()
                    lang = m.get_text()
                    logger.debug(f"Channel {chan.get_id()} exited on signal {signal_name}")
                    try:
                        handler(signal_name, core_dumped, message, lang)
                    except Exception as e:
                        logger.error(f"Exit signal handler failed: {e}")
                m.packet.seek(mark)
            Channel._handle_request(chan, m)

        original = getattr(self.transport, "_channel_handler_table", None)
        if not isinstance(original, dict) or not callable(getattr(Channel, "_handle_request", None)):
            logger.warning(f"paramiko {paramiko.__version__} does not expose channel request dispatch, "
                           "commands killed by a signal will report exit status -1")
            return

        table = dict(original)
        table[MSG_CHANNEL_REQUEST] = dispatch
        self.transport._channel_handler_table = table

    def _candidate_keys(self) -> Iterator[paramiko.PKey]:
        """Keys tried for authentication, in priority order

        1. Identity files from the target or SSH config
        2. SSH agent keys (if allow_agent)
        3. Default identity files in ~/.ssh/ (if look_for_keys)
        """
        key_files: List[str] = list(self.config.get("key_filename") or [])
        for key_file in key_files:
            key = self._load_key(key_file)
            if key is not None:
                yield key

        if self.config["allow_agent"]:
            try:
                for key in paramiko.Agent().get_keys():
                    yield key
            except paramiko.SSHException as e:
                logger.debug(f"SSH agent unavailable: {e}")

        if self.config["look_for_keys"]:
            for name in DEFAULT_IDENTITIES:
                path = os.path.expanduser(f"~/.ssh/{name}")
                if path in key_files or not os.path.exists(path):
                    continue
                key = self._load_key(path)
                if key is not None:
                    yield key

    @staticmethod
    def _load_key(path: str) -> Optional[paramiko.PKey]:
        """Load a private key without passphrase; encrypted keys are skipped"""
        try:
            return paramiko.PKey.from_path(os.path.expanduser(path))
        except paramiko.PasswordRequiredException:
            logger.debug(f"Skipping passphrase protected key {path}")
        except Exception as e:
            logger.debug(f"Cannot load key {path}: {e}")
        return None

    def authenticate(self, username: str) -> bool:
        if self.transport is None:
            raise SessionError("session is not connected")

        tried = 0
        for key in self._candidate_keys():
            tried += 1
            try:
                self.transport.auth_publickey(username, key)
            except paramiko.AuthenticationException:
                continue
            except (paramiko.SSHException, OSError) as e:
                raise SessionError(f"authentication failed: {e}")
            if self.transport.is_authenticated():
                logger.debug(f"Authenticated as {username} with {key.get_name()} key")
                return True

        logger.error(f"Public key authentication as {username} on {self.template.host} failed ({tried} keys tried)")
        return False

    def _open_channel(self) -> paramiko.Channel:
        if self.transport is None:
            raise SessionError("session is not connected")
        try:
            return self.transport.open_session(timeout=self.config["timeout"])
        except (paramiko.SSHException, OSError) as e:
            raise SessionError(f"cannot open channel: {e}")

    def new_channel(self) -> "ParamikoChannel":
        return ParamikoChannel(self)

    def scp_open(self, direction: ScpDirection, path: str, recursive: bool = False) -> ScpHandle:
        scp = ScpChannel(self._open_channel(), direction, path, recursive=recursive,
                         timeout=self.config["timeout"])
        try:
            scp.init()
        except SessionError:
            scp.close()
            raise
        return scp

    def disconnect(self) -> None:
        if self.transport is not None:
            try:
                self.transport.close()
            except Exception as e:
                logger.warning(f"Error closing SSH connection: {e}")
            self.transport = None
            logger.debug(f"Disconnected from {self.template.host}")


class ParamikoChannel(RemoteChannel):
    """Command channel on a paramiko transport"""

    def __init__(self, session: ParamikoSession):
        self.session = session
        self.chan: Optional[paramiko.Channel] = None

    def _call(self, what: str, method: str, *args):
        if self.chan is None:
            raise SessionError(f"{what}: channel is not open")
        try:
            return getattr(self.chan, method)(*args)
        except (paramiko.SSHException, socket.timeout, OSError) as e:
            raise SessionError(f"{what} failed: {e}")

    def open_session(self) -> None:
        self.chan = self.session._open_channel()

    def request_pty(self) -> None:
        self._call("pty request", "get_pty")

    def request_exec(self, command: str) -> None:
        self._call("exec request", "exec_command", command)

    def write(self, data: bytes) -> int:
        self._call("write", "sendall", data)
        return len(data)

    def read_nonblocking(self, index: int, size: int) -> Optional[bytes]:
        if index == STDOUT:
            if self.chan.recv_ready():
                return self._call("read", "recv", size)
        elif self.chan.recv_stderr_ready():
            return self._call("read", "recv_stderr", size)

        if self.chan.eof_received or self.chan.closed:
            return None
        return b""

    def poll(self, index: int) -> bool:
        if self.chan is None:
            return False
        ready = self.chan.recv_ready() if index == STDOUT else self.chan.recv_stderr_ready()
        return ready or self.chan.eof_received or self.chan.closed

    def send_eof(self) -> None:
        self._call("send eof", "shutdown_write")

    def get_exit_status(self, timeout: Optional[float] = None) -> int:
        if self.chan is None:
            raise SessionError("exit status: channel is not open")
        # sshd reports end of output when the pipes close, the status only on exit
        if not self.chan.status_event.wait(timeout):
            raise SessionTimeout(f"no exit status within {timeout:.1f} seconds")
        return self._call("exit status", "recv_exit_status")

    def register_exit_signal_callback(self, handler: Callable[[str, bool, str, str], None]) -> None:
        if self.chan is None:
            raise SessionError("cannot register callback: channel is not open")
        self.session.exit_signal_handlers[self.chan.get_id()] = handler

    def fileno(self) -> Optional[int]:
        if self.chan is None:
            return None
        return self.chan.fileno()

    def close(self) -> None:
        if self.chan is None:
            return
        self.session.exit_signal_handlers.pop(self.chan.get_id(), None)
        try:
            self.chan.close()
        except Exception as e:
            logger.debug(f"Error closing channel: {e}")
        self.chan = None
