"""Configuration management"""

import logging
from typing import Any, Dict, List, Optional

import yaml

from sutlink.core.command import DEFAULT_TIMEOUT
from sutlink.core.registry import KNOWN_PLUGINS
from sutlink.core.sink import OutputMode

logger = logging.getLogger(__name__)

_SSH_BOOL_OPTIONS = ("allow_agent", "look_for_keys", "skip_host_verification")


class Config:
    """Configuration manager for sutlink"""

    def __init__(self, config_file: Optional[str] = None):
        """Load configuration from YAML file

        Args:
            config_file: Path to configuration YAML file (None for defaults only)
        """
        self.config_file = config_file
        self.data: Dict[str, Any] = {}

        if config_file is not None:
            self.load()

    def load(self) -> None:
        """Load configuration from file"""
        try:
            with open(self.config_file, "r") as f:
                self.data = yaml.safe_load(f) or {}
            logger.info(f"Loaded configuration from {self.config_file}")
        except FileNotFoundError:
            logger.error(f"Configuration file not found: {self.config_file}")
            raise
        except yaml.YAMLError as e:
            logger.error(f"Failed to parse configuration file: {e}")
            raise

        if not isinstance(self.data, dict):
            logger.error(f"Configuration file {self.config_file} is not a mapping")
            raise ValueError(f"Invalid configuration file: {self.config_file}")

    @property
    def target(self) -> Optional[str]:
        """Get default target spec

        Returns:
            Target spec like "ssh:host:port", or None
        """
        return self.data.get("target")

    @property
    def user(self) -> Optional[str]:
        return self.data.get("user")

    @property
    def timeout(self) -> float:
        """Get command timeout in seconds"""
        return self.data.get("timeout", DEFAULT_TIMEOUT)

    @property
    def tty(self) -> bool:
        return bool(self.data.get("tty", False))

    @property
    def output_mode(self) -> OutputMode:
        """Get progress output mode

        Returns:
            OutputMode, SCREEN if unset or unknown
        """
        value = self.data.get("output", OutputMode.SCREEN.value)
        try:
            return OutputMode(value)
        except ValueError:
            logger.warning(f"Unknown output mode {value!r}, using screen")
            return OutputMode.SCREEN

    @property
    def buffer_size(self) -> int:
        return self.data.get("buffer_size", 0)

    @property
    def ssh_options(self) -> Dict[str, Any]:
        """Get SSH options applied to SSH targets

        Returns:
            SSH options dict
        """
        return self.plugin_options("ssh")

    def plugin_options(self, name: str) -> Dict[str, Any]:
        """Get the options section named after a plugin"""
        return self.data.get(name) or {}

    @property
    def plugin_modules(self) -> Dict[str, str]:
        """Get module overrides per plugin name"""
        return self.data.get("plugins") or {}

    def _problems(self) -> List[str]:
        problems = []

        target = self.target
        if target is not None and (not isinstance(target, str) or ":" not in target):
            problems.append(f"target must be a \"plugin:spec\" string, got {target!r}")

        user = self.user
        if user is not None and (not isinstance(user, str) or not user):
            problems.append("user must be a non-empty string")

        timeout = self.data.get("timeout", DEFAULT_TIMEOUT)
        if isinstance(timeout, bool) or not isinstance(timeout, (int, float)) or timeout <= 0:
            problems.append(f"timeout must be a positive number, got {timeout!r}")

        if not isinstance(self.data.get("tty", False), bool):
            problems.append("tty must be true or false")

        output = self.data.get("output", OutputMode.SCREEN.value)
        if output not in [mode.value for mode in OutputMode]:
            problems.append(f"output must be one of {', '.join(mode.value for mode in OutputMode)}")

        buffer_size = self.data.get("buffer_size", 0)
        if isinstance(buffer_size, bool) or not isinstance(buffer_size, int) or buffer_size < 0:
            problems.append(f"buffer_size must be a non-negative integer, got {buffer_size!r}")

        ssh = self.data.get("ssh") or {}
        if not isinstance(ssh, dict):
            problems.append("ssh must be a mapping")
        else:
            key_file = ssh.get("key_file")
            if key_file is not None and not isinstance(key_file, (str, list)):
                problems.append("ssh.key_file must be a path or a list of paths")
            for key in _SSH_BOOL_OPTIONS:
                if key in ssh and not isinstance(ssh[key], bool):
                    problems.append(f"ssh.{key} must be true or false")
            connect_timeout = ssh.get("connect_timeout", 10)
            if isinstance(connect_timeout, bool) or not isinstance(connect_timeout, (int, float)) \
                    or connect_timeout <= 0:
                problems.append("ssh.connect_timeout must be a positive number")

        plugins = self.data.get("plugins") or {}
        if not isinstance(plugins, dict):
            problems.append("plugins must be a mapping of plugin name to module")
        else:
            for name in plugins:
                if name not in KNOWN_PLUGINS:
                    problems.append(f"plugins: unknown plugin {name!r}")

        return problems

    def validate(self) -> bool:
        """Validate configuration

        Returns:
            True if configuration is valid
        """
        problems = self._problems()
        for problem in problems:
            logger.error(problem)
        return not problems
