"""Tests for Config class"""

import os

import pytest
import yaml

from sutlink.core.config import Config
from sutlink.core.sink import OutputMode


def write_config(temp_dir, data, name="sutlink.yaml"):
    config_file = os.path.join(temp_dir, name)
    with open(config_file, "w") as f:
        yaml.dump(data, f)
    return config_file


class TestConfigLoading:
    """Test reading configuration files"""

    def test_full_config(self, temp_dir, sample_config_data):
        """Test that every key is exposed through its property"""
        config = Config(write_config(temp_dir, sample_config_data))

        assert config.target == "ssh:sut.example.com:2222"
        assert config.user == "tester"
        assert config.timeout == 30
        assert config.tty is False
        assert config.output_mode == OutputMode.BUFFER
        assert config.buffer_size == 1024
        assert config.ssh_options["allow_agent"] is False
        assert config.plugin_options("ssh") == config.ssh_options
        assert config.plugin_modules == {"ssh": "sutlink.plugins.ssh"}
        assert config.validate() is True

    def test_defaults(self):
        """Test defaults without a configuration file"""
        config = Config()

        assert config.target is None
        assert config.user is None
        assert config.timeout == 60
        assert config.tty is False
        assert config.output_mode == OutputMode.SCREEN
        assert config.ssh_options == {}
        assert config.plugin_modules == {}
        assert config.validate() is True

    def test_empty_file(self, temp_dir):
        """Test that an empty file is an empty configuration"""
        config_file = os.path.join(temp_dir, "empty.yaml")
        open(config_file, "w").close()

        assert Config(config_file).data == {}

    def test_missing_file(self, temp_dir):
        """Test that a missing file raises"""
        with pytest.raises(FileNotFoundError):
            Config(os.path.join(temp_dir, "missing.yaml"))

    def test_invalid_yaml(self, temp_dir):
        """Test that malformed YAML raises"""
        config_file = os.path.join(temp_dir, "broken.yaml")
        with open(config_file, "w") as f:
            f.write("target: [unterminated\n")

        with pytest.raises(yaml.YAMLError):
            Config(config_file)

    def test_not_a_mapping(self, temp_dir):
        """Test that a top-level list is rejected"""
        with pytest.raises(ValueError):
            Config(write_config(temp_dir, ["ssh:host"]))

    def test_unknown_output_mode(self, temp_dir):
        """Test that an unknown output mode falls back to screen"""
        config = Config(write_config(temp_dir, {"output": "printer"}))

        assert config.output_mode == OutputMode.SCREEN
        assert config.validate() is False


class TestConfigValidation:
    """Test Config.validate"""

    @pytest.mark.parametrize("data", [
        {"target": "sut.example.com"},
        {"user": ""},
        {"timeout": 0},
        {"timeout": "soon"},
        {"tty": "yes"},
        {"buffer_size": -1},
        {"ssh": ["key"]},
        {"ssh": {"key_file": 42}},
        {"ssh": {"allow_agent": "no"}},
        {"ssh": {"connect_timeout": -5}},
        {"plugins": {"telnet": "x.telnet"}},
    ])
    def test_invalid_values(self, temp_dir, data):
        """Test that each malformed value fails validation"""
        config = Config(write_config(temp_dir, data))
        assert config.validate() is False

    def test_problems_are_logged(self, temp_dir, caplog):
        """Test that every problem is reported"""
        config = Config(write_config(temp_dir, {"timeout": -1, "tty": 3}))

        assert config.validate() is False
        assert "timeout must be a positive number" in caplog.text
        assert "tty must be true or false" in caplog.text

    def test_key_file_list(self, temp_dir):
        """Test that several identity files are accepted"""
        config = Config(write_config(temp_dir, {"ssh": {"key_file": ["~/.ssh/a", "~/.ssh/b"]}}))
        assert config.validate() is True
