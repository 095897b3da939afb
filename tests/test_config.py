"""
Tests for YAML configuration loading.
"""

import os
import sys
import textwrap

import pytest

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from lookingglass.config import (
    AppConfig,
    ConfigError,
    YamlConfigProvider,
    load_config,
    parse_config,
)
from lookingglass.config.provider import CONFIG_PATH_ENV


def write(tmp_path, content):
    path = tmp_path / "config.yaml"
    path.write_text(textwrap.dedent(content))
    return str(path)


class TestLoadConfig:
    def test_full_file(self, config_file):
        config = load_config(config_file)

        assert config.listen.host == "127.0.0.1"
        assert config.listen.port == 8081
        assert config.listen.log_level == "debug"
        assert config.rate_limit.enabled is True
        assert config.rate_limit.max_commands == 2
        assert config.info.name == "Test Node"
        assert config.info.location == "Lab"
        assert config.info.datacenter == "N/A"

    def test_commands_keep_file_order(self, config_file):
        config = load_config(config_file)

        assert [c.name for c in config.list_commands()] == ["hello", "echo", "sleep"]
        hello = config.get_command("hello")
        assert hello.template == "echo hello"
        assert hello.ignore_target is True
        assert config.get_command("echo").ignore_target is False
        assert config.get_command("nope") is None

    def test_env_var_path(self, config_file, monkeypatch):
        monkeypatch.setenv(CONFIG_PATH_ENV, config_file)

        assert load_config().listen.port == 8081

    def test_missing_file(self, tmp_path):
        with pytest.raises(ConfigError):
            load_config(str(tmp_path / "absent.yaml"))

    def test_invalid_yaml(self, tmp_path):
        path = write(tmp_path, "listen: [unclosed\n")

        with pytest.raises(ConfigError):
            load_config(path)

    def test_provider_caches(self, config_file):
        provider = YamlConfigProvider(config_file)

        assert provider.get_config() is provider.get_config()


class TestParseConfig:
    def test_empty_document_uses_defaults(self):
        config = parse_config(None)

        assert isinstance(config, AppConfig)
        assert config.listen.port == 8080
        assert config.rate_limit.enabled is False
        assert config.rate_limit.max_commands == 10
        assert config.rate_limit.time_window == 60
        assert config.info.to_dict()["test_ip"] == "N/A"
        assert config.commands == {}

    def test_top_level_must_be_mapping(self):
        with pytest.raises(ConfigError):
            parse_config(["listen"])

    def test_command_without_template(self):
        with pytest.raises(ConfigError):
            parse_config({"commands": {"ping": {"description": "no template"}}})

    def test_legacy_queue_key(self):
        config = parse_config({
            "commands": {"mtr": {"template": "mtr -r", "maxmium_queue": 3}},
        })

        assert config.get_command("mtr").maximum_queue == 3

    def test_string_booleans(self):
        config = parse_config({
            "listen": {"tls": "false"},
            "rate_limit": {"enabled": "true"},
            "commands": {"uptime": {"template": "uptime", "ignore_target": "true"}},
        })

        assert config.listen.tls is False
        assert config.rate_limit.enabled is True
        assert config.get_command("uptime").ignore_target is True

    def test_bad_port(self):
        with pytest.raises(ConfigError):
            parse_config({"listen": {"port": "eighty"}})

    def test_template_to_dict(self):
        config = parse_config({"commands": {"ping": {"template": "ping -c 4 ", "description": "Ping"}}})

        assert config.get_command("ping").to_dict() == {
            "name": "ping",
            "template": "ping -c 4",
            "description": "Ping",
            "ignore_target": False,
            "maximum_queue": 0,
        }
