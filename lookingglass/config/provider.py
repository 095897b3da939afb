"""Configuration provider following Black Box Design principles."""
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Protocol

import yaml

logger = logging.getLogger("lookingglass.config")

DEFAULT_CONFIG_PATH = "config.yaml"
CONFIG_PATH_ENV = "LOOKINGGLASS_CONFIG"


class ConfigError(ValueError):
    """Raised when the configuration file is missing or malformed."""


@dataclass
class ListenConfig:
    """Listener configuration."""
    host: str = "0.0.0.0"
    port: int = 8080
    log_level: str = "info"
    tls: bool = False
    tls_cert_file: str = ""
    tls_key_file: str = ""


@dataclass
class RateLimitConfig:
    """Per-session rate limit configuration."""
    enabled: bool = False
    max_commands: int = 10
    time_window: int = 60


@dataclass
class InfoConfig:
    """Host information shown to clients."""
    name: str = ""
    location: str = "N/A"
    datacenter: str = "N/A"
    test_ip: str = "N/A"
    description: str = "N/A"

    def to_dict(self) -> Dict[str, str]:
        return {
            "name": self.name,
            "location": self.location,
            "datacenter": self.datacenter,
            "test_ip": self.test_ip,
            "description": self.description,
        }


@dataclass(frozen=True)
class CommandTemplate:
    """A pre-approved diagnostic command."""
    name: str
    template: str
    description: str = ""
    ignore_target: bool = False
    maximum_queue: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "template": self.template,
            "description": self.description,
            "ignore_target": self.ignore_target,
            "maximum_queue": self.maximum_queue,
        }


@dataclass
class AppConfig:
    """Complete application configuration."""
    listen: ListenConfig = field(default_factory=ListenConfig)
    rate_limit: RateLimitConfig = field(default_factory=RateLimitConfig)
    info: InfoConfig = field(default_factory=InfoConfig)
    commands: Dict[str, CommandTemplate] = field(default_factory=dict)

    def get_command(self, name: str) -> Optional[CommandTemplate]:
        """Look up a command template by name."""
        return self.commands.get(name)

    def list_commands(self) -> List[CommandTemplate]:
        """Command templates in the order they appear in the config file."""
        return list(self.commands.values())


class ConfigProvider(Protocol):
    """Protocol for configuration providers."""

    def get_config(self) -> AppConfig:
        """Get the application configuration."""
        ...


def _as_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() == "true"
    return bool(value)


def _section(data: Mapping[str, Any], name: str) -> Mapping[str, Any]:
    section = data.get(name) or {}
    if not isinstance(section, Mapping):
        raise ConfigError(f"Config section '{name}' must be a mapping")
    return section


def _parse_commands(raw: Any) -> Dict[str, CommandTemplate]:
    if raw is None:
        return {}
    if not isinstance(raw, Mapping):
        raise ConfigError("Config section 'commands' must be a mapping")

    commands: Dict[str, CommandTemplate] = {}
    for name, body in raw.items():
        if not isinstance(body, Mapping) or not body.get("template"):
            raise ConfigError(f"Command '{name}' must define a template")

        # Older configs spell the queue hint "maxmium_queue"
        queue_hint = body.get("maximum_queue", body.get("maxmium_queue", 0))

        commands[str(name)] = CommandTemplate(
            name=str(name),
            template=str(body["template"]).strip(),
            description=str(body.get("description") or ""),
            ignore_target=_as_bool(body.get("ignore_target", False)),
            maximum_queue=int(queue_hint or 0),
        )
    return commands


def parse_config(data: Any) -> AppConfig:
    """
    Build an AppConfig from an already-parsed YAML document.

    Args:
        data: Result of yaml.safe_load

    Returns:
        AppConfig with defaults applied

    Raises:
        ConfigError: If the document structure is invalid
    """
    if data is None:
        data = {}
    if not isinstance(data, Mapping):
        raise ConfigError("Config file must contain a mapping at the top level")

    listen = _section(data, "listen")
    rate_limit = _section(data, "rate_limit")
    info = _section(data, "info")

    try:
        listen_config = ListenConfig(
            host=str(listen.get("host", "0.0.0.0")),
            port=int(listen.get("port", 8080)),
            log_level=str(listen.get("log_level", "info")),
            tls=_as_bool(listen.get("tls", False)),
            tls_cert_file=str(listen.get("tls_cert_file") or ""),
            tls_key_file=str(listen.get("tls_key_file") or ""),
        )
        rate_limit_config = RateLimitConfig(
            enabled=_as_bool(rate_limit.get("enabled", False)),
            max_commands=int(rate_limit.get("max_commands", 10)),
            time_window=int(rate_limit.get("time_window", 60)),
        )
    except (TypeError, ValueError) as e:
        raise ConfigError(f"Invalid numeric value in config: {e}") from e

    info_config = InfoConfig(
        name=str(info.get("name") or ""),
        location=str(info.get("location") or "N/A"),
        datacenter=str(info.get("datacenter") or "N/A"),
        test_ip=str(info.get("test_ip") or "N/A"),
        description=str(info.get("description") or "N/A"),
    )

    return AppConfig(
        listen=listen_config,
        rate_limit=rate_limit_config,
        info=info_config,
        commands=_parse_commands(data.get("commands")),
    )


def load_config(path: Optional[str] = None) -> AppConfig:
    """
    Load configuration from a YAML file.

    Args:
        path: Config file path; falls back to $LOOKINGGLASS_CONFIG, then config.yaml

    Raises:
        ConfigError: If the file cannot be read or parsed
    """
    path = path or os.getenv(CONFIG_PATH_ENV, DEFAULT_CONFIG_PATH)
    config_path = Path(path)

    try:
        raw = config_path.read_text(encoding="utf-8")
    except OSError as e:
        raise ConfigError(f"Error reading config file {config_path}: {e}") from e

    try:
        data = yaml.safe_load(raw)
    except yaml.YAMLError as e:
        raise ConfigError(f"Error parsing config file {config_path}: {e}") from e

    config = parse_config(data)
    logger.info(f"Loaded {len(config.commands)} commands from {config_path}")
    return config


class YamlConfigProvider:
    """File-based configuration provider."""

    def __init__(self, path: Optional[str] = None):
        self.path = path
        self._config: Optional[AppConfig] = None

    def get_config(self) -> AppConfig:
        """Load the config file once and cache it."""
        if self._config is None:
            self._config = load_config(self.path)
        return self._config
