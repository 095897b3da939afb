"""
Config Module - Black Box Interface

Purpose: Application configuration management
Interface: load_config(), YamlConfigProvider.get_config()
Hidden: YAML parsing, defaults, legacy key spellings

Can be replaced with different config systems (environment, Consul, etcd).
"""

from .provider import (
    AppConfig,
    CommandTemplate,
    ConfigError,
    ConfigProvider,
    InfoConfig,
    ListenConfig,
    RateLimitConfig,
    YamlConfigProvider,
    load_config,
    parse_config,
)

__all__ = [
    "AppConfig",
    "CommandTemplate",
    "ConfigError",
    "ConfigProvider",
    "InfoConfig",
    "ListenConfig",
    "RateLimitConfig",
    "YamlConfigProvider",
    "load_config",
    "parse_config",
]
