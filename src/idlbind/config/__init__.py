"""Configuration loading for idlbind."""

from .bind_config import CONFIG_FILE_NAME, BindConfig, BuildOptions, ConfigError, load_bind_config, parse_bind_config

__all__ = [
    "CONFIG_FILE_NAME",
    "BindConfig",
    "BuildOptions",
    "ConfigError",
    "load_bind_config",
    "parse_bind_config",
]
