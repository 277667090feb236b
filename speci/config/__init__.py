"""Configuration module for speci."""

from speci.config.loader import (
    CONFIG_FILENAME,
    create_default_config,
    find_config_file,
    load_settings,
    resolve_path,
)
from speci.config.settings import Settings

__all__ = [
    "CONFIG_FILENAME",
    "Settings",
    "create_default_config",
    "find_config_file",
    "load_settings",
    "resolve_path",
]
