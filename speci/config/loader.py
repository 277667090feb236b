"""Load speci configuration from speci.config.json (or .yaml)."""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError

from speci.config.settings import Settings, get_default_config
from speci.errors import ConfigError

logger = logging.getLogger(__name__)

CONFIG_FILENAME = "speci.config.json"
CONFIG_FILENAMES = (CONFIG_FILENAME, "speci.config.yaml", "speci.config.yml")


def find_config_file(start_dir: Path) -> Path | None:
    """
    Find a config file by walking up from ``start_dir``.

    Args:
        start_dir: Directory to start searching from.

    Returns:
        Path to the first config file found, or None.
    """
    current = start_dir.resolve()
    while True:
        for name in CONFIG_FILENAMES:
            candidate = current / name
            if candidate.is_file():
                logger.debug("Found config file at %s", candidate)
                return candidate
        if current.parent == current:
            return None
        current = current.parent


def _read_config_data(config_path: Path) -> dict[str, Any]:
    try:
        with open(config_path, encoding="utf-8") as f:
            if config_path.suffix == ".json":
                data = json.load(f)
            else:
                data = yaml.safe_load(f)
    except (json.JSONDecodeError, yaml.YAMLError) as e:
        raise ConfigError(f"Config file {config_path} is malformed: {e}") from e
    except OSError as e:
        raise ConfigError(f"Could not read config file {config_path}: {e}") from e

    if data is None:
        logger.warning("Empty config file %s, using defaults", config_path)
        return {}
    if not isinstance(data, dict):
        raise ConfigError(f"Config file {config_path} must contain an object")
    return data


def load_settings(start_dir: Path | None = None) -> tuple[Settings, Path]:
    """
    Load settings for the project containing ``start_dir``.

    Values come from defaults, then the config file, then ``SPECI_*``
    environment variables.

    Returns:
        The settings and the project root (the config file's directory, or
        ``start_dir`` when no config file exists).

    Raises:
        ConfigError: If the file cannot be parsed or fails validation.
    """
    start_dir = (start_dir or Path.cwd()).resolve()
    config_path = find_config_file(start_dir)

    data: dict[str, Any] = {}
    project_root = start_dir
    if config_path is not None:
        data = _read_config_data(config_path)
        project_root = config_path.parent
    else:
        logger.debug("No config file found from %s, using defaults", start_dir)

    try:
        # Constructing (not model_validate) so SPECI_* env sources apply
        settings = Settings(**data)
    except ValidationError as e:
        raise ConfigError(f"Invalid config in {config_path or 'environment'}: {e}") from e

    return settings, project_root


def resolve_path(project_root: Path, configured: str) -> Path:
    """Resolve a configured path against the project root."""
    path = Path(configured)
    return path if path.is_absolute() else project_root / path


def create_default_config(project_root: Path) -> Path:
    """
    Create a default speci.config.json file.

    Args:
        project_root: Path to the project root directory.

    Returns:
        Path to the created config file.
    """
    config_path = project_root / CONFIG_FILENAME
    with open(config_path, "w", encoding="utf-8") as f:
        json.dump(get_default_config(), f, indent=2)
        f.write("\n")

    logger.info("Created default config at %s", config_path)
    return config_path
