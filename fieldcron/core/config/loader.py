"""Config loading: locate the YAML file, then let Config layer env on top."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any

import yaml
from loguru import logger

from fieldcron.core.config.schema import Config

CONFIG_ENV_VAR = "FIELDCRON_CONFIG"
DEFAULT_CONFIG_FILE = "config.yaml"


def load_config(config_path: str | Path | None = None) -> Config:
    """Build the Config for this process.

    The YAML file is the first of ``config_path``, ``$FIELDCRON_CONFIG`` and
    ``./config.yaml`` that is given (or, for the last one, exists). Its
    values feed ``Config`` as init kwargs; ``FIELDCRON_*`` env vars and
    ``.env`` still win over them (see ``Config.settings_customise_sources``).
    """
    path = find_config_file(config_path)
    return Config(**read_yaml(path))


def find_config_file(config_path: str | Path | None = None) -> Path | None:
    candidate = config_path or os.environ.get(CONFIG_ENV_VAR)
    if candidate:
        return Path(candidate)
    default = Path(DEFAULT_CONFIG_FILE)
    return default if default.is_file() else None


def read_yaml(path: Path | None) -> dict[str, Any]:
    """YAML mapping at ``path``; ``{}`` when there is no file to read."""
    if path is None or not path.is_file():
        if path is not None:
            logger.warning(f"Config file not found: {path}, using defaults")
        return {}
    data = yaml.safe_load(path.read_text(encoding="utf-8"))
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValueError(f"Config file {path} must contain a mapping, got {type(data).__name__}")
    logger.debug(f"Config loaded from {path}")
    return data
