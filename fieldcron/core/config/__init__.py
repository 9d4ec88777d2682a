"""Configuration module."""

from fieldcron.core.config.loader import load_config
from fieldcron.core.config.schema import Config

__all__ = ["Config", "load_config"]
