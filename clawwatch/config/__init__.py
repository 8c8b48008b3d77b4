"""Configuration module for clawwatch."""

from clawwatch.config.loader import load_config, get_config_path
from clawwatch.config.schema import Config

__all__ = ["Config", "load_config", "get_config_path"]
