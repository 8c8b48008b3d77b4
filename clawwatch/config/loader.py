"""Configuration loading and saving."""

import json
import os
import re
from pathlib import Path
from typing import Any

from loguru import logger

from clawwatch.config.schema import Config

LEGACY_API_URL_ENV = "OPENCLAW_API_URL"


def get_config_path() -> Path:
    """Get the default configuration file path."""
    return Path.home() / ".clawwatch" / "config.json"


def camel_to_snake(name: str) -> str:
    """Convert camelCase to snake_case."""
    return re.sub(r"(?<!^)(?=[A-Z])", "_", name).lower()


def snake_to_camel(name: str) -> str:
    """Convert snake_case to camelCase."""
    head, *rest = name.split("_")
    return head + "".join(word.capitalize() for word in rest)


def convert_keys(data: Any) -> Any:
    """Recursively convert dict keys from camelCase to snake_case."""
    if isinstance(data, dict):
        return {camel_to_snake(k): convert_keys(v) for k, v in data.items()}
    if isinstance(data, list):
        return [convert_keys(item) for item in data]
    return data


def convert_to_camel(data: Any) -> Any:
    """Recursively convert dict keys from snake_case to camelCase."""
    if isinstance(data, dict):
        return {snake_to_camel(k): convert_to_camel(v) for k, v in data.items()}
    if isinstance(data, list):
        return [convert_to_camel(item) for item in data]
    return data


def load_config(config_path: Path | None = None) -> Config:
    """
    Load configuration from file, falling back to defaults.

    Environment variables (CLAWWATCH_*) fill anything the file leaves unset.
    """
    path = config_path or get_config_path()
    data: dict[str, Any] = {}

    if path.exists():
        try:
            raw = json.loads(path.read_text())
            if isinstance(raw, dict):
                data = convert_keys(raw)
            else:
                logger.warning(f"Ignoring {path}: expected a JSON object")
        except (json.JSONDecodeError, IOError) as e:
            logger.warning(f"Failed to load config from {path}: {e}")

    legacy_url = os.environ.get(LEGACY_API_URL_ENV)
    if (
        legacy_url
        and "api_base_url" not in data
        and "CLAWWATCH_API_BASE_URL" not in os.environ
    ):
        data["api_base_url"] = legacy_url

    return Config(**data)


def save_config(config: Config, config_path: Path | None = None) -> None:
    """Save configuration to file with camelCase keys."""
    path = config_path or get_config_path()
    path.parent.mkdir(parents=True, exist_ok=True)
    data = convert_to_camel(config.model_dump())
    path.write_text(json.dumps(data, indent=2) + "\n")
