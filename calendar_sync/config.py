"""Configuration management - loads settings.yaml and environment variables."""

import os
from pathlib import Path
from typing import Any, Mapping, Optional

import yaml
from pydantic import ValidationError

from calendar_sync.models.settings import Settings

DEFAULT_CONFIG_PATH = "config/settings.yaml"


class ConfigurationError(Exception):
    """Raised when configuration is invalid or missing."""

    pass


def resolve_config_path(config_path: Optional[str] = None, environ: Optional[Mapping[str, str]] = None) -> Path:
    """Resolve configuration file path from argument, env var, or default."""
    environ = os.environ if environ is None else environ
    if config_path:
        return Path(config_path)

    env_path = environ.get("CONFIG_PATH")
    if env_path:
        return Path(env_path)

    return Path(DEFAULT_CONFIG_PATH)


def _read_yaml(path: Path) -> dict[str, Any]:
    try:
        with open(path, encoding="utf-8") as f:
            raw_config = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Failed to parse YAML configuration {path}: {e}")

    if raw_config is None:
        return {}
    if not isinstance(raw_config, dict):
        raise ConfigurationError(f"Configuration file must contain a mapping: {path}")
    return raw_config


def _env_overrides(environ: Mapping[str, str]) -> dict[str, str]:
    """Pick up environment variables named after settings fields (upper case)."""
    overrides = {}
    for field_name in Settings.model_fields:
        value = environ.get(field_name.upper())
        if value is not None and value != "":
            overrides[field_name] = value
    return overrides


def load_settings(
    config_path: Optional[str] = None,
    environ: Optional[Mapping[str, str]] = None,
) -> Settings:
    """Build validated settings from an optional YAML file plus environment.

    Environment variables win over the file. A missing file is not an error
    unless it was requested explicitly.

    Args:
        config_path: Path to settings.yaml. If not provided, uses CONFIG_PATH env var
                    or defaults to ./config/settings.yaml
        environ: Environment mapping (defaults to os.environ)

    Returns:
        Settings instance

    Raises:
        ConfigurationError: If the file cannot be parsed or validation fails
    """
    environ = os.environ if environ is None else environ
    path = resolve_config_path(config_path, environ)

    raw_config: dict[str, Any] = {}
    if path.exists():
        raw_config = _read_yaml(path)
    elif config_path:
        raise ConfigurationError(f"Configuration file not found: {path}")

    raw_config.update(_env_overrides(environ))

    try:
        return Settings(**raw_config)
    except ValidationError as e:
        raise ConfigurationError(f"Configuration validation failed:\n{e}")
