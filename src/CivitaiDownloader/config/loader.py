"""
Configuration Loading with File/Env/CLI Precedence

Implements three-level config composition:
1. **File level** (YAML/JSON): base configuration
2. **Environment level**: CIVITAI_* prefixed variables override file
3. **CLI level**: flags the user actually passed win

Environment variables use double-underscore notation:
  CIVITAI_DOWNLOAD__CONCURRENCY=8         ->  download.concurrency=8
  CIVITAI_DOWNLOAD__MODEL_TYPES='["LORA"]' ->  download.model_types=[...]
  CIVITAI_API_KEY=...                     ->  api_key=...

After merging, ``database_path`` is derived from the final ``save_path`` when
it was not set explicitly.
"""

from __future__ import annotations

import json
import logging
import os
from collections.abc import Mapping
from pathlib import Path
from typing import Any, Optional

import yaml
from pydantic import ValidationError

from ..errors import ConfigError
from .models import DEFAULT_DATABASE_NAME, DownloaderConfig

__all__ = ["DEFAULT_ENV_PREFIX", "load_config", "find_default_config"]

_LOGGER = logging.getLogger(__name__)

DEFAULT_ENV_PREFIX = "CIVITAI_"
DEFAULT_CONFIG_NAMES = ("config.yaml", "config.yml", "config.json")

# Read by the CLI itself (``--config`` envvar), never merged as a setting.
_RESERVED_ENV_KEYS = frozenset({"config"})


def _read_file(path: str) -> dict[str, Any]:
    """
    Read YAML or JSON config file.

    Args:
        path: File path (suffix determines format: .yaml/.yml or .json)

    Returns:
        Parsed config dictionary

    Raises:
        ConfigError: If file cannot be read or parsed
    """
    p = Path(path)
    if not p.exists():
        raise ConfigError(f"Config file not found: {path}")

    try:
        text = p.read_text(encoding="utf-8")
    except OSError as e:
        raise ConfigError(f"Cannot read config file {path}: {e}") from e

    suffix = p.suffix.lower()

    if suffix in (".yaml", ".yml"):
        try:
            data = yaml.safe_load(text) or {}
        except yaml.YAMLError as e:
            raise ConfigError(f"Invalid YAML in {path}: {e}") from e
    elif suffix == ".json":
        try:
            data = json.loads(text) if text.strip() else {}
        except json.JSONDecodeError as e:
            raise ConfigError(f"Invalid JSON in {path}: {e}") from e
    else:
        raise ConfigError(f"Unsupported file format: {suffix}. Use .yaml or .json")

    if not isinstance(data, dict):
        raise ConfigError(f"Config file {path} must contain a mapping at the top level")
    return data


def _assign_nested(data: dict[str, Any], dotted_key: str, value: Any) -> None:
    """
    Assign value to nested dict using dot notation.

    Example:
        _assign_nested(data, "download.concurrency", 8)
        -> data["download"]["concurrency"] = 8
    """
    keys = dotted_key.split(".")
    current = data

    for key in keys[:-1]:
        if not isinstance(current.get(key), dict):
            current[key] = {}
        current = current[key]

    current[keys[-1]] = value


def _coerce_env_value(value: str) -> Any:
    """
    Decode JSON lists, objects, quoted strings and literals; keep the rest as strings.

    Numbers are left as strings; pydantic coerces them per field type, so a
    digit-only ``api_key`` or ``tag`` stays a string.
    """
    stripped = value.strip()
    if stripped[:1] in ("[", "{", '"'):
        try:
            return json.loads(stripped)
        except (json.JSONDecodeError, ValueError):
            return value

    lowered = stripped.lower()
    if lowered in ("true", "false"):
        return lowered == "true"
    if lowered == "null":
        return None

    return value


def _merge_env_overrides(data: dict[str, Any], env_prefix: str) -> dict[str, Any]:
    """Overlay ``<prefix>*`` environment variables onto ``data``."""
    for env_key, env_value in os.environ.items():
        if not env_key.startswith(env_prefix):
            continue

        relative_key = env_key[len(env_prefix) :].lower()
        if not relative_key or relative_key in _RESERVED_ENV_KEYS:
            continue
        dotted_key = relative_key.replace("__", ".")
        coerced_value = _coerce_env_value(env_value)
        _assign_nested(data, dotted_key, coerced_value)
        if "api_key" in dotted_key:
            _LOGGER.debug(f"Environment override: {env_key} -> {dotted_key} = ***")
        else:
            _LOGGER.debug(f"Environment override: {env_key} -> {dotted_key} = {coerced_value!r}")

    return data


def _merge_cli_overrides(
    data: dict[str, Any], cli_overrides: Mapping[str, Any] | None
) -> dict[str, Any]:
    """
    Recursively merge CLI overrides into base config dict.

    ``None`` values mean "flag not given" and never override lower levels.
    """
    if not cli_overrides:
        return data

    for key, value in cli_overrides.items():
        if value is None:
            continue
        if isinstance(value, Mapping) and isinstance(data.get(key), dict):
            data[key] = _merge_cli_overrides(data[key], value)
        elif isinstance(value, Mapping):
            data[key] = _merge_cli_overrides({}, value)
        else:
            data[key] = value

    return data


def find_default_config() -> Optional[str]:
    """Return the first ``config.yaml``/``config.yml``/``config.json`` in the working directory."""

    for name in DEFAULT_CONFIG_NAMES:
        candidate = Path(name)
        if candidate.is_file():
            return str(candidate)
    return None


def load_config(
    path: str | None = None,
    env_prefix: str = DEFAULT_ENV_PREFIX,
    cli_overrides: Mapping[str, Any] | None = None,
) -> DownloaderConfig:
    """
    Load DownloaderConfig from file, environment, and CLI with proper precedence.

    **Precedence:** defaults < file < environment < CLI

    Args:
        path: Path to YAML/JSON config file (optional)
        env_prefix: Environment variable prefix (default: CIVITAI_)
        cli_overrides: Nested dict of flag values; ``None`` leaves means unset

    Returns:
        Validated DownloaderConfig instance with ``database_path`` resolved

    Raises:
        ConfigError: If the file cannot be read or the merged config is invalid
    """
    data: dict[str, Any] = {}

    if path:
        data = _read_file(path)
        _LOGGER.info(f"Loaded config from {path}")

    data = _merge_env_overrides(data, env_prefix)
    data = _merge_cli_overrides(data, cli_overrides)

    try:
        config = DownloaderConfig.model_validate(data)
    except ValidationError as e:
        raise ConfigError(f"Configuration validation failed: {e}") from e

    if not config.database_path:
        derived = str(Path(config.save_path) / DEFAULT_DATABASE_NAME)
        config = config.model_copy(update={"database_path": derived})
        _LOGGER.debug(f"database_path derived from save_path: {derived}")

    _LOGGER.debug(f"Configuration validated. Config hash: {config.config_hash()[:8]}...")
    return config
