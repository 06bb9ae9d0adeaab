"""Config loading."""

from __future__ import annotations

from pathlib import Path
from typing import Any

import yaml
from loguru import logger

from xmppcheck.config.schema import _load_env_overrides
from xmppcheck.core.errors import ProbeConfigurationError


def _deep_update(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Recursively merge override into base."""
    result = dict(base)
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_update(result[key], value)
        else:
            result[key] = value
    return result


def load_config(path: str | Path) -> dict[str, Any]:
    """Load config from YAML file. Use SafeLoader. Returns raw dict.

    A missing file or broken YAML raises ProbeConfigurationError; a file that
    does not hold a mapping is treated as empty.
    """
    path = Path(path)
    if not path.exists():
        raise ProbeConfigurationError(f"Config file not found: {path}", code="config_not_found")

    try:
        with open(path) as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as exc:
        logger.error("Failed to parse config {}: {}", path, exc)
        raise ProbeConfigurationError(
            f"Invalid config file {path}", code="config_syntax", original_error=exc
        ) from exc
    if data is None:
        return {}
    if not isinstance(data, dict):
        logger.warning("Config file {} has invalid structure (expected dict)", path)
        return {}
    return data


def load_config_with_env(path: str | Path | None = None) -> dict[str, Any]:
    """Load config from YAML (when given) and overlay env-derived values.

    A ``.env`` file in the working directory is honored.
    """
    from dotenv import find_dotenv, load_dotenv

    load_dotenv(find_dotenv(usecwd=True))
    data = load_config(path) if path is not None else {}
    return _deep_update(data, _load_env_overrides())
