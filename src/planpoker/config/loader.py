"""Configuration loading for planpoker.

Sources, lowest priority first:
    1. Pydantic model defaults
    2. ``$XDG_CONFIG_HOME/planpoker/config.toml`` (``~/.config`` if unset)
    3. ``./planpoker.toml``
    4. the file named by ``$PLANPOKER_CONFIG``
    5. an explicit ``path`` argument
    6. ``PLANPOKER_DATABASE_URL`` / ``PLANPOKER_LOG_LEVEL`` / ``PLANPOKER_LOG_FILE``
    7. programmatic ``overrides``
"""

from __future__ import annotations

import os
import tomllib
from pathlib import Path
from typing import Any

from pydantic import ValidationError as PydanticValidationError

from planpoker.core.errors import ConfigError

from .schema import PlanPokerConfig

# env var -> (section, key)
ENV_OVERRIDES: dict[str, tuple[str, str]] = {
    "PLANPOKER_DATABASE_URL": ("database", "url"),
    "PLANPOKER_LOG_LEVEL": ("logging", "level"),
    "PLANPOKER_LOG_FILE": ("logging", "file"),
}


def _user_config_path() -> Path:
    base = os.environ.get("XDG_CONFIG_HOME") or str(Path.home() / ".config")
    return Path(base) / "planpoker" / "config.toml"


def _config_files(explicit: str | Path | None) -> list[Path]:
    """Existing config files in merge order.

    A missing ``$PLANPOKER_CONFIG`` target or explicit path is an error;
    the implicit user and project files are simply skipped.
    """
    implicit = (_user_config_path(), Path.cwd() / "planpoker.toml")
    files = [p for p in implicit if p.is_file()]

    env_path = os.environ.get("PLANPOKER_CONFIG")
    if env_path:
        if not Path(env_path).is_file():
            msg = f"PLANPOKER_CONFIG points to non-existent file: {env_path}"
            raise ConfigError(msg)
        files.append(Path(env_path))

    if explicit is not None:
        if not Path(explicit).is_file():
            msg = f"Config file not found: {explicit}"
            raise ConfigError(msg)
        files.append(Path(explicit))

    return files


def _read_toml(path: Path) -> dict[str, Any]:
    try:
        return tomllib.loads(path.read_text(encoding="utf-8"))
    except tomllib.TOMLDecodeError as e:
        msg = f"Invalid TOML in {path}: {e}"
        raise ConfigError(msg) from e
    except OSError as e:
        msg = f"Cannot read config file {path}: {e}"
        raise ConfigError(msg) from e


def _env_overrides() -> dict[str, Any]:
    found: dict[str, Any] = {}
    for var, (section, key) in ENV_OVERRIDES.items():
        value = os.environ.get(var)
        if value:
            found.setdefault(section, {})[key] = value
    return found


def _deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Merge *override* into a copy of *base*; nested tables merge key by key."""
    merged = dict(base)
    for key, value in override.items():
        current = merged.get(key)
        if isinstance(current, dict) and isinstance(value, dict):
            merged[key] = _deep_merge(current, value)
        else:
            merged[key] = value
    return merged


def load_config(
    path: str | Path | None = None,
    overrides: dict[str, Any] | None = None,
) -> PlanPokerConfig:
    """Load and validate configuration.

    Args:
        path: Explicit config file, merged after every discovered file.
        overrides: Nested dict merged last.

    Raises:
        ConfigError: On a missing file, invalid TOML, or a value the
            schema rejects.
    """
    merged: dict[str, Any] = {}
    for layer in (
        *(_read_toml(f) for f in _config_files(path)),
        _env_overrides(),
        overrides or {},
    ):
        merged = _deep_merge(merged, layer)

    try:
        config = PlanPokerConfig.model_validate(merged)
    except PydanticValidationError as e:
        msg = f"Configuration validation failed: {e}"
        raise ConfigError(msg) from e

    if config.general.session_code_attempts < 1:
        msg = "general.session_code_attempts must be at least 1"
        raise ConfigError(msg)

    return config
