"""
Settings loader (``pos_config.loader``).

Responsibility
--------------
Reads the optional YAML settings file, overlays environment variables and
parses the merged mapping into the frozen ``Settings`` dataclass.

Failure modes
-------------
* Missing YAML file named explicitly  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Unparseable or out-of-range value  -> ``InvalidSettingsError``.
* Unknown keys are ignored with a warning.
"""

from __future__ import annotations

import os
from dataclasses import fields
from pathlib import Path
from typing import Any, Mapping
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import yaml

from pos_config.settings import Settings
from pos_kernel.exceptions import InvalidSettingsError
from pos_kernel.logging_config import get_logger

logger = get_logger("config.loader")

CONFIG_PATH_ENV = "POS_INGESTION_CONFIG"
ENV_PREFIX = "POS_"

_TRUE = frozenset({"1", "true", "yes", "on"})
_FALSE = frozenset({"0", "false", "no", "off"})
_LOG_LEVELS = frozenset({"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"})


def load_yaml_file(path: Path) -> dict[str, Any]:
    """Load a YAML file and return its top-level mapping (empty if blank)."""
    with open(path) as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise InvalidSettingsError(str(path), type(data).__name__, "top level must be a mapping")
    # Allow the settings to sit under an ``ingestion:`` section
    section = data.get("ingestion")
    return dict(section) if isinstance(section, dict) else data


def _env_overrides(environ: Mapping[str, str]) -> dict[str, Any]:
    overrides: dict[str, Any] = {}
    if "DATABASE_URL" in environ:
        overrides["database_url"] = environ["DATABASE_URL"]
    for f in fields(Settings):
        key = f"{ENV_PREFIX}{f.name.upper()}"
        if key in environ:
            overrides[f.name] = environ[key]
    if f"{ENV_PREFIX}SYNC_INTERVAL_MINUTES" in environ:
        overrides["sync_interval_minutes"] = environ[f"{ENV_PREFIX}SYNC_INTERVAL_MINUTES"]
    return overrides


def _as_bool(key: str, value: Any) -> bool:
    if isinstance(value, bool):
        return value
    text = str(value).strip().lower()
    if text in _TRUE:
        return True
    if text in _FALSE:
        return False
    raise InvalidSettingsError(key, value, "expected a boolean")


def _as_positive(key: str, value: Any, cast: type) -> Any:
    try:
        number = cast(value)
    except (TypeError, ValueError) as exc:
        raise InvalidSettingsError(key, value, f"expected {cast.__name__}") from exc
    if number <= 0:
        raise InvalidSettingsError(key, value, "must be positive")
    return number


def parse_settings(data: Mapping[str, Any]) -> Settings:
    """Parse a merged settings mapping into ``Settings``."""
    known = {f.name for f in fields(Settings)}
    values: dict[str, Any] = {}

    for key, raw in data.items():
        if key == "sync_interval_minutes":
            values["sync_interval_seconds"] = _as_positive(key, raw, int) * 60
            continue
        if key not in known:
            logger.warning("unknown_setting_ignored", extra={"key": key})
            continue
        values[key] = raw

    parsed: dict[str, Any] = {}
    for key, raw in values.items():
        if key in ("sync_interval_seconds", "pool_size", "max_overflow"):
            parsed[key] = _as_positive(key, raw, int)
        elif key == "request_timeout_seconds":
            parsed[key] = _as_positive(key, raw, float)
        elif key in ("run_on_startup", "echo_sql", "create_tables"):
            parsed[key] = _as_bool(key, raw)
        elif key == "timezone":
            try:
                ZoneInfo(str(raw))
            except (ZoneInfoNotFoundError, ValueError) as exc:
                raise InvalidSettingsError(key, raw, "unknown time zone") from exc
            parsed[key] = str(raw)
        elif key == "log_level":
            level = str(raw).upper()
            if level not in _LOG_LEVELS:
                raise InvalidSettingsError(key, raw, "unknown log level")
            parsed[key] = level
        elif key == "vendor_filter":
            items = raw.split(",") if isinstance(raw, str) else list(raw or ())
            parsed[key] = tuple(str(v).strip() for v in items if str(v).strip())
        elif key == "seed_file":
            parsed[key] = str(raw) if raw else None
        else:
            parsed[key] = str(raw)

    return Settings(**parsed)


def load_settings(
    path: Path | str | None = None,
    environ: Mapping[str, str] | None = None,
) -> Settings:
    """
    Load settings from YAML and environment.

    Precedence (highest first): environment variables, the YAML file,
    dataclass defaults.  ``path`` defaults to ``$POS_INGESTION_CONFIG``.
    """
    env = os.environ if environ is None else environ
    data: dict[str, Any] = {}

    config_path = path or env.get(CONFIG_PATH_ENV)
    if config_path:
        data.update(load_yaml_file(Path(config_path)))

    data.update(_env_overrides(env))
    settings = parse_settings(data)
    logger.info(
        "settings_loaded",
        extra={
            "config_path": str(config_path) if config_path else None,
            "sync_interval_seconds": settings.sync_interval_seconds,
            "timezone": settings.timezone,
        },
    )
    return settings
