"""Configuration loading, validation, and access."""

from __future__ import annotations

import os
from pathlib import Path

import yaml
from pydantic import BaseModel, ConfigDict, ValidationError, field_validator, model_validator

from tariff_sync.core.exceptions import ConfigError
from tariff_sync.core.models import DEFAULT_BOX_SIZE, PublishBackend, StorageBackend

DEFAULT_PROVIDER_URL = "https://common-api.wildberries.ru/api/v1/tariffs/box"


class ProviderConfig(BaseModel):
    """Wildberries tariffs API access configuration."""

    model_config = ConfigDict(frozen=True)

    api_key: str
    base_url: str = DEFAULT_PROVIDER_URL
    request_timeout: float = 30
    rate_limit: int = 1

    @field_validator("api_key")
    @classmethod
    def api_key_not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("api_key must not be empty")
        return v.strip()

    @field_validator("base_url")
    @classmethod
    def base_url_is_http(cls, v: str) -> str:
        if not v.startswith(("https://", "http://")):
            raise ValueError("base_url must be an http(s) URL")
        return v

    @field_validator("rate_limit")
    @classmethod
    def rate_limit_bounds(cls, v: int) -> int:
        if v < 1 or v > 10:
            raise ValueError("rate_limit must be between 1 and 10 requests/second")
        return v


class StorageConfig(BaseModel):
    """Storage backend configuration."""

    model_config = ConfigDict(frozen=True)

    backend: StorageBackend = StorageBackend.SQLITE
    sqlite_path: str = "./data/tariffs.db"
    box_size: int = DEFAULT_BOX_SIZE


class PublishConfig(BaseModel):
    """Snapshot destination configuration."""

    model_config = ConfigDict(frozen=True)

    backend: PublishBackend = PublishBackend.GOOGLE_SHEETS
    destinations: list[str]
    credentials_path: str | None = None
    sheet_tab_id: int = 0
    csv_directory: str = "./data/snapshots"
    continue_on_error: bool = False
    request_timeout: float = 30

    @field_validator("destinations", mode="before")
    @classmethod
    def split_destinations(cls, v: object) -> object:
        """Accept "id1, id2" from environment variables."""
        if isinstance(v, str):
            return [part.strip() for part in v.split(",") if part.strip()]
        return v

    @field_validator("destinations")
    @classmethod
    def destinations_not_empty(cls, v: list[str]) -> list[str]:
        cleaned = [d.strip() for d in v if d.strip()]
        if not cleaned:
            raise ValueError("destinations must list at least one destination id")
        return cleaned

    @model_validator(mode="after")
    def credentials_required_for_sheets(self) -> PublishConfig:
        if self.backend == PublishBackend.GOOGLE_SHEETS and not self.credentials_path:
            raise ValueError("credentials_path is required when backend is 'google_sheets'")
        return self


class ScheduleConfig(BaseModel):
    """Recurring trigger configuration."""

    model_config = ConfigDict(frozen=True)

    cron: str = "0 * * * *"
    timezone: str = "UTC"


class TimeoutsConfig(BaseModel):
    """Per-stage and per-run deadlines, in seconds."""

    model_config = ConfigDict(frozen=True)

    fetch: float = 60
    persist: float = 30
    publish: float = 120
    run: float = 300

    @field_validator("fetch", "persist", "publish", "run")
    @classmethod
    def positive(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("timeouts must be > 0")
        return v


class LoggingConfig(BaseModel):
    """Log output configuration."""

    model_config = ConfigDict(frozen=True)

    level: str = "INFO"
    format: str = "%(message)s"

    @field_validator("level")
    @classmethod
    def known_level(cls, v: str) -> str:
        upper = v.upper()
        if upper not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"unknown log level: {v!r}")
        return upper


class SyncConfig(BaseModel):
    """Root configuration for the tariff synchronization job."""

    model_config = ConfigDict(frozen=True)

    provider: ProviderConfig
    publish: PublishConfig
    storage: StorageConfig = StorageConfig()
    schedule: ScheduleConfig = ScheduleConfig()
    timeouts: TimeoutsConfig = TimeoutsConfig()
    logging: LoggingConfig = LoggingConfig()


CONFIG_ENV_VAR = "TARIFF_SYNC_CONFIG"
DEFAULT_CONFIG_FILE = "tariff-sync.yml"

# Values that are always text even when they look like numbers or booleans
_STRING_FIELDS = frozenset({"api_key", "destinations", "credentials_path", "sqlite_path"})
_BOOLEANS = {"true": True, "false": False}


def load_config(
    config_path: str | None = None,
    env_prefix: str = "TARIFF_SYNC_",
) -> SyncConfig:
    """Build the SyncConfig from environment, YAML file and defaults.

    Environment variables win over the YAML file, which wins over the
    built-in defaults. ``__`` in a variable name descends one section::

        TARIFF_SYNC_TIMEOUTS__FETCH=10  ->  timeouts.fetch = 10

    The YAML file is ``config_path`` if given, else the file named by
    ``TARIFF_SYNC_CONFIG``, else ``./tariff-sync.yml`` when it exists.
    """
    path = _resolve_config_path(config_path)
    raw = _load_yaml(path) if path is not None else {}
    try:
        return SyncConfig.model_validate(_merge_env_vars(raw, env_prefix))
    except ValidationError as e:
        raise ConfigError(str(e), context={"source": "load_config"}) from e


def _resolve_config_path(explicit: str | None) -> Path | None:
    candidates = ((explicit, "config_path"), (os.environ.get(CONFIG_ENV_VAR), CONFIG_ENV_VAR))
    for value, origin in candidates:
        if not value:
            continue
        if not Path(value).is_file():
            raise ConfigError(
                f"Config file not found: {value} (from {origin})",
                context={"field": origin, "value": value},
            )
        return Path(value)

    default = Path(DEFAULT_CONFIG_FILE)
    return default if default.is_file() else None


def _load_yaml(path: Path) -> dict:
    context = {"field": "config_file", "value": str(path)}
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as e:
        raise ConfigError(f"Failed to parse YAML config {path}: {e}", context=context) from e
    except OSError as e:
        raise ConfigError(f"Cannot read config file {path}: {e}", context=context) from e
    if not isinstance(data, dict):
        raise ConfigError(
            f"YAML config must be a mapping, got {type(data).__name__}",
            context=context,
        )
    return data


def _merge_env_vars(base: dict, prefix: str) -> dict:
    """Return ``base`` with every ``<prefix>SECTION__FIELD`` variable applied.

    Nested sections are copied before being written, so ``base`` is left
    untouched.
    """
    result = dict(base)
    for key, raw in os.environ.items():
        if not key.startswith(prefix) or key == CONFIG_ENV_VAR:
            continue
        *sections, field = key[len(prefix):].lower().split("__")

        target = result
        for section in sections:
            nested = target.get(section)
            nested = dict(nested) if isinstance(nested, dict) else {}
            target[section] = nested
            target = nested
        target[field] = _env_value(field, raw)
    return result


def _env_value(field: str, raw: str) -> str | int | float | bool:
    """Type an environment string: booleans, then int, then float, else text."""
    if field in _STRING_FIELDS:
        return raw
    if raw.lower() in _BOOLEANS:
        return _BOOLEANS[raw.lower()]
    for number in (int, float):
        try:
            return number(raw)
        except ValueError:
            continue
    return raw
