"""Configuration management for deltasync."""

from __future__ import annotations

import os
import tomllib
import uuid
from enum import StrEnum
from pathlib import Path
from typing import Self
from urllib.parse import urlsplit

from pydantic import BaseModel, Field, SecretStr, field_validator, model_validator

# ---------------------------------------------------------------------------
# Paths
# ---------------------------------------------------------------------------

_BASE_DIR_NAME = ".deltasync"
_CONFIG_FILE = "config.toml"
_LOG_DIR = "logs"

DEFAULT_CLIENT_NAME = "default"
PRODUCTION_ENDPOINT = "https://deliver.kontent.ai"
PREVIEW_ENDPOINT = "https://preview-deliver.kontent.ai"


def get_base_dir() -> Path:
    """Return the base directory for all deltasync runtime files (~/.deltasync/)."""
    return Path.home() / _BASE_DIR_NAME


# ---------------------------------------------------------------------------
# Config models
# ---------------------------------------------------------------------------


class ApiMode(StrEnum):
    PUBLIC = "public"
    PREVIEW = "preview"
    SECURE = "secure"


class RetryConfig(BaseModel):
    """Settings for the retry/backoff policy around each HTTP call."""

    max_retries: int = Field(default=3, ge=0, description="Retries after the first attempt")
    base_delay: float = Field(default=1.0, gt=0, description="Seconds before the first retry")
    max_delay: float = Field(default=30.0, gt=0, description="Cap on a single retry delay")
    timeout: float = Field(default=30.0, gt=0, description="Per-attempt timeout in seconds")
    jitter: bool = Field(default=True, description="Randomize retry delays")


class SyncOptions(BaseModel):
    """Connection settings for one sync API client."""

    environment_id: str = Field(description="Environment GUID")
    api_mode: ApiMode = Field(default=ApiMode.PUBLIC, description="public, preview or secure")
    api_key: SecretStr = Field(default=SecretStr(""), description="Preview or secure delivery API key")
    production_endpoint: str = Field(default=PRODUCTION_ENDPOINT)
    preview_endpoint: str = Field(default=PREVIEW_ENDPOINT)
    enable_resilience: bool = Field(default=True, description="Retry transient failures")
    retry: RetryConfig = Field(default_factory=RetryConfig)

    @field_validator("environment_id")
    @classmethod
    def _check_environment_id(cls, value: str) -> str:
        try:
            parsed = uuid.UUID(value.strip())
        except ValueError:
            msg = "The environment ID must be a valid GUID."
            raise ValueError(msg) from None
        if parsed.int == 0:
            msg = "The environment ID cannot be an empty GUID."
            raise ValueError(msg)
        return str(parsed)

    @field_validator("production_endpoint", "preview_endpoint")
    @classmethod
    def _check_endpoint(cls, value: str) -> str:
        parts = urlsplit(value)
        if parts.scheme not in ("http", "https") or not parts.netloc:
            msg = f"Endpoint must be an absolute http(s) URL: {value!r}"
            raise ValueError(msg)
        return value.rstrip("/")

    @model_validator(mode="after")
    def _check_api_key(self) -> Self:
        if self.api_mode is not ApiMode.PUBLIC and not self.api_key.get_secret_value().strip():
            msg = f"api_key is required when using the {self.api_mode.value} API."
            raise ValueError(msg)
        return self

    @property
    def base_url(self) -> str:
        if self.api_mode is ApiMode.PREVIEW:
            return self.preview_endpoint
        return self.production_endpoint

    @property
    def requires_auth(self) -> bool:
        return self.api_mode is not ApiMode.PUBLIC


class SyncInitOptions(BaseModel):
    """Filters applied when a sync session is initialized."""

    content_types: frozenset[str] = Field(default_factory=frozenset)
    collections: frozenset[str] = Field(default_factory=frozenset)
    language: str | None = None
    ignore_language_fallbacks: bool = False

    def to_query_params(self) -> dict[str, str]:
        params: dict[str, str] = {}
        if self.content_types:
            params["system.type[in]"] = ",".join(sorted(self.content_types))
        if self.collections:
            params["system.collection[in]"] = ",".join(sorted(self.collections))
        if self.language and self.language.strip():
            params["system.language"] = self.language
            if self.ignore_language_fallbacks:
                params["language"] = self.language
        return params


class LoggingConfig(BaseModel):
    """Settings for log output."""

    level: str = Field(default="info", description="Logging level")


class AppConfig(BaseModel):
    """Top-level application configuration."""

    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    clients: dict[str, SyncOptions] = Field(default_factory=dict)

    # -- derived paths (not stored in TOML) --------------------------------

    @property
    def base_dir(self) -> Path:
        return get_base_dir()

    @property
    def log_dir(self) -> Path:
        return self.base_dir / _LOG_DIR


# ---------------------------------------------------------------------------
# Filesystem helpers
# ---------------------------------------------------------------------------


def ensure_dirs() -> None:
    """Create the base directory and log directory if they don't already exist."""
    base = get_base_dir()
    base.mkdir(mode=0o700, parents=True, exist_ok=True)
    (base / _LOG_DIR).mkdir(mode=0o700, parents=True, exist_ok=True)


def default_config_path() -> Path:
    return get_base_dir() / _CONFIG_FILE


# ---------------------------------------------------------------------------
# Load / save
# ---------------------------------------------------------------------------


def load_config(path: Path | None = None) -> AppConfig:
    """Load configuration from TOML, falling back to defaults if the file is missing."""
    path = path or default_config_path()
    if not path.is_file():
        return AppConfig()

    with open(path, "rb") as f:
        raw = tomllib.load(f)

    return AppConfig.model_validate(raw)


def _format_toml_value(value: object) -> str:
    """Format a single Python value as a TOML literal."""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, float)):
        return repr(value)
    if isinstance(value, SecretStr):
        value = value.get_secret_value()
    if isinstance(value, str):
        escaped = value.replace("\\", "\\\\").replace('"', '\\"').replace("\n", "\\n").replace("\t", "\\t")
        return f'"{escaped}"'
    msg = f"Unsupported TOML value type: {type(value)}"
    raise TypeError(msg)


def _dump_table(header: str, model: BaseModel, lines: list[str]) -> None:
    lines.append(f"[{header}]")
    nested: list[tuple[str, BaseModel]] = []
    for key, value in model:
        if isinstance(value, BaseModel):
            nested.append((key, value))
            continue
        lines.append(f"{key} = {_format_toml_value(value)}")
    lines.append("")
    for key, value in nested:
        _dump_table(f"{header}.{key}", value, lines)


def _dump_toml(config: AppConfig) -> str:
    """Serialize an AppConfig to TOML.

    Handles the shapes we actually store (scalar tables nested under
    ``clients``), which avoids pulling in a TOML-writing library.
    """
    lines: list[str] = []
    _dump_table("logging", config.logging, lines)
    for name, options in config.clients.items():
        _dump_table(f"clients.{_format_toml_value(name)}", options, lines)
    return "\n".join(lines)


def save_config(config: AppConfig, path: Path | None = None) -> None:
    """Save configuration to TOML and restrict file permissions to owner-only."""
    if path is None:
        ensure_dirs()
        path = default_config_path()
    path.write_text(_dump_toml(config), encoding="utf-8")
    os.chmod(path, 0o600)
