"""
Configuration schema and loading for surveyflow.

Uses Pydantic for validation and PyYAML for the settings file.
Settings are frozen (immutable) after construction.

Example settings.yaml:

    database:
      url: postgresql://surveyflow@db/surveyflow
    batcher:
      max_batch_size: 50
      max_wait_seconds: 5
    logging:
      json_output: true
"""

import os
from pathlib import Path
from typing import Any, Optional, Union

import yaml
from pydantic import BaseModel, Field

DATABASE_URL_ENV = "SURVEYFLOW_DATABASE_URL"


class DatabaseSettings(BaseModel):
    """Relational store connection."""

    model_config = {"frozen": True}

    url: str = Field(default="sqlite:///./surveyflow.db", description="SQLAlchemy connection URL")


class BatcherSettings(BaseModel):
    """Submission window bounds: whichever limit is hit first closes the window."""

    model_config = {"frozen": True}

    max_batch_size: int = Field(default=50, gt=0, description="Events per window")
    max_wait_seconds: float = Field(default=5.0, gt=0, description="Seconds a window may stay open")
    poll_timeout_seconds: float = Field(default=1.0, gt=0, description="Blocking wait on the event source")


class CacheSettings(BaseModel):
    """TTLs for keys kept in the fast key-value cache."""

    model_config = {"frozen": True}

    marker_ttl_seconds: int = Field(default=604800, gt=0, description="Idempotency marker lifetime (7 days)")
    session_ttl_seconds: int = Field(default=86400, gt=0, description="Session state lifetime (24 hours)")


class MaintenanceSettings(BaseModel):
    """Stale response cleanup."""

    model_config = {"frozen": True}

    stale_after_seconds: float = Field(default=120.0, gt=0, description="Heartbeat silence before DROPPED")
    interval_seconds: float = Field(default=60.0, gt=0)


class LoggingSettings(BaseModel):
    model_config = {"frozen": True}

    json_output: bool = False
    level: str = "INFO"


class EngineSettings(BaseModel):
    """Top-level settings for an engine process."""

    model_config = {"frozen": True}

    database: DatabaseSettings = Field(default_factory=DatabaseSettings)
    batcher: BatcherSettings = Field(default_factory=BatcherSettings)
    cache: CacheSettings = Field(default_factory=CacheSettings)
    maintenance: MaintenanceSettings = Field(default_factory=MaintenanceSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)


def load_settings(path: Optional[Union[str, Path]] = None) -> EngineSettings:
    """
    Load settings from a YAML file, then apply environment overrides.

    A missing path (or None) yields defaults. SURVEYFLOW_DATABASE_URL, when
    set, replaces database.url.

    Raises:
        ValueError: If the file is not a YAML mapping
        pydantic.ValidationError: If a value fails validation
    """
    raw: dict[str, Any] = {}
    if path is not None and Path(path).exists():
        loaded = yaml.safe_load(Path(path).read_text(encoding="utf-8"))
        if loaded is not None and not isinstance(loaded, dict):
            raise ValueError(f"Settings file {path} must contain a mapping, got {type(loaded).__name__}")
        raw = loaded or {}

    env_url = os.environ.get(DATABASE_URL_ENV)
    if env_url:
        raw = {**raw, "database": {**(raw.get("database") or {}), "url": env_url}}

    return EngineSettings.model_validate(raw)
