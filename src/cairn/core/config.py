"""
Configuration management.

Loads settings from environment variables and .env file.
Prefix: CAIRN_ (nested sections use "__", e.g. CAIRN_COMPRESSION__ARCHIVE_AFTER=60d)

The resolved Settings object is built once and handed to every component.
"""

import re
from datetime import timedelta
from pathlib import Path

from pydantic import (
    BaseModel,
    Field,
    ValidationError,
    ValidationInfo,
    field_validator,
    model_validator,
)
from pydantic_settings import BaseSettings, SettingsConfigDict

from cairn.core.errors import ConfigurationError

DURATION_PATTERN = re.compile(r"^(\d+)([dhm])$")

_UNIT_MS = {
    "d": 24 * 60 * 60 * 1000,
    "h": 60 * 60 * 1000,
    "m": 60 * 1000,
}


def parse_duration(text: str) -> int:
    """
    Parse a compact duration string into milliseconds.

    Supported formats:
    - "7d" → 7 days
    - "24h" → 24 hours
    - "90m" → 90 minutes

    Raises:
        ConfigurationError: If format is invalid
    """
    match = DURATION_PATTERN.match(text)
    if not match:
        raise ConfigurationError(
            f"Invalid duration format: {text!r}. Expected format: 7d, 24h, 60m"
        )
    return int(match.group(1)) * _UNIT_MS[match.group(2)]


def duration_delta(text: str) -> timedelta:
    """Parse a duration string into a timedelta."""
    return timedelta(milliseconds=parse_duration(text))


def _check_unit_interval(name: str, value: float) -> float:
    if not 0.0 <= value <= 1.0:
        raise ValueError(f"{name} must be within [0, 1], got {value}")
    return value


class SyncConfig(BaseModel):
    """Markdown reconciliation and file watching."""

    enabled: bool = True
    watch_files: bool = True
    debounce_ms: int = Field(default=1500, ge=0)
    poll_interval: float = Field(default=1.0, gt=0, description="Watcher poll period, seconds")
    file_pattern: str = "*.md"
    min_section_chars: int = Field(default=50, ge=0)
    similarity_threshold: float = 0.7

    @field_validator("similarity_threshold")
    @classmethod
    def _threshold_in_range(cls, v: float) -> float:
        return _check_unit_interval("similarity_threshold", v)


class CompressionConfig(BaseModel):
    """Compaction stage thresholds."""

    enabled: bool = True
    daily_to_weekly: str = "7d"
    weekly_to_monthly: str = "30d"
    archive_after: str = "90d"
    min_memories_for_summary: int = Field(default=5, ge=1)
    min_memories_for_monthly: int = Field(default=2, ge=1)
    batch_limit: int = Field(default=1000, ge=1)
    summary_timeout: float = Field(default=30.0, gt=0, description="Seconds per summary call")

    @field_validator("daily_to_weekly", "weekly_to_monthly", "archive_after")
    @classmethod
    def _valid_duration(cls, v: str) -> str:
        parse_duration(v)
        return v

    @property
    def weekly_age(self) -> timedelta:
        return duration_delta(self.daily_to_weekly)

    @property
    def monthly_age(self) -> timedelta:
        return duration_delta(self.weekly_to_monthly)

    @property
    def archive_age(self) -> timedelta:
        return duration_delta(self.archive_after)


class ImportanceConfig(BaseModel):
    """Background importance recalculation."""

    enabled: bool = True
    decay_factor: float = 0.95  # daily retention, 0.95 = 5% forgetting per day
    access_boost: float = Field(default=0.05, ge=0)
    recency_boost: float = Field(default=0.1, ge=0)
    manual_boost: float = Field(default=1.5, ge=1)

    @field_validator("decay_factor")
    @classmethod
    def _decay_open_interval(cls, v: float) -> float:
        if not 0.0 < v < 1.0:
            raise ValueError(f"decay_factor must be within (0, 1), got {v}")
        return v


class QueryConfig(BaseModel):
    """Query-time ranking and snippet extraction."""

    importance_weight: float = 0.3
    recency_weight: float = 0.2
    default_limit: int = Field(default=10, ge=1)
    snippet_chars: int = Field(default=700, ge=1)
    snippet_before: int = Field(default=200, ge=0)

    @field_validator("importance_weight", "recency_weight")
    @classmethod
    def _weight_in_range(cls, v: float, info: ValidationInfo) -> float:
        return _check_unit_interval(info.field_name, v)

    @model_validator(mode="after")
    def _weights_fit(self) -> "QueryConfig":
        if self.importance_weight + self.recency_weight > 1.0:
            raise ValueError("importance_weight + recency_weight must not exceed 1")
        if self.snippet_before >= self.snippet_chars:
            raise ValueError("snippet_before must be smaller than snippet_chars")
        return self


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="CAIRN_",
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
    )

    # Storage
    workspace_dir: Path = Field(default=Path("."), description="Root holding MEMORY.md and memory/")
    data_dir: Path = Field(default=Path("data"), description="Data storage directory")
    db_name: str = Field(default="cairn.db", description="SQLite database name")

    sync: SyncConfig = Field(default_factory=SyncConfig)
    compression: CompressionConfig = Field(default_factory=CompressionConfig)
    importance: ImportanceConfig = Field(default_factory=ImportanceConfig)
    query: QueryConfig = Field(default_factory=QueryConfig)

    @property
    def db_path(self) -> Path:
        return self.data_dir / self.db_name


def load_settings(**overrides) -> Settings:
    """Build the resolved settings, turning validation failures into ConfigurationError."""
    try:
        return Settings(**overrides)
    except ValidationError as e:
        raise ConfigurationError(str(e)) from e


def get_settings() -> Settings:
    """Get settings from environment and .env file."""
    return load_settings()
