"""Monitoring engine configuration.

Controls the polling period, worker pool size, pacing delays, retry and
circuit breaker thresholds, history retention and the optional
active-hours window. All settings can be overridden via ``MONITOR_*``
environment variables.
"""

from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class MonitorConfig(BaseSettings):
    """Configuration for the profile monitor."""

    model_config = SettingsConfigDict(
        env_prefix="MONITOR_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Scheduling
    check_interval_minutes: int = Field(
        default=5,
        ge=1,
        description="Minutes between check cycles",
    )
    concurrency: int = Field(
        default=5,
        ge=1,
        le=50,
        description="Maximum per-source checks running at once",
    )
    source_delay_min_seconds: float = Field(
        default=2.0,
        ge=0.0,
        description="Lower bound of the randomized pause after each source",
    )
    source_delay_max_seconds: float = Field(
        default=3.0,
        ge=0.0,
        description="Upper bound of the randomized pause after each source",
    )

    # Fetching
    strategy_delay_seconds: float = Field(
        default=0.5,
        ge=0.0,
        description="Pause between successive fetch strategies",
    )
    fetch_retry_attempts: int = Field(
        default=3,
        ge=1,
        le=10,
        description="Attempts per fetch strategy, including the first",
    )
    fetch_retry_base_delay: float = Field(
        default=1.0,
        ge=0.0,
        description="Backoff delay in seconds before the second attempt",
    )
    fetch_retry_max_delay: float = Field(
        default=10.0,
        ge=0.0,
        description="Cap on the exponential backoff delay",
    )

    # Circuit breaker
    circuit_failure_threshold: int = Field(
        default=5,
        ge=1,
        description="Consecutive failed checks before a source is suspended",
    )
    circuit_reset_timeout_seconds: float = Field(
        default=1800.0,
        gt=0,
        description="Seconds a tripped source stays suspended before a trial check",
    )

    # History and duplicates
    history_retention_days: int = Field(
        default=30,
        ge=1,
        description="Days of notification history to keep",
    )
    duplicate_scan_limit: int = Field(
        default=4,
        ge=0,
        le=100,
        description="Recent destination messages scanned for already-posted items",
    )

    # Active hours (both or neither)
    active_hours_start: int | None = Field(
        default=None,
        ge=0,
        le=23,
        description="First hour (inclusive) in which polling runs",
    )
    active_hours_end: int | None = Field(
        default=None,
        ge=0,
        le=23,
        description="Hour (exclusive) at which polling stops",
    )
    active_hours_timezone: str = Field(
        default="Asia/Tokyo",
        description="IANA timezone the active-hours window is expressed in",
    )

    @field_validator("active_hours_timezone")
    @classmethod
    def _known_timezone(cls, value: str) -> str:
        try:
            ZoneInfo(value)
        except (ZoneInfoNotFoundError, ValueError) as e:
            raise ValueError(f"Unknown timezone: {value}") from e
        return value

    @model_validator(mode="after")
    def _check_bounds(self) -> "MonitorConfig":
        if self.source_delay_max_seconds < self.source_delay_min_seconds:
            raise ValueError("source_delay_max_seconds must be >= source_delay_min_seconds")
        if self.fetch_retry_max_delay < self.fetch_retry_base_delay:
            raise ValueError("fetch_retry_max_delay must be >= fetch_retry_base_delay")
        if (self.active_hours_start is None) != (self.active_hours_end is None):
            raise ValueError("active_hours_start and active_hours_end must be set together")
        return self

    @property
    def check_interval_seconds(self) -> float:
        return self.check_interval_minutes * 60.0

    @property
    def active_hours_configured(self) -> bool:
        return self.active_hours_start is not None and self.active_hours_end is not None
