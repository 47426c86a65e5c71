"""Scheduler configuration loaded from ``CHAPTERFORGE_*`` environment variables."""

from __future__ import annotations

import os
from typing import Mapping, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

ENV_PREFIX = "CHAPTERFORGE_"
SERVICE_NAME = "scheduler"


class SchedulerSettings(BaseModel):
    """Tunables for one scheduler deployment.

    Every field can be overridden with ``CHAPTERFORGE_<FIELD_NAME>``; for
    example ``CHAPTERFORGE_DAILY_QUOTA=30``.
    """

    model_config = ConfigDict(frozen=True)

    # Quota manager
    daily_quota: int = Field(20, ge=1, le=500)
    min_spacing_minutes: int = Field(5, ge=1)
    max_spacing_minutes: int = Field(72, ge=1)
    retry_delay_minutes: int = Field(10, ge=1)
    jitter_minutes: int = Field(5, ge=0)
    quota_max_retries: int = Field(12, ge=1)

    # Candidate selection and claiming
    stale_window_minutes: int = Field(4, ge=1)
    tick_interval_minutes: int = Field(5, ge=1, le=1440)
    safety_factor: float = Field(1.5, ge=1.0)
    min_batch_size: int = Field(5, ge=1)
    max_batch_size: int = Field(60, ge=1)
    cold_start_per_tick: int = Field(2, ge=0)

    # Executor
    concurrency: int = Field(5, ge=1, le=100)
    resume_timeout_seconds: float = Field(150.0, gt=0)
    cold_start_timeout_seconds: float = Field(280.0, gt=0)
    invocation_budget_seconds: float = Field(300.0, gt=0)

    # Completion detection
    grace_chapters: int = Field(20, ge=0)
    arc_size: int = Field(20, ge=1)
    tail_window: int = Field(5, ge=0)
    natural_ending_threshold: float = Field(4.0, gt=0)
    ending_tail_chars: int = Field(1500, ge=100)
    ending_rules_path: Optional[str] = None

    # Post-write cadences
    synopsis_interval: int = Field(5, ge=1)
    bible_trigger_chapter: int = Field(3, ge=1)
    bible_refresh_interval: int = Field(150, ge=1)
    summary_attempts: int = Field(3, ge=1, le=10)
    summary_retry_delay_seconds: float = Field(1.5, ge=0)
    context_summaries: int = Field(5, ge=0, le=50)

    # Generation engine
    rate_limit_per_minute: float = Field(60.0, gt=0)
    rate_limit_burst: int = Field(10, ge=1)
    fallback_max_output_tokens: int = Field(4096, ge=256)
    fallback_temperature: float = Field(0.7, ge=0, le=2)

    # Infrastructure
    reference_timezone: str = "Asia/Ho_Chi_Minh"
    database_url: Optional[str] = None
    cron_secret: Optional[str] = None
    allow_unauthenticated: bool = False

    @field_validator("reference_timezone")
    @classmethod
    def validate_timezone(cls, value: str) -> str:
        try:
            ZoneInfo(value)
        except ZoneInfoNotFoundError as exc:
            raise ValueError(f"Unknown timezone: {value}") from exc
        return value

    @model_validator(mode="after")
    def check_bounds(self) -> "SchedulerSettings":
        if self.min_spacing_minutes > self.max_spacing_minutes:
            raise ValueError("min_spacing_minutes must not exceed max_spacing_minutes")
        if self.min_batch_size > self.max_batch_size:
            raise ValueError("min_batch_size must not exceed max_batch_size")
        budget = self.invocation_budget_seconds
        if self.resume_timeout_seconds >= budget or self.cold_start_timeout_seconds >= budget:
            raise ValueError("task timeouts must stay below the invocation budget")
        return self

    @property
    def timezone(self) -> ZoneInfo:
        return ZoneInfo(self.reference_timezone)

    @property
    def ticks_per_day(self) -> float:
        return 1440 / self.tick_interval_minutes


def load_scheduler_settings(environ: Mapping[str, str] | None = None) -> SchedulerSettings:
    """Build settings from the environment.

    Raises:
        pydantic.ValidationError: If a variable cannot be coerced or a bound
            is violated.
    """

    source = os.environ if environ is None else environ
    values: dict[str, str] = {}
    for name in SchedulerSettings.model_fields:
        raw = source.get(f"{ENV_PREFIX}{name.upper()}")
        if raw is not None and raw.strip() != "":
            values[name] = raw.strip()
    return SchedulerSettings.model_validate(values)
