"""Tests for scheduler settings and reference-day helpers."""

from datetime import date, datetime, timezone

import pytest
from pydantic import ValidationError

from services.scheduler.app.clock import day_bounds, minutes_remaining, reference_day
from services.scheduler.app.settings import SchedulerSettings, load_scheduler_settings


def test_defaults() -> None:
    settings = load_scheduler_settings({})
    assert settings.daily_quota == 20
    assert settings.stale_window_minutes == 4
    assert settings.cold_start_per_tick == 2
    assert settings.resume_timeout_seconds < settings.cold_start_timeout_seconds < settings.invocation_budget_seconds
    assert settings.ticks_per_day == 288
    assert settings.reference_timezone == "Asia/Ho_Chi_Minh"


def test_env_overrides() -> None:
    settings = load_scheduler_settings(
        {
            "CHAPTERFORGE_DAILY_QUOTA": "30",
            "CHAPTERFORGE_ALLOW_UNAUTHENTICATED": "true",
            "CHAPTERFORGE_CRON_SECRET": "s3cret",
            "CHAPTERFORGE_CONCURRENCY": " ",
        }
    )
    assert settings.daily_quota == 30
    assert settings.allow_unauthenticated is True
    assert settings.cron_secret == "s3cret"
    assert settings.concurrency == 5


def test_invalid_values_raise() -> None:
    with pytest.raises(ValidationError):
        load_scheduler_settings({"CHAPTERFORGE_DAILY_QUOTA": "many"})
    with pytest.raises(ValidationError):
        SchedulerSettings(min_spacing_minutes=80, max_spacing_minutes=72)
    with pytest.raises(ValidationError):
        SchedulerSettings(cold_start_timeout_seconds=400)
    with pytest.raises(ValidationError):
        SchedulerSettings(reference_timezone="Mars/Olympus")


def test_reference_day_uses_configured_timezone() -> None:
    tz = SchedulerSettings().timezone
    # 18:30 UTC is already the next day in UTC+7.
    assert reference_day(datetime(2026, 3, 10, 18, 30, tzinfo=timezone.utc), tz) == date(2026, 3, 11)
    start, end = day_bounds(date(2026, 3, 11), tz)
    assert start == datetime(2026, 3, 10, 17, 0, tzinfo=timezone.utc)
    assert end == datetime(2026, 3, 11, 17, 0, tzinfo=timezone.utc)
    assert minutes_remaining(datetime(2026, 3, 11, 16, 0, tzinfo=timezone.utc), date(2026, 3, 11), tz) == 60
    assert minutes_remaining(datetime(2026, 3, 12, 0, 0, tzinfo=timezone.utc), date(2026, 3, 11), tz) == 0
