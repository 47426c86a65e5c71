"""Daily quota bookkeeping.

Every active project gets one quota row per reference-timezone day. The row
paces writing across the day through ``next_due_at``; both the initial offset
and the jitter between chapters come from a stable hash so re-running a tick
reproduces the same schedule.
"""

from __future__ import annotations

import hashlib
import logging
from datetime import date, datetime, timedelta
from typing import Iterable

from chapterforge_schemas import DailyQuota, Project, QuotaStatus

from .clock import day_bounds, minutes_remaining
from .settings import SchedulerSettings
from .store import SchedulerStore

logger = logging.getLogger(__name__)


def stable_hash(*parts: object) -> int:
    """Deterministic non-negative integer derived from ``parts``."""

    digest = hashlib.sha256(":".join(str(part) for part in parts).encode("utf-8")).digest()
    return int.from_bytes(digest[:8], "big")


def compute_spacing(minutes_left: float, target: int, settings: SchedulerSettings) -> float:
    raw = minutes_left / max(target, 1)
    return min(max(raw, settings.min_spacing_minutes), settings.max_spacing_minutes)


def initial_due_at(project_id: str, day: date, now: datetime, settings: SchedulerSettings) -> datetime:
    tz = settings.timezone
    spacing = compute_spacing(minutes_remaining(now, day, tz), settings.daily_quota, settings)
    offset = stable_hash(project_id, day.isoformat()) % max(int(spacing), 1)
    start, _ = day_bounds(day, tz)
    return start + timedelta(minutes=offset)


def jitter_minutes(project_id: str, day: date, written: int, bound: int) -> int:
    if bound <= 0:
        return 0
    return stable_hash(project_id, day.isoformat(), written) % (2 * bound + 1) - bound


def next_due_after_success(quota: DailyQuota, now: datetime, settings: SchedulerSettings) -> datetime:
    """Spread the remaining chapters over the rest of the day.

    The result is never sooner than ``min_spacing_minutes`` from ``now`` and
    never later than the end of the quota's day.
    """

    tz = settings.timezone
    _, end = day_bounds(quota.day, tz)
    interval = minutes_remaining(now, quota.day, tz) / max(quota.remaining, 1)
    jitter = jitter_minutes(quota.project_id, quota.day, quota.written, settings.jitter_minutes)
    candidate = now + timedelta(minutes=interval + jitter)
    floor = now + timedelta(minutes=settings.min_spacing_minutes)
    return min(max(candidate, floor), end)


class QuotaManager:
    """Creates and updates daily quota rows. Never raises to its callers."""

    def __init__(self, store: SchedulerStore, settings: SchedulerSettings) -> None:
        self._store = store
        self._settings = settings

    async def ensure_quotas(self, projects: Iterable[Project], day: date, now: datetime) -> int:
        projects = [project for project in projects if project.is_active]
        if not projects:
            return 0
        try:
            existing = await self._store.list_quotas(day, [project.id for project in projects])
            missing = [
                DailyQuota(
                    project_id=project.id,
                    day=day,
                    target=self._settings.daily_quota,
                    written=0,
                    next_due_at=initial_due_at(project.id, day, now, self._settings),
                    status=QuotaStatus.ACTIVE,
                    updated_at=now,
                )
                for project in projects
                if project.id not in existing
            ]
            created = await self._store.insert_quotas(missing)
        except Exception:
            logger.exception("Failed to ensure daily quotas", extra={"day": day.isoformat()})
            return 0
        if created:
            logger.info("Created daily quotas", extra={"day": day.isoformat(), "quotas_created": created})
        return created

    async def record_success(self, project_id: str, day: date, now: datetime) -> DailyQuota | None:
        try:
            quota = await self._store.increment_quota(project_id, day, now)
            if quota is None:
                logger.info("Quota already met or missing; nothing to increment")
                return None
            if quota.status == QuotaStatus.COMPLETED:
                logger.info("Daily quota completed", extra={"written": quota.written})
                return quota
            next_due = next_due_after_success(quota, now, self._settings)
            await self._store.schedule_quota(project_id, day, next_due, now)
            return quota.model_copy(update={"next_due_at": next_due})
        except Exception:
            logger.exception("Failed to record quota success")
            return None

    async def record_failure(
        self, project_id: str, day: date, now: datetime, message: str | None
    ) -> DailyQuota | None:
        next_due = now + timedelta(minutes=self._settings.retry_delay_minutes)
        try:
            quota = await self._store.record_quota_failure(
                project_id,
                day,
                message,
                next_due,
                self._settings.quota_max_retries,
                now,
            )
        except Exception:
            logger.exception("Failed to record quota failure")
            return None
        if quota is not None and quota.status == QuotaStatus.FAILED:
            logger.warning("Daily quota gave up after repeated failures", extra={"retry_count": quota.retry_count})
        return quota
