"""Pick the projects offered work in one tick."""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Mapping, Optional, Sequence

from chapterforge_schemas import DailyQuota, Project, ProjectStatus, Tier

from .settings import SchedulerSettings

_EARLIEST = datetime.min.replace(tzinfo=timezone.utc)


@dataclass
class Candidate:
    project: Project
    quota: Optional[DailyQuota]
    tier: Tier


@dataclass
class Selection:
    resume: list[Candidate] = field(default_factory=list)
    cold_start: list[Candidate] = field(default_factory=list)
    eligible: int = 0
    due: int = 0
    batch_size: int = 0

    def for_tier(self, tier: Tier) -> list[Candidate]:
        return self.resume if tier == Tier.RESUME else self.cold_start


def compute_batch_size(active_count: int, settings: SchedulerSettings) -> int:
    """Resume-tier cap sized so every project can meet its daily target."""

    raw = math.ceil(active_count * settings.daily_quota / settings.ticks_per_day * settings.safety_factor)
    return min(max(raw, settings.min_batch_size), settings.max_batch_size)


def is_eligible(project: Project, settings: SchedulerSettings) -> bool:
    if project.status == ProjectStatus.COMPLETED or not project.is_active:
        return False
    if not project.output_id:
        return False
    return project.cursor < project.target + settings.grace_chapters


def is_due(quota: Optional[DailyQuota], now: datetime) -> bool:
    """A missing quota row has nothing completed and no due time, so it is due."""

    return quota is None or quota.is_due(now)


def _fairness_key(candidate: Candidate) -> tuple[int, datetime, str]:
    quota = candidate.quota
    if quota is None:
        return 0, _EARLIEST, candidate.project.id
    return quota.written, quota.next_due_at or _EARLIEST, candidate.project.id


def select_candidates(
    projects: Sequence[Project],
    quotas: Mapping[str, DailyQuota],
    now: datetime,
    settings: SchedulerSettings,
) -> Selection:
    """Filter to eligible, due projects and split them into capped tiers.

    Quota rows only pace writing. A project whose row could not be created
    is still due, so quota bookkeeping failures never stop generation.
    """

    selection = Selection(batch_size=compute_batch_size(len(projects), settings))
    resume: list[Candidate] = []
    cold_start: list[Candidate] = []
    for project in projects:
        if not is_eligible(project, settings):
            continue
        selection.eligible += 1
        quota = quotas.get(project.id)
        if not is_due(quota, now):
            continue
        selection.due += 1
        if project.cursor > 0:
            resume.append(Candidate(project, quota, Tier.RESUME))
        else:
            cold_start.append(Candidate(project, quota, Tier.COLD_START))

    resume.sort(key=_fairness_key)
    cold_start.sort(key=_fairness_key)
    selection.resume = resume[: selection.batch_size]
    selection.cold_start = cold_start[: settings.cold_start_per_tick]
    return selection
