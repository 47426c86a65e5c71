"""Optimistic claiming through the ``touched_at`` fence.

A project is owned by whichever tick manages to move its ``touched_at``
forward while it is older than the staleness window. A crashed worker leaves
the fence stale again after the window elapses.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Sequence

from chapterforge_observability import record_claim_conflicts
from chapterforge_schemas import Tier

from .settings import SERVICE_NAME
from .store import SchedulerStore

logger = logging.getLogger(__name__)


def stale_cutoff(now: datetime, window_minutes: int) -> datetime:
    return now - timedelta(minutes=window_minutes)


async def claim(
    store: SchedulerStore,
    candidate_ids: Sequence[str],
    *,
    stale_before: datetime,
    now: datetime,
    tier: Tier,
) -> list[str]:
    """Return the subset of ``candidate_ids`` this tick now owns, in input order."""

    if not candidate_ids:
        return []
    won = set(await store.claim_projects(candidate_ids, stale_before, now))
    claimed = [project_id for project_id in candidate_ids if project_id in won]
    conflicts = len(candidate_ids) - len(claimed)
    if conflicts:
        logger.debug(
            "Skipped projects held by another tick",
            extra={"tier": tier.value, "conflicts": conflicts},
        )
        record_claim_conflicts(conflicts, tier=tier.value, service_name=SERVICE_NAME)
    return claimed
