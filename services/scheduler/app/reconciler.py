"""Detect drift between a project's cursor and its persisted chapters."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Iterable

from chapterforge_schemas import Project, first_missing_number

from .store import SchedulerStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ReconcilePlan:
    """Where the next write starts.

    The next chapter written is ``run_from + 1``. ``persisted_cursor`` is the
    cursor the project should carry before that write; ``backfill`` marks a
    write that fills a hole below the cursor and must not move it.
    """

    run_from: int
    persisted_cursor: int
    backfill: bool = False
    corrected: bool = False

    @property
    def next_number(self) -> int:
        return self.run_from + 1


def plan_reconciliation(cursor: int, persisted: Iterable[int]) -> ReconcilePlan:
    if cursor <= 0:
        return ReconcilePlan(run_from=0, persisted_cursor=0)
    numbers = sorted({number for number in persisted if 1 <= number <= cursor + 1})
    gap = first_missing_number(numbers)
    if gap is not None:
        return ReconcilePlan(run_from=gap - 1, persisted_cursor=cursor, backfill=True)
    highest = numbers[-1] if numbers else 0
    if highest < cursor:
        return ReconcilePlan(run_from=highest, persisted_cursor=highest, corrected=True)
    return ReconcilePlan(run_from=cursor, persisted_cursor=cursor)


async def reconcile(store: SchedulerStore, project: Project, now: datetime) -> ReconcilePlan:
    """Plan the next write and lower a cursor that ran ahead of storage.

    Only resume work is reconciled; a project at cursor 0 starts at chapter 1.
    """

    if project.cursor <= 0 or not project.output_id:
        return ReconcilePlan(run_from=0, persisted_cursor=0)
    persisted = await store.list_chapter_numbers(project.output_id, project.cursor + 1)
    plan = plan_reconciliation(project.cursor, persisted)
    if plan.backfill:
        logger.warning("Found a missing chapter below the cursor", extra={"chapter": plan.next_number})
    elif plan.corrected:
        logger.warning(
            "Cursor ahead of persisted chapters; correcting",
            extra={"cursor": project.cursor, "persisted_cursor": plan.persisted_cursor},
        )
        await store.correct_cursor(project.id, plan.persisted_cursor, now)
    return plan
