"""Prefect flow wrapping one scheduler tick."""

from __future__ import annotations

import logging

from prefect import flow

from chapterforge_observability import log_context

from .models import TickSummary
from .settings import SchedulerSettings
from .store import SchedulerStore
from .tick import TickRunner

logger = logging.getLogger(__name__)


@flow(name="chapterforge-write-chapters", version="0.1.0", validate_parameters=False)
async def write_chapters_flow(store: SchedulerStore, settings: SchedulerSettings) -> TickSummary:
    summary = await TickRunner(store, settings).run()
    with log_context(tick_id=summary.tick_id):
        logger.info(
            "Write-chapters flow finished",
            extra={
                "outcomes": len(summary.outcomes),
                "deadline_exceeded": summary.deadline_exceeded,
            },
        )
    return summary
