"""One unit of work: advance a claimed project by a single chapter."""

from __future__ import annotations

import logging
from datetime import date, datetime
from time import perf_counter
from typing import Callable

from chapterforge_observability import log_context, record_completion
from chapterforge_providers import ProviderError
from chapterforge_schemas import AttemptStatus, FailureKind, Project, Tier

from .clock import utcnow
from .completion import CompletionDetector
from .errors import SchedulerError
from .generation import ChapterGenerator
from .models import ProjectOutcome
from .pipeline import PostWritePipeline
from .quota import QuotaManager
from .reconciler import ReconcilePlan, reconcile
from .settings import SERVICE_NAME
from .store import SchedulerStore

logger = logging.getLogger(__name__)


class ProjectWorker:
    """Reconcile, generate, persist, check completion and update the quota."""

    def __init__(
        self,
        store: SchedulerStore,
        generator: ChapterGenerator,
        pipeline: PostWritePipeline,
        quota: QuotaManager,
        detector: CompletionDetector,
        *,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._store = store
        self._generator = generator
        self._pipeline = pipeline
        self._quota = quota
        self._detector = detector
        self._clock = clock

    async def run(self, project: Project, tier: Tier, day: date) -> ProjectOutcome:
        started = perf_counter()
        with log_context(project_id=project.id, tier=tier.value):
            try:
                outcome = await self._advance(project, tier, day)
            except (SchedulerError, ProviderError) as exc:
                kind = exc.kind if isinstance(exc, SchedulerError) else FailureKind.GENERATION
                logger.warning("Project attempt failed", extra={"failure_kind": kind.value, "error": str(exc)})
                await self.record_failure(project.id, day, str(exc))
                outcome = ProjectOutcome(
                    project_id=project.id,
                    tier=tier,
                    status=AttemptStatus.FAILED,
                    failure_kind=kind,
                    error=str(exc),
                )
        outcome.duration_seconds = perf_counter() - started
        return outcome

    async def record_failure(self, project_id: str, day: date, message: str) -> None:
        now = self._clock()
        await self._quota.record_failure(project_id, day, now, message)
        try:
            await self._store.record_project_error(project_id, message, now)
        except Exception:
            logger.exception("Failed to record project diagnostics")

    async def _advance(self, project: Project, tier: Tier, day: date) -> ProjectOutcome:
        if tier == Tier.RESUME:
            plan = await reconcile(self._store, project, self._clock())
        else:
            plan = ReconcilePlan(run_from=0, persisted_cursor=0)
        number = plan.next_number

        with log_context(chapter=number):
            context = await self._pipeline.load_context(project, number)
            chapter = await self._generator.generate(project, number, context)
            unit = chapter.to_unit(project.output_id or "", number)
            summary = await self._pipeline.persist(project, unit)

            outcome = ProjectOutcome(
                project_id=project.id,
                tier=tier,
                status=AttemptStatus.SUCCEEDED,
                chapter=number,
                backfill=plan.backfill,
            )
            if plan.backfill:
                logger.info("Backfilled missing chapter")
            else:
                advanced = await self._store.advance_cursor(project.id, number, self._clock())
                if not advanced:
                    logger.info("Cursor already at or past chapter, or project no longer active")
                else:
                    decision = self._detector.evaluate(
                        number, project.target, title=unit.title, content=unit.content
                    )
                    if decision.complete and decision.reason is not None:
                        await self._store.complete_project(project.id, decision.reason, self._clock())
                        record_completion(decision.reason.value, service_name=SERVICE_NAME)
                        logger.info(
                            "Project completed",
                            extra={"completion_reason": decision.reason.value, "ending_score": decision.ending_score},
                        )
                        outcome.completed = True
                        outcome.completion_reason = decision.reason
                    outcome.maintenance_failures = await self._pipeline.maintain(
                        project, number, summary, finished=outcome.completed
                    )

            await self._quota.record_success(project.id, day, self._clock())
            logger.info("Chapter written")
        return outcome
