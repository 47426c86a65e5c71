"""One scheduler invocation from quota creation to the aggregated summary."""

from __future__ import annotations

import asyncio
import logging
from datetime import date, datetime
from time import perf_counter
from typing import Awaitable, Callable, Sequence
from uuid import uuid4

from chapterforge_observability import log_context, observe_task_outcome, observe_tick_duration
from chapterforge_schemas import AttemptStatus, DailyQuota, FailureKind, Project, Tier

from .claim import claim, stale_cutoff
from .clock import reference_day, utcnow
from .completion import CompletionDetector
from .errors import SchedulerError, StoreError
from .executor import run_bounded
from .generation import ChapterGenerator
from .models import ProjectOutcome, TickSummary
from .pipeline import PostWritePipeline
from .providers import fallback_config, resolve_provider_config
from .quota import QuotaManager
from .ratelimit import TokenBucket
from .selector import Candidate, select_candidates
from .settings import SERVICE_NAME, SchedulerSettings
from .store import SchedulerStore
from .worker import ProjectWorker

logger = logging.getLogger(__name__)


def build_generator(settings: SchedulerSettings) -> ChapterGenerator:
    """Generator for one tick, with a fresh shared rate limiter.

    Raises:
        ProviderConfigError: If the selected provider is not configured.
    """

    primary = resolve_provider_config()
    limiter = TokenBucket(settings.rate_limit_per_minute, settings.rate_limit_burst)
    return ChapterGenerator(primary, fallback_config(primary, settings), limiter=limiter)


class TickRunner:
    def __init__(
        self,
        store: SchedulerStore,
        settings: SchedulerSettings,
        *,
        generator: ChapterGenerator | None = None,
        detector: CompletionDetector | None = None,
        clock: Callable[[], datetime] = utcnow,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._store = store
        self._settings = settings
        self._clock = clock
        self._generator = generator or build_generator(settings)
        self._quota = QuotaManager(store, settings)
        pipeline = PostWritePipeline(store, self._generator, settings, sleep=sleep)
        self._worker = ProjectWorker(
            store,
            self._generator,
            pipeline,
            self._quota,
            detector or CompletionDetector.from_settings(settings),
            clock=clock,
        )

    async def run(self) -> TickSummary:
        """Execute one tick under the invocation budget.

        A tick that overruns the budget is cancelled and returns what it had
        aggregated so far with ``deadline_exceeded`` set. A datastore failure
        outside the per-project work ends the tick the same way, with the
        failure in ``error``.
        """

        now = self._clock()
        summary = TickSummary(
            tick_id=uuid4().hex,
            day=reference_day(now, self._settings.timezone),
            started_at=now,
        )
        started = perf_counter()
        with log_context(tick_id=summary.tick_id):
            logger.info("Tick started", extra={"day": summary.day.isoformat()})
            try:
                await asyncio.wait_for(self._run(summary), timeout=self._settings.invocation_budget_seconds)
            except asyncio.TimeoutError:
                summary.deadline_exceeded = True
                logger.error("Tick exceeded its invocation budget; returning partial results")
            except SchedulerError as exc:
                summary.error = f"{type(exc).__name__}: {exc}"
                logger.exception("Tick aborted by a datastore failure; returning partial results")
            summary.finished_at = self._clock()
            summary.duration_seconds = perf_counter() - started
            observe_tick_duration(summary.duration_seconds, service_name=SERVICE_NAME)
            logger.info(
                "Tick finished",
                extra={
                    "duration_ms": round(summary.duration_seconds * 1000, 1),
                    "resume": summary.resume.model_dump(),
                    "cold_start": summary.cold_start.model_dump(),
                },
            )
        return summary

    async def _run(self, summary: TickSummary) -> None:
        settings = self._settings
        now = self._clock()
        day = summary.day

        projects = await self._store.list_active_projects()
        summary.active_projects = len(projects)
        summary.quotas_created = await self._quota.ensure_quotas(projects, day, now)
        quotas = await self._load_quotas(day, projects)

        selection = select_candidates(projects, quotas, now, settings)
        summary.eligible = selection.eligible
        summary.due = selection.due
        summary.batch_size = selection.batch_size

        cutoff = stale_cutoff(now, settings.stale_window_minutes)
        work: list[Candidate] = []
        for tier in (Tier.COLD_START, Tier.RESUME):
            offered = selection.for_tier(tier)
            tier_summary = summary.tier(tier)
            tier_summary.offered = len(offered)
            claimed_ids = await claim(
                self._store,
                [candidate.project.id for candidate in offered],
                stale_before=cutoff,
                now=now,
                tier=tier,
            )
            tier_summary.claimed = len(claimed_ids)
            by_id = {candidate.project.id: candidate for candidate in offered}
            work.extend(by_id[project_id] for project_id in claimed_ids)

        if not work:
            logger.info("No projects due this tick", extra={"eligible": summary.eligible, "due": summary.due})
            return

        def task_for(candidate: Candidate):
            async def task() -> ProjectOutcome:
                outcome = await self._worker.run(candidate.project, candidate.tier, day)
                self._absorb(summary, outcome)
                return outcome

            return task

        def timeout_for(candidate: Candidate) -> float:
            if candidate.tier == Tier.COLD_START:
                return settings.cold_start_timeout_seconds
            return settings.resume_timeout_seconds

        # Outcomes produced outside the worker still owe a quota failure.
        unrecorded: list[int] = []

        def settle(index: int, outcome: ProjectOutcome) -> ProjectOutcome:
            unrecorded.append(index)
            self._absorb(summary, outcome)
            return outcome

        def on_timeout(index: int) -> ProjectOutcome:
            limit = timeout_for(work[index])
            return settle(
                index,
                _failed(work[index], AttemptStatus.TIMED_OUT, FailureKind.TIMEOUT, f"Timed out after {limit:g}s", limit),
            )

        def on_error(index: int, exc: Exception) -> ProjectOutcome:
            return settle(
                index,
                _failed(work[index], AttemptStatus.FAILED, FailureKind.INTERNAL, f"{type(exc).__name__}: {exc}", 0.0),
            )

        results = await run_bounded(
            [task_for(candidate) for candidate in work],
            concurrency=settings.concurrency,
            timeout=[timeout_for(candidate) for candidate in work],
            on_timeout=on_timeout,
            on_error=on_error,
        )

        for index in sorted(unrecorded):
            candidate, outcome = work[index], results[index]
            with log_context(project_id=candidate.project.id, tier=candidate.tier.value):
                await self._worker.record_failure(candidate.project.id, day, outcome.error or "")

    async def _load_quotas(self, day: date, projects: Sequence[Project]) -> dict[str, DailyQuota]:
        try:
            return await self._store.list_quotas(day, [project.id for project in projects])
        except StoreError:
            logger.exception("Failed to read daily quotas; every eligible project counts as due")
            return {}

    def _absorb(self, summary: TickSummary, outcome: ProjectOutcome) -> None:
        summary.outcomes.append(outcome)
        summary.tier(outcome.tier).absorb(outcome)
        summary.tier(outcome.tier).duration_seconds += outcome.duration_seconds
        observe_task_outcome(
            outcome.tier.value,
            outcome.status.value,
            outcome.duration_seconds,
            service_name=SERVICE_NAME,
        )


def _failed(
    candidate: Candidate,
    status: AttemptStatus,
    kind: FailureKind,
    message: str,
    duration: float,
) -> ProjectOutcome:
    return ProjectOutcome(
        project_id=candidate.project.id,
        tier=candidate.tier,
        status=status,
        failure_kind=kind,
        error=message,
        duration_seconds=duration,
    )


async def run_tick(
    store: SchedulerStore,
    settings: SchedulerSettings,
    *,
    generator: ChapterGenerator | None = None,
) -> TickSummary:
    return await TickRunner(store, settings, generator=generator).run()
