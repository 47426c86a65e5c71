"""Everything that happens after a chapter has been generated.

Critical steps (chapter upsert, summary) gate the cursor advance and are
retried a bounded number of times. Maintenance steps run on fixed cadences,
are logged when they fail, and never change the outcome of an attempt.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Optional, TypeVar

from pydantic import BaseModel, Field

from chapterforge_observability import record_pipeline_failure
from chapterforge_schemas import (
    ArcOutline,
    ChapterSummary,
    ContentUnit,
    Project,
    StoryBible,
    StorySynopsis,
)

from .errors import PersistenceError
from .generation import ChapterGenerator, GenerationContext, TextArtefact
from .prompts import (
    ARC_OUTLINE_PROMPT,
    BIBLE_PROMPT,
    FINALE_NOTE,
    SUMMARY_PROMPT,
    SUMMARY_SYSTEM_PROMPT,
    SYNOPSIS_PROMPT,
)
from .settings import SERVICE_NAME, SchedulerSettings
from .store import SchedulerStore

logger = logging.getLogger(__name__)

T = TypeVar("T")

SUMMARY_CONTENT_CHARS = 12000


class SummaryPayload(BaseModel):
    title: str
    summary: str = Field(..., min_length=1)
    characters: list[str] = Field(default_factory=list)
    cliffhanger: Optional[str] = None
    open_threads: list[str] = Field(default_factory=list)


def should_be_finale(current: int, target: int, open_threads: int) -> bool:
    """Whether the arc after ``current`` should be planned as the last one."""

    if target <= 0:
        return False
    remaining = target - current
    progress = current / target
    if remaining <= 10 or progress >= 0.95:
        return True
    return progress >= 0.85 and open_threads <= 2


def arc_number_for(chapter: int, arc_size: int) -> int:
    return (max(chapter, 1) - 1) // arc_size + 1


def _format_summaries(summaries: list[ChapterSummary]) -> str:
    if not summaries:
        return "None."
    return "\n".join(f"- Chapter {item.number}: {item.summary}" for item in summaries)


class PostWritePipeline:
    def __init__(
        self,
        store: SchedulerStore,
        generator: ChapterGenerator,
        settings: SchedulerSettings,
        *,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._store = store
        self._generator = generator
        self._settings = settings
        self._sleep = sleep

    async def load_context(self, project: Project, number: int) -> GenerationContext:
        """Gather continuity material for writing chapter ``number``."""

        settings = self._settings
        synopsis = await self._store.get_synopsis(project.id)
        bible = await self._store.get_bible(project.id)
        outline = await self._store.get_arc_outline(project.id, arc_number_for(number, settings.arc_size))
        summaries: list[ChapterSummary] = []
        if number > 1 and settings.context_summaries > 0:
            summaries = await self._store.list_summaries(
                project.id, max(number - 1 - settings.context_summaries, 0), number - 1
            )
        return GenerationContext(
            synopsis=synopsis.text if synopsis else None,
            bible=bible.text if bible else None,
            arc_outline=outline.text if outline else None,
            is_finale=outline.is_finale if outline else False,
            recent_summaries=summaries,
        )

    # Critical -----------------------------------------------------------

    async def persist(self, project: Project, unit: ContentUnit) -> ChapterSummary:
        """Store the chapter and its summary.

        Raises:
            PersistenceError: If either step still fails after its retries.
        """

        await self._with_retries("chapter", lambda: self._store.upsert_chapter(unit))

        async def summarise() -> ChapterSummary:
            payload = await self._generator.complete_json(
                "summary",
                SUMMARY_PROMPT.format(
                    number=unit.number,
                    chapter_title=unit.title,
                    content=unit.content[:SUMMARY_CONTENT_CHARS],
                ),
                SummaryPayload,
                system_prompt=SUMMARY_SYSTEM_PROMPT,
                number=unit.number,
            )
            summary = ChapterSummary(
                project_id=project.id,
                number=unit.number,
                title=payload.title or unit.title,
                summary=payload.summary,
                characters=payload.characters,
                cliffhanger=payload.cliffhanger,
                open_threads=payload.open_threads,
            )
            await self._store.upsert_summary(summary)
            return summary

        return await self._with_retries("summary", summarise)

    async def _with_retries(self, step: str, operation: Callable[[], Awaitable[T]]) -> T:
        attempts = self._settings.summary_attempts
        for attempt in range(1, attempts + 1):
            try:
                return await operation()
            except Exception as exc:
                if attempt == attempts:
                    record_pipeline_failure(step, service_name=SERVICE_NAME)
                    raise PersistenceError(f"{step} step failed after {attempts} attempts: {exc}") from exc
                logger.warning(
                    "Critical post-write step failed; retrying",
                    extra={"step": step, "attempt": attempt, "error": str(exc)},
                )
                await self._sleep(self._settings.summary_retry_delay_seconds)
        raise PersistenceError(f"{step} step was not attempted")

    # Maintenance ---------------------------------------------------------

    async def maintain(
        self, project: Project, number: int, summary: ChapterSummary, *, finished: bool = False
    ) -> list[str]:
        """Run the cadence-gated steps due after chapter ``number``.

        A ``finished`` story only gets its synopsis refreshed; arc planning and
        the bible feed chapters that will never be written.

        Returns the names of the steps that failed.
        """

        settings = self._settings
        steps: list[tuple[str, Callable[[], Awaitable[None]]]] = []
        if number % settings.synopsis_interval == 0:
            steps.append(("synopsis", lambda: self._refresh_synopsis(project, number)))
        if not finished and number % settings.arc_size == 0:
            steps.append(("arc_outline", lambda: self._plan_next_arc(project, number, summary)))
        bible_due = number == settings.bible_trigger_chapter or number % settings.bible_refresh_interval == 0
        if not finished and bible_due:
            steps.append(("bible", lambda: self._write_bible(project, number)))

        failed: list[str] = []
        for name, step in steps:
            try:
                await step()
            except Exception:
                logger.exception("Post-write maintenance step failed", extra={"step": name})
                record_pipeline_failure(name, service_name=SERVICE_NAME)
                failed.append(name)
        return failed

    async def _refresh_synopsis(self, project: Project, number: int) -> None:
        previous = await self._store.get_synopsis(project.id)
        since = previous.last_chapter if previous else 0
        summaries = await self._store.list_summaries(project.id, since, number)
        artefact = await self._generator.complete_json(
            "synopsis",
            SYNOPSIS_PROMPT.format(
                title=project.title,
                number=number,
                previous_chapter=since,
                previous=previous.text if previous else "None yet.",
                summaries=_format_summaries(summaries),
            ),
            TextArtefact,
            number=number,
        )
        await self._store.save_synopsis(StorySynopsis(project_id=project.id, text=artefact.text, last_chapter=number))
        logger.info("Rolling synopsis refreshed", extra={"chapter": number})

    async def _plan_next_arc(self, project: Project, number: int, summary: ChapterSummary) -> None:
        arc_size = self._settings.arc_size
        arc_number = number // arc_size + 1
        finale = should_be_finale(number, project.target, len(summary.open_threads))
        synopsis = await self._store.get_synopsis(project.id)
        artefact = await self._generator.complete_json(
            "arc_outline",
            ARC_OUTLINE_PROMPT.format(
                arc_number=arc_number,
                title=project.title,
                first_chapter=number + 1,
                last_chapter=number + arc_size,
                current=number,
                target=project.target,
                synopsis=synopsis.text if synopsis else "None yet.",
                open_threads="\n".join(f"- {thread}" for thread in summary.open_threads) or "None recorded.",
                finale_note=FINALE_NOTE if finale else "",
            ),
            TextArtefact,
            number=number,
        )
        await self._store.save_arc_outline(
            ArcOutline(project_id=project.id, arc_number=arc_number, text=artefact.text, is_finale=finale)
        )
        logger.info("Next arc planned", extra={"arc_number": arc_number, "is_finale": finale})

    async def _write_bible(self, project: Project, number: int) -> None:
        previous = await self._store.get_bible(project.id)
        if previous is not None and number == self._settings.bible_trigger_chapter:
            return
        since = previous.last_chapter if previous else 0
        summaries = await self._store.list_summaries(project.id, since, number)
        artefact = await self._generator.complete_json(
            "bible",
            BIBLE_PROMPT.format(
                title=project.title,
                genre=project.params.genre,
                premise=project.params.premise or "Not specified",
                previous=previous.text if previous else "",
                summaries=_format_summaries(summaries),
            ),
            TextArtefact,
            number=number,
        )
        await self._store.save_bible(StoryBible(project_id=project.id, text=artefact.text, last_chapter=number))
        logger.info("World bible written", extra={"chapter": number, "refresh": previous is not None})
