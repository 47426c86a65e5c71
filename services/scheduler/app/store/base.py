"""Datastore contract used by every scheduler component.

The store is queue, lock table and state store at once. Every mutation is a
conditional update or an upsert on a unique key so that overlapping ticks
never wait on each other: contention resolves to "proceed" or "skip".
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import date, datetime
from typing import Iterable, Sequence

from chapterforge_schemas import (
    ArcOutline,
    ChapterSummary,
    CompletionReason,
    ContentUnit,
    DailyQuota,
    Project,
    StoryBible,
    StorySynopsis,
)


class SchedulerStore(ABC):
    """Async persistence operations required by the scheduler."""

    # Projects -----------------------------------------------------------

    @abstractmethod
    async def list_active_projects(self) -> list[Project]:
        """Return every project whose status is ``active``."""

    @abstractmethod
    async def get_project(self, project_id: str) -> Project | None:
        ...

    @abstractmethod
    async def claim_projects(
        self, project_ids: Sequence[str], stale_before: datetime, now: datetime
    ) -> list[str]:
        """Set ``touched_at = now`` on active projects last touched before
        ``stale_before`` (or never), returning exactly the ids updated."""

    @abstractmethod
    async def advance_cursor(self, project_id: str, cursor: int, now: datetime) -> bool:
        """Raise the cursor to ``cursor``; never lowers it and never touches
        a project that is no longer active. Returns whether a row changed."""

    @abstractmethod
    async def correct_cursor(self, project_id: str, cursor: int, now: datetime) -> None:
        """Overwrite the cursor, including downward. Reconciler only."""

    @abstractmethod
    async def complete_project(
        self, project_id: str, reason: CompletionReason, now: datetime
    ) -> None:
        ...

    @abstractmethod
    async def record_project_error(self, project_id: str, message: str, now: datetime) -> None:
        """Store the last error message and timestamp for dashboards."""

    # Daily quotas -------------------------------------------------------

    @abstractmethod
    async def list_quotas(
        self, day: date, project_ids: Iterable[str] | None = None
    ) -> dict[str, DailyQuota]:
        ...

    @abstractmethod
    async def insert_quotas(self, quotas: Sequence[DailyQuota]) -> int:
        """Insert rows that do not exist yet; returns how many were created."""

    @abstractmethod
    async def increment_quota(self, project_id: str, day: date, now: datetime) -> DailyQuota | None:
        """Add one written chapter unless the target is already met.

        Reaching the target marks the row completed and clears ``next_due_at``.
        Returns the updated row, or ``None`` when nothing changed.
        """

    @abstractmethod
    async def schedule_quota(
        self, project_id: str, day: date, next_due_at: datetime | None, now: datetime
    ) -> None:
        ...

    @abstractmethod
    async def record_quota_failure(
        self,
        project_id: str,
        day: date,
        message: str | None,
        next_due_at: datetime,
        max_retries: int,
        now: datetime,
    ) -> DailyQuota | None:
        ...

    # Chapters and context ---------------------------------------------

    @abstractmethod
    async def list_chapter_numbers(self, output_id: str, upto: int) -> list[int]:
        """Sorted chapter numbers persisted for ``output_id`` that are ``<= upto``."""

    @abstractmethod
    async def upsert_chapter(self, unit: ContentUnit) -> None:
        ...

    @abstractmethod
    async def upsert_summary(self, summary: ChapterSummary) -> None:
        ...

    @abstractmethod
    async def list_summaries(self, project_id: str, after: int, upto: int) -> list[ChapterSummary]:
        """Summaries with ``after < number <= upto`` in chapter order."""

    @abstractmethod
    async def get_synopsis(self, project_id: str) -> StorySynopsis | None:
        ...

    @abstractmethod
    async def save_synopsis(self, synopsis: StorySynopsis) -> None:
        ...

    @abstractmethod
    async def get_arc_outline(self, project_id: str, arc_number: int) -> ArcOutline | None:
        ...

    @abstractmethod
    async def save_arc_outline(self, outline: ArcOutline) -> None:
        ...

    @abstractmethod
    async def get_bible(self, project_id: str) -> StoryBible | None:
        ...

    @abstractmethod
    async def save_bible(self, bible: StoryBible) -> None:
        ...

    async def close(self) -> None:
        return None
