"""In-process store used for local development and tests.

Each operation runs under one ``asyncio.Lock`` so conditional updates are
atomic with respect to every coroutine sharing the instance, which is the
same guarantee a single SQL statement gives across processes.
"""

from __future__ import annotations

import asyncio
from datetime import date, datetime
from typing import Iterable, Sequence

from chapterforge_schemas import (
    ArcOutline,
    ChapterSummary,
    CompletionReason,
    ContentUnit,
    DailyQuota,
    Project,
    ProjectStatus,
    QuotaStatus,
    StoryBible,
    StorySynopsis,
    truncate_message,
)

from .base import SchedulerStore


class InMemoryStore(SchedulerStore):
    def __init__(self, projects: Iterable[Project] = ()) -> None:
        self._lock = asyncio.Lock()
        self.projects: dict[str, Project] = {project.id: project for project in projects}
        self.quotas: dict[tuple[str, date], DailyQuota] = {}
        self.chapters: dict[tuple[str, int], ContentUnit] = {}
        self.summaries: dict[tuple[str, int], ChapterSummary] = {}
        self.synopses: dict[str, StorySynopsis] = {}
        self.outlines: dict[tuple[str, int], ArcOutline] = {}
        self.bibles: dict[str, StoryBible] = {}

    def add_project(self, project: Project) -> None:
        self.projects[project.id] = project

    def _update_project(self, project_id: str, **changes) -> Project | None:
        project = self.projects.get(project_id)
        if project is None:
            return None
        updated = project.model_copy(update=changes)
        self.projects[project_id] = updated
        return updated

    # Projects -----------------------------------------------------------

    async def list_active_projects(self) -> list[Project]:
        async with self._lock:
            return [p for p in self.projects.values() if p.status == ProjectStatus.ACTIVE]

    async def get_project(self, project_id: str) -> Project | None:
        async with self._lock:
            return self.projects.get(project_id)

    async def claim_projects(
        self, project_ids: Sequence[str], stale_before: datetime, now: datetime
    ) -> list[str]:
        claimed: list[str] = []
        async with self._lock:
            for project_id in dict.fromkeys(project_ids):
                project = self.projects.get(project_id)
                if project is None or project.status != ProjectStatus.ACTIVE:
                    continue
                if project.touched_at is not None and project.touched_at >= stale_before:
                    continue
                self._update_project(project_id, touched_at=now, updated_at=now)
                claimed.append(project_id)
        return claimed

    async def advance_cursor(self, project_id: str, cursor: int, now: datetime) -> bool:
        async with self._lock:
            project = self.projects.get(project_id)
            if project is None or project.status != ProjectStatus.ACTIVE or project.cursor >= cursor:
                return False
            self._update_project(project_id, cursor=cursor, updated_at=now)
            return True

    async def correct_cursor(self, project_id: str, cursor: int, now: datetime) -> None:
        async with self._lock:
            self._update_project(project_id, cursor=max(cursor, 0), updated_at=now)

    async def complete_project(
        self, project_id: str, reason: CompletionReason, now: datetime
    ) -> None:
        async with self._lock:
            self._update_project(
                project_id,
                status=ProjectStatus.COMPLETED,
                completion_reason=reason,
                updated_at=now,
            )

    async def record_project_error(self, project_id: str, message: str, now: datetime) -> None:
        async with self._lock:
            self._update_project(
                project_id, last_error=truncate_message(message), last_error_at=now
            )

    # Daily quotas -------------------------------------------------------

    async def list_quotas(
        self, day: date, project_ids: Iterable[str] | None = None
    ) -> dict[str, DailyQuota]:
        wanted = set(project_ids) if project_ids is not None else None
        async with self._lock:
            return {
                project_id: quota
                for (project_id, quota_day), quota in self.quotas.items()
                if quota_day == day and (wanted is None or project_id in wanted)
            }

    async def insert_quotas(self, quotas: Sequence[DailyQuota]) -> int:
        created = 0
        async with self._lock:
            for quota in quotas:
                key = (quota.project_id, quota.day)
                if key in self.quotas:
                    continue
                self.quotas[key] = quota
                created += 1
        return created

    async def increment_quota(self, project_id: str, day: date, now: datetime) -> DailyQuota | None:
        async with self._lock:
            quota = self.quotas.get((project_id, day))
            if quota is None or quota.written >= quota.target:
                return None
            written = quota.written + 1
            done = written >= quota.target
            updated = quota.model_copy(
                update={
                    "written": written,
                    "status": QuotaStatus.COMPLETED if done else QuotaStatus.ACTIVE,
                    "next_due_at": None if done else quota.next_due_at,
                    "updated_at": now,
                }
            )
            self.quotas[(project_id, day)] = updated
            return updated

    async def schedule_quota(
        self, project_id: str, day: date, next_due_at: datetime | None, now: datetime
    ) -> None:
        async with self._lock:
            quota = self.quotas.get((project_id, day))
            if quota is None or quota.status == QuotaStatus.COMPLETED:
                return
            self.quotas[(project_id, day)] = quota.model_copy(
                update={"next_due_at": next_due_at, "updated_at": now}
            )

    async def record_quota_failure(
        self,
        project_id: str,
        day: date,
        message: str | None,
        next_due_at: datetime,
        max_retries: int,
        now: datetime,
    ) -> DailyQuota | None:
        async with self._lock:
            quota = self.quotas.get((project_id, day))
            if quota is None:
                return None
            retry_count = quota.retry_count + 1
            status = quota.status
            if status == QuotaStatus.ACTIVE and retry_count >= max_retries:
                status = QuotaStatus.FAILED
            updated = quota.model_copy(
                update={
                    "retry_count": retry_count,
                    "last_error": truncate_message(message),
                    "next_due_at": None if quota.status == QuotaStatus.COMPLETED else next_due_at,
                    "status": status,
                    "updated_at": now,
                }
            )
            self.quotas[(project_id, day)] = updated
            return updated

    # Chapters and context ---------------------------------------------

    async def list_chapter_numbers(self, output_id: str, upto: int) -> list[int]:
        async with self._lock:
            return sorted(
                number
                for (chapter_output, number) in self.chapters
                if chapter_output == output_id and number <= upto
            )

    async def upsert_chapter(self, unit: ContentUnit) -> None:
        async with self._lock:
            key = (unit.output_id, unit.number)
            existing = self.chapters.get(key)
            if existing is not None:
                unit = unit.model_copy(update={"created_at": existing.created_at})
            self.chapters[key] = unit

    async def upsert_summary(self, summary: ChapterSummary) -> None:
        async with self._lock:
            self.summaries[(summary.project_id, summary.number)] = summary

    async def list_summaries(self, project_id: str, after: int, upto: int) -> list[ChapterSummary]:
        async with self._lock:
            rows = [
                summary
                for (summary_project, number), summary in self.summaries.items()
                if summary_project == project_id and after < number <= upto
            ]
        return sorted(rows, key=lambda row: row.number)

    async def get_synopsis(self, project_id: str) -> StorySynopsis | None:
        async with self._lock:
            return self.synopses.get(project_id)

    async def save_synopsis(self, synopsis: StorySynopsis) -> None:
        async with self._lock:
            self.synopses[synopsis.project_id] = synopsis

    async def get_arc_outline(self, project_id: str, arc_number: int) -> ArcOutline | None:
        async with self._lock:
            return self.outlines.get((project_id, arc_number))

    async def save_arc_outline(self, outline: ArcOutline) -> None:
        async with self._lock:
            self.outlines[(outline.project_id, outline.arc_number)] = outline

    async def get_bible(self, project_id: str) -> StoryBible | None:
        async with self._lock:
            return self.bibles.get(project_id)

    async def save_bible(self, bible: StoryBible) -> None:
        async with self._lock:
            self.bibles[bible.project_id] = bible
