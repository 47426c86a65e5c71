"""PostgreSQL implementation of :class:`SchedulerStore`.

Claims, quota increments and cursor advances are single conditional
statements, so concurrent scheduler invocations coordinate through row
visibility alone.
"""

from __future__ import annotations

import logging
from datetime import date, datetime
from typing import Any, Iterable, Sequence

import psycopg
from psycopg.rows import dict_row
from psycopg.types.json import Jsonb
from psycopg_pool import AsyncConnectionPool

from chapterforge_schemas import (
    ArcOutline,
    ChapterSummary,
    CompletionReason,
    ContentUnit,
    DailyQuota,
    Project,
    StoryBible,
    StorySynopsis,
    truncate_message,
)

from ..errors import StoreError
from .base import SchedulerStore

logger = logging.getLogger(__name__)

SCHEMA_DDL = (
    """
    CREATE TABLE IF NOT EXISTS projects (
        id TEXT PRIMARY KEY,
        output_id TEXT,
        title TEXT NOT NULL DEFAULT 'Untitled',
        cursor INTEGER NOT NULL DEFAULT 0 CHECK (cursor >= 0),
        target INTEGER NOT NULL CHECK (target > 0),
        status TEXT NOT NULL DEFAULT 'active',
        touched_at TIMESTAMPTZ,
        params JSONB NOT NULL DEFAULT '{}'::jsonb,
        completion_reason TEXT,
        last_error TEXT,
        last_error_at TIMESTAMPTZ,
        created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
        updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
    )
    """,
    "CREATE INDEX IF NOT EXISTS projects_status_idx ON projects (status)",
    """
    CREATE TABLE IF NOT EXISTS chapters (
        output_id TEXT NOT NULL,
        number INTEGER NOT NULL CHECK (number >= 1),
        title TEXT NOT NULL,
        content TEXT NOT NULL,
        created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
        updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
        PRIMARY KEY (output_id, number)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS chapter_summaries (
        project_id TEXT NOT NULL,
        number INTEGER NOT NULL,
        title TEXT NOT NULL,
        summary TEXT NOT NULL,
        characters JSONB NOT NULL DEFAULT '[]'::jsonb,
        cliffhanger TEXT,
        open_threads JSONB NOT NULL DEFAULT '[]'::jsonb,
        created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
        PRIMARY KEY (project_id, number)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS project_daily_quotas (
        project_id TEXT NOT NULL,
        day DATE NOT NULL,
        target INTEGER NOT NULL CHECK (target > 0),
        written INTEGER NOT NULL DEFAULT 0 CHECK (written >= 0 AND written <= target),
        next_due_at TIMESTAMPTZ,
        status TEXT NOT NULL DEFAULT 'active',
        retry_count INTEGER NOT NULL DEFAULT 0,
        last_error TEXT,
        updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
        PRIMARY KEY (project_id, day)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS story_synopses (
        project_id TEXT PRIMARY KEY,
        text TEXT NOT NULL,
        last_chapter INTEGER NOT NULL,
        updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS arc_outlines (
        project_id TEXT NOT NULL,
        arc_number INTEGER NOT NULL,
        text TEXT NOT NULL,
        is_finale BOOLEAN NOT NULL DEFAULT FALSE,
        created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
        PRIMARY KEY (project_id, arc_number)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS story_bibles (
        project_id TEXT PRIMARY KEY,
        text TEXT NOT NULL,
        last_chapter INTEGER NOT NULL,
        updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
    )
    """,
)

_PROJECT_COLUMNS = (
    "id, output_id, title, cursor, target, status, touched_at, params, completion_reason, "
    "last_error, last_error_at, created_at, updated_at"
)
_QUOTA_COLUMNS = "project_id, day, target, written, next_due_at, status, retry_count, last_error, updated_at"


def _project(row: dict[str, Any]) -> Project:
    return Project.model_validate(row)


def _quota(row: dict[str, Any]) -> DailyQuota:
    return DailyQuota.model_validate(row)


class PostgresStore(SchedulerStore):
    def __init__(self, pool: AsyncConnectionPool) -> None:
        self._pool = pool

    @classmethod
    async def connect(cls, conninfo: str, *, min_size: int = 1, max_size: int = 10) -> "PostgresStore":
        # psycopg connection URLs do not use SQLAlchemy's driver suffix.
        conninfo = conninfo.replace("+psycopg", "")
        pool = AsyncConnectionPool(conninfo, min_size=min_size, max_size=max_size, open=False)
        await pool.open()
        store = cls(pool)
        await store.initialise_schema()
        return store

    async def initialise_schema(self) -> None:
        async with self._pool.connection() as conn:
            for statement in SCHEMA_DDL:
                await conn.execute(statement)
        logger.info("Scheduler schema ready")

    async def close(self) -> None:
        await self._pool.close()

    async def _fetchall(self, query: str, params: Sequence[Any] = ()) -> list[dict[str, Any]]:
        try:
            async with self._pool.connection() as conn, conn.cursor(row_factory=dict_row) as cur:
                await cur.execute(query, params)
                if cur.description is None:
                    return []
                return await cur.fetchall()
        except psycopg.Error as exc:
            raise StoreError(str(exc)) from exc

    async def _fetchone(self, query: str, params: Sequence[Any] = ()) -> dict[str, Any] | None:
        rows = await self._fetchall(query, params)
        return rows[0] if rows else None

    async def _execute(self, query: str, params: Sequence[Any] = ()) -> int:
        try:
            async with self._pool.connection() as conn, conn.cursor() as cur:
                await cur.execute(query, params)
                return cur.rowcount
        except psycopg.Error as exc:
            raise StoreError(str(exc)) from exc

    # Projects -----------------------------------------------------------

    async def list_active_projects(self) -> list[Project]:
        rows = await self._fetchall(
            f"SELECT {_PROJECT_COLUMNS} FROM projects WHERE status = 'active' ORDER BY id"
        )
        return [_project(row) for row in rows]

    async def get_project(self, project_id: str) -> Project | None:
        row = await self._fetchone(f"SELECT {_PROJECT_COLUMNS} FROM projects WHERE id = %s", (project_id,))
        return _project(row) if row else None

    async def claim_projects(
        self, project_ids: Sequence[str], stale_before: datetime, now: datetime
    ) -> list[str]:
        if not project_ids:
            return []
        rows = await self._fetchall(
            """
            UPDATE projects
            SET touched_at = %s, updated_at = %s
            WHERE id = ANY(%s)
              AND status = 'active'
              AND (touched_at IS NULL OR touched_at < %s)
            RETURNING id
            """,
            (now, now, list(project_ids), stale_before),
        )
        return [row["id"] for row in rows]

    async def advance_cursor(self, project_id: str, cursor: int, now: datetime) -> bool:
        changed = await self._execute(
            """
            UPDATE projects SET cursor = %s, updated_at = %s
            WHERE id = %s AND status = 'active' AND cursor < %s
            """,
            (cursor, now, project_id, cursor),
        )
        return changed > 0

    async def correct_cursor(self, project_id: str, cursor: int, now: datetime) -> None:
        await self._execute(
            "UPDATE projects SET cursor = %s, updated_at = %s WHERE id = %s",
            (max(cursor, 0), now, project_id),
        )

    async def complete_project(
        self, project_id: str, reason: CompletionReason, now: datetime
    ) -> None:
        await self._execute(
            """
            UPDATE projects SET status = 'completed', completion_reason = %s, updated_at = %s
            WHERE id = %s
            """,
            (reason.value, now, project_id),
        )

    async def record_project_error(self, project_id: str, message: str, now: datetime) -> None:
        await self._execute(
            "UPDATE projects SET last_error = %s, last_error_at = %s WHERE id = %s",
            (truncate_message(message), now, project_id),
        )

    # Daily quotas -------------------------------------------------------

    async def list_quotas(
        self, day: date, project_ids: Iterable[str] | None = None
    ) -> dict[str, DailyQuota]:
        if project_ids is None:
            rows = await self._fetchall(
                f"SELECT {_QUOTA_COLUMNS} FROM project_daily_quotas WHERE day = %s", (day,)
            )
        else:
            rows = await self._fetchall(
                f"SELECT {_QUOTA_COLUMNS} FROM project_daily_quotas WHERE day = %s AND project_id = ANY(%s)",
                (day, list(project_ids)),
            )
        return {row["project_id"]: _quota(row) for row in rows}

    async def insert_quotas(self, quotas: Sequence[DailyQuota]) -> int:
        if not quotas:
            return 0
        try:
            async with self._pool.connection() as conn, conn.cursor() as cur:
                created = 0
                for quota in quotas:
                    await cur.execute(
                        """
                        INSERT INTO project_daily_quotas
                            (project_id, day, target, written, next_due_at, status, retry_count, updated_at)
                        VALUES (%s, %s, %s, %s, %s, %s, %s, %s)
                        ON CONFLICT (project_id, day) DO NOTHING
                        """,
                        (
                            quota.project_id,
                            quota.day,
                            quota.target,
                            quota.written,
                            quota.next_due_at,
                            quota.status.value,
                            quota.retry_count,
                            quota.updated_at,
                        ),
                    )
                    created += cur.rowcount
                return created
        except psycopg.Error as exc:
            raise StoreError(str(exc)) from exc

    async def increment_quota(self, project_id: str, day: date, now: datetime) -> DailyQuota | None:
        row = await self._fetchone(
            f"""
            UPDATE project_daily_quotas
            SET written = written + 1,
                status = CASE WHEN written + 1 >= target THEN 'completed' ELSE 'active' END,
                next_due_at = CASE WHEN written + 1 >= target THEN NULL ELSE next_due_at END,
                updated_at = %s
            WHERE project_id = %s AND day = %s AND written < target
            RETURNING {_QUOTA_COLUMNS}
            """,
            (now, project_id, day),
        )
        return _quota(row) if row else None

    async def schedule_quota(
        self, project_id: str, day: date, next_due_at: datetime | None, now: datetime
    ) -> None:
        await self._execute(
            """
            UPDATE project_daily_quotas SET next_due_at = %s, updated_at = %s
            WHERE project_id = %s AND day = %s AND status <> 'completed'
            """,
            (next_due_at, now, project_id, day),
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
        row = await self._fetchone(
            f"""
            UPDATE project_daily_quotas
            SET retry_count = retry_count + 1,
                last_error = %s,
                next_due_at = CASE WHEN status = 'completed' THEN NULL ELSE %s END,
                status = CASE
                    WHEN status = 'active' AND retry_count + 1 >= %s THEN 'failed'
                    ELSE status
                END,
                updated_at = %s
            WHERE project_id = %s AND day = %s
            RETURNING {_QUOTA_COLUMNS}
            """,
            (truncate_message(message), next_due_at, max_retries, now, project_id, day),
        )
        return _quota(row) if row else None

    # Chapters and context ---------------------------------------------

    async def list_chapter_numbers(self, output_id: str, upto: int) -> list[int]:
        rows = await self._fetchall(
            "SELECT number FROM chapters WHERE output_id = %s AND number <= %s ORDER BY number",
            (output_id, upto),
        )
        return [row["number"] for row in rows]

    async def upsert_chapter(self, unit: ContentUnit) -> None:
        await self._execute(
            """
            INSERT INTO chapters (output_id, number, title, content, created_at, updated_at)
            VALUES (%s, %s, %s, %s, %s, %s)
            ON CONFLICT (output_id, number)
            DO UPDATE SET title = EXCLUDED.title, content = EXCLUDED.content, updated_at = EXCLUDED.updated_at
            """,
            (unit.output_id, unit.number, unit.title, unit.content, unit.created_at, unit.updated_at),
        )

    async def upsert_summary(self, summary: ChapterSummary) -> None:
        await self._execute(
            """
            INSERT INTO chapter_summaries
                (project_id, number, title, summary, characters, cliffhanger, open_threads, created_at)
            VALUES (%s, %s, %s, %s, %s, %s, %s, %s)
            ON CONFLICT (project_id, number)
            DO UPDATE SET title = EXCLUDED.title,
                          summary = EXCLUDED.summary,
                          characters = EXCLUDED.characters,
                          cliffhanger = EXCLUDED.cliffhanger,
                          open_threads = EXCLUDED.open_threads
            """,
            (
                summary.project_id,
                summary.number,
                summary.title,
                summary.summary,
                Jsonb(summary.characters),
                summary.cliffhanger,
                Jsonb(summary.open_threads),
                summary.created_at,
            ),
        )

    async def list_summaries(self, project_id: str, after: int, upto: int) -> list[ChapterSummary]:
        rows = await self._fetchall(
            """
            SELECT project_id, number, title, summary, characters, cliffhanger, open_threads, created_at
            FROM chapter_summaries
            WHERE project_id = %s AND number > %s AND number <= %s
            ORDER BY number
            """,
            (project_id, after, upto),
        )
        return [ChapterSummary.model_validate(row) for row in rows]

    async def get_synopsis(self, project_id: str) -> StorySynopsis | None:
        row = await self._fetchone(
            "SELECT project_id, text, last_chapter, updated_at FROM story_synopses WHERE project_id = %s",
            (project_id,),
        )
        return StorySynopsis.model_validate(row) if row else None

    async def save_synopsis(self, synopsis: StorySynopsis) -> None:
        await self._execute(
            """
            INSERT INTO story_synopses (project_id, text, last_chapter, updated_at)
            VALUES (%s, %s, %s, %s)
            ON CONFLICT (project_id)
            DO UPDATE SET text = EXCLUDED.text, last_chapter = EXCLUDED.last_chapter, updated_at = EXCLUDED.updated_at
            """,
            (synopsis.project_id, synopsis.text, synopsis.last_chapter, synopsis.updated_at),
        )

    async def get_arc_outline(self, project_id: str, arc_number: int) -> ArcOutline | None:
        row = await self._fetchone(
            """
            SELECT project_id, arc_number, text, is_finale, created_at
            FROM arc_outlines WHERE project_id = %s AND arc_number = %s
            """,
            (project_id, arc_number),
        )
        return ArcOutline.model_validate(row) if row else None

    async def save_arc_outline(self, outline: ArcOutline) -> None:
        await self._execute(
            """
            INSERT INTO arc_outlines (project_id, arc_number, text, is_finale, created_at)
            VALUES (%s, %s, %s, %s, %s)
            ON CONFLICT (project_id, arc_number)
            DO UPDATE SET text = EXCLUDED.text, is_finale = EXCLUDED.is_finale
            """,
            (outline.project_id, outline.arc_number, outline.text, outline.is_finale, outline.created_at),
        )

    async def get_bible(self, project_id: str) -> StoryBible | None:
        row = await self._fetchone(
            "SELECT project_id, text, last_chapter, updated_at FROM story_bibles WHERE project_id = %s",
            (project_id,),
        )
        return StoryBible.model_validate(row) if row else None

    async def save_bible(self, bible: StoryBible) -> None:
        await self._execute(
            """
            INSERT INTO story_bibles (project_id, text, last_chapter, updated_at)
            VALUES (%s, %s, %s, %s)
            ON CONFLICT (project_id)
            DO UPDATE SET text = EXCLUDED.text, last_chapter = EXCLUDED.last_chapter, updated_at = EXCLUDED.updated_at
            """,
            (bible.project_id, bible.text, bible.last_chapter, bible.updated_at),
        )
