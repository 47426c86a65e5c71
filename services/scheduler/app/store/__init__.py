from __future__ import annotations

import logging

from ..settings import SchedulerSettings
from .base import SchedulerStore
from .memory import InMemoryStore
from .postgres import SCHEMA_DDL, PostgresStore

logger = logging.getLogger(__name__)


async def build_store(settings: SchedulerSettings) -> SchedulerStore:
    """Return the Postgres store when a database URL is configured."""

    if settings.database_url:
        return await PostgresStore.connect(settings.database_url)
    logger.warning("No CHAPTERFORGE_DATABASE_URL set; using the in-memory store")
    return InMemoryStore()


__all__ = ["InMemoryStore", "PostgresStore", "SCHEMA_DDL", "SchedulerStore", "build_store"]
