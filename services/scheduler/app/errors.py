"""Exceptions raised inside the scheduler service."""

from __future__ import annotations

from chapterforge_schemas import FailureKind


class SchedulerError(RuntimeError):
    """Base class; ``kind`` feeds the tick summary and quota diagnostics."""

    kind: FailureKind = FailureKind.INTERNAL


class StoreError(SchedulerError):
    """The datastore rejected or failed an operation."""

    kind = FailureKind.PERSISTENCE


class GenerationError(SchedulerError):
    """The generation engine produced nothing usable, fallback included."""

    kind = FailureKind.GENERATION


class PersistenceError(SchedulerError):
    """A critical post-write step failed after its retries."""

    kind = FailureKind.PERSISTENCE
