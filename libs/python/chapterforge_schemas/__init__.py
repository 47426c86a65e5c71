"""Shared schema definitions for Chapter Forge."""

from .enums import AttemptStatus, CompletionReason, FailureKind, ProjectStatus, QuotaStatus, Tier
from .models import (
    ArcOutline,
    ChapterSummary,
    ContentUnit,
    DailyQuota,
    GeneratedChapter,
    Project,
    ProjectParams,
    StoryBible,
    StorySynopsis,
)
from .utils import first_missing_number, truncate_message

__all__ = [
    "ArcOutline",
    "AttemptStatus",
    "ChapterSummary",
    "CompletionReason",
    "ContentUnit",
    "DailyQuota",
    "FailureKind",
    "GeneratedChapter",
    "Project",
    "ProjectParams",
    "ProjectStatus",
    "QuotaStatus",
    "StoryBible",
    "StorySynopsis",
    "Tier",
    "first_missing_number",
    "truncate_message",
]
