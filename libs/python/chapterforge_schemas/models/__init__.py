"""Pydantic models shared between the scheduler and its stores."""

from .project import (
    ArcOutline,
    ChapterSummary,
    ContentUnit,
    GeneratedChapter,
    Project,
    ProjectParams,
    StoryBible,
    StorySynopsis,
)
from .quota import DailyQuota

__all__ = [
    "ArcOutline",
    "ChapterSummary",
    "ContentUnit",
    "DailyQuota",
    "GeneratedChapter",
    "Project",
    "ProjectParams",
    "StoryBible",
    "StorySynopsis",
]
