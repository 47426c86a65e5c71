"""Domain models describing projects, chapters and their context artefacts."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from ..enums import CompletionReason, ProjectStatus


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ProjectParams(BaseModel):
    """Generation parameters owned by the upstream planner.

    The scheduler only forwards these to the generation engine; unknown keys
    are preserved.
    """

    model_config = ConfigDict(extra="allow")

    genre: str = Field("fantasy", max_length=80)
    style: Optional[str] = Field(None, max_length=400)
    protagonist: Optional[str] = Field(None, max_length=120)
    premise: Optional[str] = Field(None, max_length=4000)
    target_word_count: int = Field(2500, ge=200, le=20000)
    temperature: Optional[float] = Field(None, ge=0, le=2)
    model: Optional[str] = None


class Project(BaseModel):
    """An independently progressing novel."""

    id: str = Field(..., min_length=1)
    output_id: Optional[str] = Field(None, description="Novel that receives the chapters")
    title: str = Field("Untitled", max_length=300)
    cursor: int = Field(0, ge=0, description="Highest chapter the project is considered to have reached")
    target: int = Field(..., ge=1, description="Soft upper bound on chapter count")
    status: ProjectStatus = ProjectStatus.ACTIVE
    touched_at: Optional[datetime] = Field(None, description="Claim fence")
    params: ProjectParams = Field(default_factory=ProjectParams)
    completion_reason: Optional[CompletionReason] = None
    last_error: Optional[str] = None
    last_error_at: Optional[datetime] = None
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)

    @property
    def is_active(self) -> bool:
        return self.status == ProjectStatus.ACTIVE


class ContentUnit(BaseModel):
    """One chapter, keyed by (output_id, number)."""

    output_id: str = Field(..., min_length=1)
    number: int = Field(..., ge=1)
    title: str = Field(..., min_length=1, max_length=300)
    content: str = Field(..., min_length=1)
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)

    @field_validator("title")
    @classmethod
    def strip_title(cls, value: str) -> str:
        cleaned = value.strip()
        if not cleaned:
            raise ValueError("Chapter title cannot be blank")
        return cleaned

    @property
    def word_count(self) -> int:
        return len(self.content.split())


class ChapterSummary(BaseModel):
    """Compact structured summary used as future generation context."""

    project_id: str
    number: int = Field(..., ge=1)
    title: str
    summary: str = Field(..., min_length=1)
    characters: list[str] = Field(default_factory=list)
    cliffhanger: Optional[str] = None
    open_threads: list[str] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=_utcnow)


class StorySynopsis(BaseModel):
    project_id: str
    text: str
    last_chapter: int = Field(..., ge=0)
    updated_at: datetime = Field(default_factory=_utcnow)


class ArcOutline(BaseModel):
    """Plan for one arc (block of chapters)."""

    project_id: str
    arc_number: int = Field(..., ge=1)
    text: str
    is_finale: bool = Field(False, description="Advisory flag for the generation engine")
    created_at: datetime = Field(default_factory=_utcnow)


class StoryBible(BaseModel):
    project_id: str
    text: str
    last_chapter: int = Field(..., ge=0)
    updated_at: datetime = Field(default_factory=_utcnow)


class GeneratedChapter(BaseModel):
    """What the generation engine hands back for one chapter."""

    title: str = Field(..., min_length=1, max_length=300)
    content: str = Field(..., min_length=1)

    def to_unit(self, output_id: str, number: int) -> ContentUnit:
        return ContentUnit(output_id=output_id, number=number, title=self.title, content=self.content)
