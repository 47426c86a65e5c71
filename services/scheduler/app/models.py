"""Pydantic models for the scheduler API."""

from __future__ import annotations

from datetime import date, datetime
from typing import List, Optional

from pydantic import BaseModel, Field

from chapterforge_schemas import AttemptStatus, CompletionReason, FailureKind, Tier


class ProjectOutcome(BaseModel):
    project_id: str
    tier: Tier
    status: AttemptStatus
    chapter: Optional[int] = Field(None, description="Chapter number attempted")
    backfill: bool = False
    completed: bool = False
    completion_reason: Optional[CompletionReason] = None
    failure_kind: Optional[FailureKind] = None
    error: Optional[str] = None
    maintenance_failures: List[str] = Field(default_factory=list)
    duration_seconds: float = 0.0


class TierSummary(BaseModel):
    offered: int = 0
    claimed: int = 0
    succeeded: int = 0
    failed: int = 0
    timed_out: int = 0
    completed: int = 0
    duration_seconds: float = 0.0

    def absorb(self, outcome: ProjectOutcome) -> None:
        if outcome.status == AttemptStatus.SUCCEEDED:
            self.succeeded += 1
        elif outcome.status == AttemptStatus.TIMED_OUT:
            self.timed_out += 1
        else:
            self.failed += 1
        if outcome.completed:
            self.completed += 1


class TickSummary(BaseModel):
    tick_id: str
    day: date
    started_at: datetime
    finished_at: Optional[datetime] = None
    duration_seconds: float = 0.0
    active_projects: int = 0
    quotas_created: int = 0
    eligible: int = 0
    due: int = 0
    batch_size: int = 0
    resume: TierSummary = Field(default_factory=TierSummary)
    cold_start: TierSummary = Field(default_factory=TierSummary)
    outcomes: List[ProjectOutcome] = Field(default_factory=list)
    deadline_exceeded: bool = False
    error: Optional[str] = Field(None, description="Datastore failure that ended the tick early")

    def tier(self, tier: Tier) -> TierSummary:
        return self.resume if tier == Tier.RESUME else self.cold_start
