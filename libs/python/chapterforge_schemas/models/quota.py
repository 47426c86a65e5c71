"""Per-project, per-day production quota."""

from __future__ import annotations

from datetime import date, datetime, timezone
from typing import Optional

from pydantic import BaseModel, Field, model_validator

from ..enums import QuotaStatus


class DailyQuota(BaseModel):
    """One row per (project, reference-timezone day)."""

    project_id: str
    day: date
    target: int = Field(..., ge=1)
    written: int = Field(0, ge=0)
    next_due_at: Optional[datetime] = None
    status: QuotaStatus = QuotaStatus.ACTIVE
    retry_count: int = Field(0, ge=0)
    last_error: Optional[str] = None
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @model_validator(mode="after")
    def check_written(self) -> "DailyQuota":
        if self.written > self.target:
            raise ValueError("written chapters cannot exceed the daily target")
        if self.written == self.target and self.status == QuotaStatus.ACTIVE:
            raise ValueError("a fully written quota must be marked completed")
        return self

    @property
    def remaining(self) -> int:
        return self.target - self.written

    def is_due(self, now: datetime) -> bool:
        if self.status != QuotaStatus.ACTIVE:
            return False
        return self.next_due_at is None or self.next_due_at <= now
