"""Enum definitions shared across the scheduler and its stores."""

from __future__ import annotations

from enum import Enum


class ProjectStatus(str, Enum):
    ACTIVE = "active"
    COMPLETED = "completed"
    FAILED = "failed"


class QuotaStatus(str, Enum):
    ACTIVE = "active"
    COMPLETED = "completed"
    FAILED = "failed"


class Tier(str, Enum):
    """Resume work continues a story; cold-start work writes chapter 1."""

    RESUME = "resume"
    COLD_START = "cold_start"


class CompletionReason(str, Enum):
    HARD_STOP = "hard_stop"
    EXACT_TARGET = "exact_target"
    ARC_BOUNDARY = "arc_boundary"
    NATURAL_ENDING = "natural_ending"


class AttemptStatus(str, Enum):
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    TIMED_OUT = "timed_out"


class FailureKind(str, Enum):
    GENERATION = "generation"
    PERSISTENCE = "persistence"
    TIMEOUT = "timeout"
    INTERNAL = "internal"
