"""Shared observability helpers used across Chapter Forge services."""

from .logging import current_log_context, log_context, setup_logging
from .metrics import (
    observe_provider_response,
    observe_task_outcome,
    observe_tick_duration,
    record_claim_conflicts,
    record_completion,
    record_pipeline_failure,
    setup_fastapi_metrics,
)

__all__ = [
    "setup_logging",
    "log_context",
    "current_log_context",
    "setup_fastapi_metrics",
    "observe_provider_response",
    "observe_task_outcome",
    "observe_tick_duration",
    "record_claim_conflicts",
    "record_completion",
    "record_pipeline_failure",
]
