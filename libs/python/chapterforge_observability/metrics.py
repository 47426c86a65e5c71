"""Prometheus metrics for the scheduler service."""

from __future__ import annotations

from time import perf_counter
from typing import TYPE_CHECKING, Optional

from fastapi import FastAPI, Response
from prometheus_client import CONTENT_TYPE_LATEST, Counter, Histogram, generate_latest
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

if TYPE_CHECKING:  # pragma: no cover - imported for type checking only
    from chapterforge_providers.base import ProviderResponse


_HTTP_REQUEST_COUNT = Counter(
    "chapterforge_http_requests_total",
    "Total HTTP requests processed by service",
    labelnames=("service", "method", "route", "status"),
)

_HTTP_REQUEST_LATENCY = Histogram(
    "chapterforge_http_request_duration_seconds",
    "Latency of HTTP requests",
    labelnames=("service", "method", "route"),
)

_TICK_DURATION = Histogram(
    "chapterforge_tick_duration_seconds",
    "Wall-clock duration of scheduler ticks",
    labelnames=("service",),
    buckets=(1, 5, 15, 30, 60, 120, 180, 240, 300, 600),
)

_TASK_DURATION = Histogram(
    "chapterforge_task_duration_seconds",
    "Duration of a single project unit of work",
    labelnames=("service", "tier", "status"),
    buckets=(1, 5, 15, 30, 60, 90, 120, 180, 240, 300),
)

_TASK_OUTCOMES = Counter(
    "chapterforge_task_outcomes_total",
    "Project unit-of-work outcomes by tier",
    labelnames=("service", "tier", "status"),
)

_CLAIM_CONFLICTS = Counter(
    "chapterforge_claim_conflicts_total",
    "Candidates dropped because another tick already holds them",
    labelnames=("service", "tier"),
)

_COMPLETIONS = Counter(
    "chapterforge_project_completions_total",
    "Projects moved to the completed state",
    labelnames=("service", "reason"),
)

_PIPELINE_STEP_FAILURES = Counter(
    "chapterforge_pipeline_step_failures_total",
    "Post-write steps that failed",
    labelnames=("service", "step"),
)

_LLM_TOKENS = Counter(
    "chapterforge_llm_tokens_total",
    "Token usage by provider and purpose",
    labelnames=("service", "purpose", "provider", "token_type"),
)

_LLM_LATENCY = Histogram(
    "chapterforge_llm_latency_seconds",
    "Latency of LLM provider calls",
    labelnames=("service", "purpose", "provider"),
)


class PrometheusMiddleware(BaseHTTPMiddleware):
    """Collect request metrics for FastAPI services."""

    def __init__(self, app: FastAPI, service_name: str) -> None:
        super().__init__(app)
        self.service_name = service_name

    async def dispatch(self, request: Request, call_next):  # type: ignore[override]
        start = perf_counter()
        response = await call_next(request)
        elapsed = perf_counter() - start

        route_template = request.url.path
        route = request.scope.get("route")
        if route and getattr(route, "path", None):
            route_template = route.path  # type: ignore[assignment]

        method = request.method
        status = getattr(response, "status_code", 500)

        _HTTP_REQUEST_COUNT.labels(self.service_name, method, route_template, str(status)).inc()
        _HTTP_REQUEST_LATENCY.labels(self.service_name, method, route_template).observe(elapsed)
        return response


def setup_fastapi_metrics(app: FastAPI, service_name: str, endpoint: str = "/metrics") -> None:
    """Register Prometheus middleware and metrics endpoint for a FastAPI app."""

    if getattr(app.state, "metrics_configured", False):
        return

    app.add_middleware(PrometheusMiddleware, service_name=service_name)

    @app.get(endpoint, include_in_schema=False)
    async def _metrics_endpoint() -> Response:
        return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)

    app.state.metrics_configured = True


def observe_tick_duration(duration_seconds: float, *, service_name: str) -> None:
    _TICK_DURATION.labels(service_name).observe(max(duration_seconds, 0.0))


def observe_task_outcome(
    tier: str,
    status: str,
    duration_seconds: float,
    *,
    service_name: str,
) -> None:
    """Record one project attempt and its duration."""

    _TASK_DURATION.labels(service_name, tier, status).observe(max(duration_seconds, 0.0))
    _TASK_OUTCOMES.labels(service_name, tier, status).inc()


def record_claim_conflicts(count: int, *, tier: str, service_name: str) -> None:
    if count > 0:
        _CLAIM_CONFLICTS.labels(service_name, tier).inc(count)


def record_completion(reason: str, *, service_name: str) -> None:
    _COMPLETIONS.labels(service_name, reason).inc()


def record_pipeline_failure(step: str, *, service_name: str) -> None:
    _PIPELINE_STEP_FAILURES.labels(service_name, step).inc()


def observe_provider_response(
    *,
    purpose: str,
    provider: str,
    service_name: str,
    response: Optional["ProviderResponse"],
) -> None:
    """Capture token usage and latency from provider responses."""

    if response is None:
        return

    prompt_tokens = getattr(response, "prompt_tokens", None)
    if isinstance(prompt_tokens, (int, float)) and prompt_tokens >= 0:
        _LLM_TOKENS.labels(service_name, purpose, provider, "prompt").inc(prompt_tokens)

    completion_tokens = getattr(response, "completion_tokens", None)
    if isinstance(completion_tokens, (int, float)) and completion_tokens >= 0:
        _LLM_TOKENS.labels(service_name, purpose, provider, "completion").inc(completion_tokens)

    latency_ms = getattr(response, "latency_ms", None)
    if isinstance(latency_ms, (int, float)) and latency_ms >= 0:
        _LLM_LATENCY.labels(service_name, purpose, provider).observe(latency_ms / 1000)
