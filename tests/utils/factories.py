"""Builders and stub providers shared by the scheduler tests."""

from __future__ import annotations

import asyncio
import json
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Optional

from chapterforge_providers import (
    LLMProvider,
    ProviderCapabilities,
    ProviderRequest,
    ProviderResponse,
    ProviderResponseError,
)
from chapterforge_schemas import Project, ProjectParams, ProjectStatus

from services.scheduler.app.settings import SchedulerSettings

# 12:00 in Asia/Ho_Chi_Minh.
FIXED_NOW = datetime(2026, 3, 10, 5, 0, tzinfo=timezone.utc)


class FixedClock:
    """Callable clock that only moves when told to."""

    def __init__(self, now: datetime = FIXED_NOW) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **delta: float) -> datetime:
        self.now = self.now + timedelta(**delta)
        return self.now


def make_settings(**overrides: Any) -> SchedulerSettings:
    values: dict[str, Any] = {"summary_retry_delay_seconds": 0.0}
    values.update(overrides)
    return SchedulerSettings(**values)


def make_project(
    project_id: str = "p1",
    *,
    cursor: int = 0,
    target: int = 200,
    output_id: Optional[str] = "",
    status: ProjectStatus = ProjectStatus.ACTIVE,
    touched_at: Optional[datetime] = None,
    **params: Any,
) -> Project:
    return Project(
        id=project_id,
        output_id=f"novel-{project_id}" if output_id == "" else output_id,
        title=f"Saga {project_id}",
        cursor=cursor,
        target=target,
        status=status,
        touched_at=touched_at,
        params=ProjectParams(genre="xianxia", premise="A sect disciple rises.", **params),
    )


def _response(payload: dict[str, Any]) -> ProviderResponse:
    return ProviderResponse(
        text=json.dumps(payload, ensure_ascii=False),
        raw={},
        model="stub-model",
        prompt_tokens=10,
        completion_tokens=20,
        latency_ms=5.0,
    )


class StoryStubProvider(LLMProvider):
    """Answers chapter, summary and artefact requests with canned JSON.

    ``chapter_text`` maps a chapter number to its content; other chapters get
    a neutral paragraph. ``fail_purposes`` lists request purposes that raise.
    """

    name = "stub"

    def __init__(
        self,
        *,
        chapter_text: Optional[dict[int, str]] = None,
        chapter_title: Optional[Callable[[int], str]] = None,
        fail_purposes: tuple[str, ...] = (),
        open_threads: Optional[list[str]] = None,
        delay: float = 0.0,
    ) -> None:
        self.chapter_text = chapter_text or {}
        self.chapter_title = chapter_title or (lambda number: f"Trial {number}")
        self.fail_purposes = set(fail_purposes)
        self.open_threads = open_threads if open_threads is not None else ["the missing elder"]
        self.delay = delay
        self.requests: list[ProviderRequest] = []

    def capabilities(self) -> ProviderCapabilities:
        return ProviderCapabilities(supports_json_mode=True)

    def purposes(self) -> list[str]:
        return [request.metadata.get("purpose") for request in self.requests]

    async def generate(self, request: ProviderRequest) -> ProviderResponse:
        self.requests.append(request)
        if self.delay:
            await asyncio.sleep(self.delay)
        purpose = request.metadata.get("purpose")
        number = request.metadata.get("chapter")
        if purpose in self.fail_purposes:
            raise ProviderResponseError(f"{purpose} failed")
        if purpose in ("chapter", "chapter_fallback"):
            content = self.chapter_text.get(number, f"Chapter {number} continues the journey through the sect.")
            return _response({"title": self.chapter_title(number), "content": content})
        if purpose == "summary":
            return _response(
                {
                    "title": f"Trial {number}",
                    "summary": f"Summary of chapter {number}.",
                    "characters": ["Lin Feng"],
                    "cliffhanger": "A shadow watches.",
                    "open_threads": self.open_threads,
                }
            )
        return _response({"text": f"{purpose} through chapter {number}"})
