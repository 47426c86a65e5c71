"""Adapter between the scheduler and the LLM providers.

``ChapterGenerator.generate`` implements ``generate(params, number, context)``
with one in-tick retry on a cheaper fallback configuration when the primary
call yields nothing usable.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Optional, Type, TypeVar

from pydantic import BaseModel, Field, ValidationError

from chapterforge_observability import observe_provider_response
from chapterforge_providers import (
    LLMProvider,
    ProviderConfig,
    ProviderError,
    ProviderFactory,
    ProviderRequest,
    ProviderResponse,
    ProviderResponseError,
)
from chapterforge_schemas import ChapterSummary, GeneratedChapter, Project

from .errors import GenerationError
from .prompts import (
    CHAPTER_FALLBACK_PROMPT,
    CHAPTER_PROMPT,
    CHAPTER_SYSTEM_PROMPT,
    FINALE_NOTE,
)
from .providers import apply_project_params
from .ratelimit import TokenBucket
from .settings import SERVICE_NAME

logger = logging.getLogger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)

CHAPTER_SCHEMA = GeneratedChapter.model_json_schema()


class TextArtefact(BaseModel):
    """Free-text artefact such as a synopsis, outline or bible."""

    text: str = Field(..., min_length=1)


@dataclass
class GenerationContext:
    """Continuity material handed to the chapter prompt."""

    synopsis: Optional[str] = None
    bible: Optional[str] = None
    arc_outline: Optional[str] = None
    is_finale: bool = False
    recent_summaries: list[ChapterSummary] = field(default_factory=list)

    def render_summaries(self) -> str:
        if not self.recent_summaries:
            return "None yet."
        lines = []
        for summary in self.recent_summaries:
            line = f"- Chapter {summary.number} ({summary.title}): {summary.summary}"
            if summary.cliffhanger:
                line += f" Ends on: {summary.cliffhanger}"
            lines.append(line)
        return "\n".join(lines)


class ChapterGenerator:
    def __init__(
        self,
        primary: ProviderConfig,
        fallback: ProviderConfig,
        *,
        limiter: TokenBucket | None = None,
    ) -> None:
        self.primary = primary
        self.fallback = fallback
        self._limiter = limiter

    async def generate(
        self,
        project: Project,
        number: int,
        context: GenerationContext | None = None,
    ) -> GeneratedChapter:
        """Produce chapter ``number`` for ``project``.

        Raises:
            GenerationError: If both the primary and the fallback attempt fail.
        """

        context = context or GenerationContext()
        config = apply_project_params(self.primary, project.params)
        try:
            return await self._request_chapter(config, _chapter_prompt(project, number, context), number, "chapter")
        except (ProviderError, ValidationError) as exc:
            logger.warning(
                "Primary chapter generation failed; retrying with fallback",
                extra={"chapter": number, "error": str(exc)},
            )

        fallback = apply_project_params(self.fallback, project.params.model_copy(update={"temperature": None}))
        try:
            return await self._request_chapter(
                fallback, _fallback_prompt(project, number, context), number, "chapter_fallback"
            )
        except (ProviderError, ValidationError) as exc:
            raise GenerationError(f"Chapter {number} generation failed: {exc}") from exc

    async def complete_json(
        self,
        purpose: str,
        prompt: str,
        model_cls: Type[ModelT],
        *,
        system_prompt: str | None = None,
        number: int | None = None,
    ) -> ModelT:
        """Request a structured artefact and validate it into ``model_cls``.

        Raises:
            ProviderError: On provider failure or a malformed response.
        """

        request = ProviderRequest(
            prompt=prompt,
            system_prompt=system_prompt,
            json_schema=model_cls.model_json_schema(),
            temperature=0.3,
            metadata={"purpose": purpose, "chapter": number},
        )
        response = await self._call(self.primary, request, purpose)
        try:
            return model_cls.model_validate(_parse_json(response.text, purpose))
        except ValidationError as exc:
            raise ProviderResponseError(f"{purpose} response did not match its schema") from exc

    async def _request_chapter(
        self, config: ProviderConfig, prompt: str, number: int, purpose: str
    ) -> GeneratedChapter:
        request = ProviderRequest(
            prompt=prompt,
            system_prompt=CHAPTER_SYSTEM_PROMPT,
            json_schema=CHAPTER_SCHEMA,
            temperature=config.settings.temperature,
            max_output_tokens=config.settings.max_output_tokens,
            top_p=config.settings.top_p,
            metadata={"purpose": purpose, "chapter": number},
        )
        response = await self._call(config, request, purpose)
        chapter = GeneratedChapter.model_validate(_parse_json(response.text, purpose))
        if not chapter.content.strip():
            raise ProviderResponseError("Chapter response had no content")
        return chapter

    async def _call(self, config: ProviderConfig, request: ProviderRequest, purpose: str) -> ProviderResponse:
        if self._limiter is not None:
            await self._limiter.acquire()
        provider: LLMProvider = ProviderFactory.create(config)
        response = await provider.generate(request)
        observe_provider_response(
            purpose=purpose,
            provider=config.name,
            service_name=SERVICE_NAME,
            response=response,
        )
        return response


def _parse_json(payload: str, purpose: str) -> dict:
    try:
        data = json.loads(payload)
    except json.JSONDecodeError as exc:
        raise ProviderResponseError(f"{purpose} response was not valid JSON") from exc
    if not isinstance(data, dict):
        raise ProviderResponseError(f"{purpose} response must be a JSON object")
    return data


def _chapter_prompt(project: Project, number: int, context: GenerationContext) -> str:
    params = project.params
    return CHAPTER_PROMPT.format(
        number=number,
        title=project.title,
        genre=params.genre,
        style=params.style or "Not specified",
        protagonist=params.protagonist or "Not specified",
        premise=params.premise or "Not specified",
        target_word_count=params.target_word_count,
        bible=context.bible or "Not written yet.",
        synopsis=context.synopsis or "The story is just beginning.",
        recent_summaries=context.render_summaries(),
        arc_outline=context.arc_outline or "No outline yet; establish the story.",
        finale_note=FINALE_NOTE if context.is_finale else "",
    )


def _fallback_prompt(project: Project, number: int, context: GenerationContext) -> str:
    last = context.recent_summaries[-1].summary if context.recent_summaries else "This is the opening chapter."
    return CHAPTER_FALLBACK_PROMPT.format(
        number=number,
        genre=project.params.genre,
        title=project.title,
        premise=project.params.premise or "Not specified",
        last_summary=last,
        target_word_count=project.params.target_word_count,
    )
