"""OpenAI chat-completions provider implementation."""

from __future__ import annotations

import time
from typing import Any, Dict, List

import openai
from openai import AsyncOpenAI

from .base import LLMProvider, ProviderCapabilities, ProviderRequest, ProviderResponse
from .config import ProviderConfig
from .exceptions import ProviderResponseError, ProviderUnavailableError


class OpenAIProvider(LLMProvider):
    name = "openai"

    def __init__(self, config: ProviderConfig) -> None:
        self._config = config
        # Retries are owned by the scheduler's fallback path, not the SDK.
        self._client = AsyncOpenAI(api_key=config.api_key, max_retries=0)

    def capabilities(self) -> ProviderCapabilities:
        return ProviderCapabilities(
            supports_json_mode=True,
            max_input_tokens=None,
            max_output_tokens=self._config.settings.max_output_tokens,
        )

    async def generate(self, request: ProviderRequest) -> ProviderResponse:
        settings = self._config.settings
        messages: List[Dict[str, Any]] = []
        if request.system_prompt:
            messages.append({"role": "system", "content": request.system_prompt})
        messages.append({"role": "user", "content": request.prompt})

        params: Dict[str, Any] = {
            "model": self._config.model,
            "messages": messages,
            "temperature": (
                request.temperature if request.temperature is not None else settings.temperature
            ),
        }

        top_p = request.top_p if request.top_p is not None else settings.top_p
        if top_p is not None:
            params["top_p"] = top_p

        max_output = (
            request.max_output_tokens
            if request.max_output_tokens is not None
            else settings.max_output_tokens
        )
        if max_output:
            params["max_completion_tokens"] = max_output

        if request.json_schema:
            params["response_format"] = {
                "type": "json_schema",
                "json_schema": {"name": "structured", "schema": dict(request.json_schema)},
            }
        elif settings.json_mode:
            params["response_format"] = {"type": "json_object"}

        start = time.perf_counter()
        try:
            response = await self._client.chat.completions.create(**params)
        except openai.OpenAIError as err:
            raise ProviderUnavailableError(f"OpenAI call failed: {err}") from err
        latency_ms = (time.perf_counter() - start) * 1000

        try:
            text = response.choices[0].message.content or ""
        except (IndexError, AttributeError) as err:
            raise ProviderResponseError("OpenAI response missing content") from err
        if not text:
            raise ProviderResponseError("OpenAI response was empty")

        usage = response.usage
        return ProviderResponse(
            text=text,
            raw=response,
            model=response.model,
            prompt_tokens=usage.prompt_tokens if usage else 0,
            completion_tokens=usage.completion_tokens if usage else 0,
            latency_ms=latency_ms,
        )
