"""Google Gemini provider implementation."""

from __future__ import annotations

import time

from google import genai
from google.genai import errors as genai_errors
from google.genai import types

from .base import LLMProvider, ProviderCapabilities, ProviderRequest, ProviderResponse
from .config import ProviderConfig
from .exceptions import ProviderResponseError, ProviderUnavailableError


class GeminiProvider(LLMProvider):
    name = "gemini"

    def __init__(self, config: ProviderConfig) -> None:
        self._config = config
        self._client = genai.Client(api_key=config.api_key)

    def capabilities(self) -> ProviderCapabilities:
        return ProviderCapabilities(
            supports_json_mode=True,
            max_input_tokens=None,
            max_output_tokens=self._config.settings.max_output_tokens,
        )

    async def generate(self, request: ProviderRequest) -> ProviderResponse:
        settings = self._config.settings
        temperature = request.temperature if request.temperature is not None else settings.temperature
        top_p = request.top_p if request.top_p is not None else settings.top_p
        max_output = (
            request.max_output_tokens
            if request.max_output_tokens is not None
            else settings.max_output_tokens
        )

        config = types.GenerateContentConfig(
            system_instruction=request.system_prompt,
            temperature=temperature,
            top_p=top_p,
            max_output_tokens=max_output,
        )
        if request.json_schema:
            config.response_mime_type = "application/json"
            config.response_json_schema = dict(request.json_schema)
        elif settings.json_mode:
            config.response_mime_type = "application/json"

        start = time.perf_counter()
        try:
            response = await self._client.aio.models.generate_content(
                model=self._config.model,
                contents=request.prompt,
                config=config,
            )
        except genai_errors.APIError as err:
            raise ProviderUnavailableError(f"Gemini call failed: {err}") from err
        latency_ms = (time.perf_counter() - start) * 1000

        text = response.text
        if not text:
            raise ProviderResponseError("Gemini response missing text content")

        usage = response.usage_metadata
        prompt_tokens = (usage.prompt_token_count or 0) if usage else 0
        completion_tokens = (usage.candidates_token_count or 0) if usage else 0

        return ProviderResponse(
            text=text,
            raw=response,
            model=self._config.model,
            prompt_tokens=prompt_tokens,
            completion_tokens=completion_tokens,
            latency_ms=latency_ms,
        )
