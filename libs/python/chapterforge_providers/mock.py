"""Deterministic mock provider for tests and offline development."""

from __future__ import annotations

import json
from typing import Any, Mapping

from .base import LLMProvider, ProviderCapabilities, ProviderRequest, ProviderResponse
from .config import ProviderConfig, mock_provider_config

DEFAULT_TEXT = "Mock response generated for testing."


class MockProvider(LLMProvider):
    """Fill any requested JSON schema with placeholder values.

    ``request.metadata["chapter"]`` is echoed into string fields so chapters
    generated offline remain distinguishable.
    """

    name = "mock"

    def __init__(self, config: ProviderConfig | None = None) -> None:
        self._config = config or mock_provider_config()

    def capabilities(self) -> ProviderCapabilities:
        return ProviderCapabilities(
            supports_json_mode=True,
            max_input_tokens=32000,
            max_output_tokens=8192,
        )

    async def generate(self, request: ProviderRequest) -> ProviderResponse:
        chapter = request.metadata.get("chapter")
        if request.json_schema:
            payload = _fill_schema(request.json_schema, chapter)
            text = json.dumps(payload, ensure_ascii=False)
        else:
            text = f"{DEFAULT_TEXT}\nPrompt: {request.prompt[:80]}"
        return ProviderResponse(
            text=text,
            raw={"mock": True},
            model="mock",
            prompt_tokens=len(request.prompt.split()),
            completion_tokens=len(text.split()),
            latency_ms=1.0,
        )


def _fill_schema(schema: Mapping[str, Any], chapter: Any) -> dict[str, Any]:
    properties = schema.get("properties") or {}
    payload: dict[str, Any] = {}
    for key, spec in properties.items():
        kind = spec.get("type") if isinstance(spec, Mapping) else None
        if kind == "array":
            payload[key] = []
        elif kind == "boolean":
            payload[key] = False
        elif kind in {"integer", "number"}:
            payload[key] = 0
        elif key == "title":
            payload[key] = f"Chapter {chapter}" if chapter is not None else "Untitled"
        else:
            suffix = f" (chapter {chapter})" if chapter is not None else ""
            payload[key] = f"{DEFAULT_TEXT}{suffix}"
    return payload
