"""Core interfaces and dataclasses for provider interactions."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Mapping, MutableMapping


@dataclass(slots=True)
class ProviderRequest:
    """Normalized request passed to providers."""

    prompt: str
    system_prompt: str | None = None
    json_schema: Mapping[str, Any] | None = None
    temperature: float | None = None
    max_output_tokens: int | None = None
    top_p: float | None = None
    metadata: MutableMapping[str, Any] = field(default_factory=dict)


@dataclass(slots=True)
class ProviderResponse:
    """Standard response returned by providers."""

    text: str
    raw: Any
    model: str
    prompt_tokens: int
    completion_tokens: int
    latency_ms: float | None = None
    received_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


@dataclass(slots=True)
class ProviderCapabilities:
    """Capability flags used when choosing a provider."""

    supports_json_mode: bool = False
    max_input_tokens: int | None = None
    max_output_tokens: int | None = None


class LLMProvider(ABC):
    """Abstract base class implemented by concrete providers."""

    name: str

    @abstractmethod
    def capabilities(self) -> ProviderCapabilities:
        """Return capability metadata."""

    @abstractmethod
    async def generate(self, request: ProviderRequest) -> ProviderResponse:
        """Generate text or JSON response for the provided prompt."""
