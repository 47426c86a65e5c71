"""Unified provider abstraction for Gemini and OpenAI chat models."""

from .base import LLMProvider, ProviderCapabilities, ProviderRequest, ProviderResponse
from .config import ProviderConfig, ProviderSettings, load_provider_config, mock_provider_config
from .exceptions import (
    ProviderConfigError,
    ProviderError,
    ProviderResponseError,
    ProviderUnavailableError,
)
from .factory import ProviderFactory
from .mock import MockProvider

__all__ = [
    "LLMProvider",
    "ProviderCapabilities",
    "ProviderRequest",
    "ProviderResponse",
    "ProviderConfig",
    "ProviderSettings",
    "load_provider_config",
    "mock_provider_config",
    "ProviderError",
    "ProviderConfigError",
    "ProviderResponseError",
    "ProviderUnavailableError",
    "ProviderFactory",
    "MockProvider",
]
