"""Exceptions raised by provider adapters.

Adapters translate SDK-specific failures into this hierarchy so callers only
ever need to catch :class:`ProviderError`.
"""

from __future__ import annotations


class ProviderError(RuntimeError):
    """Base error raised for provider failures."""


class ProviderConfigError(ProviderError):
    """Missing or malformed provider configuration."""


class ProviderResponseError(ProviderError):
    """The provider answered, but the answer cannot be used."""


class ProviderUnavailableError(ProviderError):
    """The provider call itself failed (network, quota, server error)."""
