"""Provider configuration used by the generation engine."""

from __future__ import annotations

import os

from chapterforge_providers import ProviderConfig, ProviderSettings, load_provider_config, mock_provider_config
from chapterforge_providers.config import PROVIDER_ENV_VAR
from chapterforge_schemas import ProjectParams

from .settings import SchedulerSettings


def resolve_provider_config(name: str | None = None) -> ProviderConfig:
    """Return the configured provider, defaulting to the mock one."""

    provider_name = name or os.getenv(PROVIDER_ENV_VAR, "mock")
    if provider_name.lower() == "mock":
        return mock_provider_config()
    return load_provider_config(prefix=provider_name)


def apply_project_params(config: ProviderConfig, params: ProjectParams) -> ProviderConfig:
    """Honour per-project model and temperature overrides."""

    update: dict[str, object] = {}
    if params.model:
        update["model"] = params.model
    if params.temperature is not None:
        update["settings"] = config.settings.model_copy(update={"temperature": params.temperature})
    return config.model_copy(update=update) if update else config


def fallback_config(primary: ProviderConfig, settings: SchedulerSettings) -> ProviderConfig:
    """Cheaper variant of ``primary``: smaller token budget, cooler sampling."""

    budget = settings.fallback_max_output_tokens
    if primary.settings.max_output_tokens is not None:
        budget = min(budget, primary.settings.max_output_tokens)
    fallback_settings = ProviderSettings(
        temperature=min(settings.fallback_temperature, primary.settings.temperature),
        max_output_tokens=budget,
        top_p=primary.settings.top_p,
        json_mode=primary.settings.json_mode,
    )
    return primary.model_copy(update={"settings": fallback_settings})
