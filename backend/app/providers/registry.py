from __future__ import annotations

import httpx

from backend.app.config.settings import Settings, settings as default_settings
from backend.app.core.errors import ConfigValidationError
from backend.app.providers.azure import AzureDeploymentAdapter
from backend.app.providers.base import ProviderAdapter
from backend.app.providers.ollama import OllamaAdapter
from backend.app.providers.openai_compat import OpenAICompatAdapter
from backend.app.providers.types import ProviderKind


class ProviderRegistry:
    """Maps each provider kind to the adapter that speaks its wire protocol."""

    def __init__(self):
        self._adapters: dict[ProviderKind, ProviderAdapter] = {}

    def build_registry(self, client: httpx.AsyncClient, settings: Settings | None = None) -> None:
        settings = settings or default_settings
        timeouts = {
            "timeout_seconds": settings.provider_timeout_seconds,
            "connect_timeout_seconds": settings.provider_connect_timeout_seconds,
            "stream_idle_timeout_seconds": settings.stream_idle_timeout_seconds,
        }
        self._adapters[ProviderKind.OPENAI_COMPATIBLE] = OpenAICompatAdapter(
            client, default_endpoint=settings.openai_default_endpoint, **timeouts
        )
        self._adapters[ProviderKind.AZURE_DEPLOYMENT] = AzureDeploymentAdapter(
            client, default_api_version=settings.azure_default_api_version, **timeouts
        )
        self._adapters[ProviderKind.OLLAMA] = OllamaAdapter(client, **timeouts)

    def get(self, kind: ProviderKind) -> ProviderAdapter:
        if kind not in self._adapters:
            raise ConfigValidationError(f"Unsupported provider kind: {kind}")
        return self._adapters[kind]

    def kinds(self) -> list[ProviderKind]:
        return list(self._adapters)
