from __future__ import annotations

from urllib.parse import quote

import httpx

from backend.app.core.errors import ConfigValidationError, DeploymentNotFound, GatewayError
from backend.app.providers.base import PreparedRequest
from backend.app.providers.openai_compat import OpenAICompatAdapter
from backend.app.providers.types import ProviderConfig, ProviderKind


class AzureDeploymentAdapter(OpenAICompatAdapter):
    """Azure OpenAI: OpenAI wire format addressed by deployment, not model."""

    kind = ProviderKind.AZURE_DEPLOYMENT
    display_name = "Azure OpenAI"
    requires_endpoint = True
    api_key_header = "api-key"

    def __init__(self, client, default_api_version: str = "2024-02-01", **kwargs):
        super().__init__(client, **kwargs)
        self.default_api_version = default_api_version

    def base_url(self, config: ProviderConfig) -> str:
        return (config.endpoint or "").rstrip("/")

    def api_version(self, config: ProviderConfig) -> str:
        return config.api_version or self.default_api_version

    def is_configured(self, config: ProviderConfig) -> bool:
        return bool(config.endpoint and config.credential and config.credential.strip())

    def validate(self, config: ProviderConfig) -> None:
        if not config.deployment_name or not config.deployment_name.strip():
            raise ConfigValidationError("Azure configurations require a deployment name")

    def chat_url(self, config: ProviderConfig) -> str:
        deployment = quote(config.deployment_name.strip(), safe="")
        return (
            f"{self.base_url(config)}/openai/deployments/{deployment}/chat/completions"
            f"?api-version={self.api_version(config)}"
        )

    def request_body(self, config, context, stream):
        body = super().request_body(config, context, stream)
        # The deployment selects the model; keep the id only when one is set
        if not config.model:
            body.pop("model", None)
        return body

    def map_status_error(self, response: httpx.Response) -> GatewayError:
        if response.status_code == 404:
            return DeploymentNotFound(detail={"status": 404})
        return super().map_status_error(response)

    def models_request(self, config: ProviderConfig) -> PreparedRequest:
        return PreparedRequest(
            method="GET",
            url=f"{self.base_url(config)}/openai/models?api-version={self.api_version(config)}",
            headers=self.headers(config),
        )
