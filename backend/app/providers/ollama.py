from __future__ import annotations

from typing import Sequence

import httpx

from backend.app.core.errors import ConfigValidationError, GatewayError, ModelNotFound
from backend.app.core.logging import get_logger
from backend.app.providers.base import HTTPProviderAdapter, PreparedRequest
from backend.app.providers.credentials import auth_headers
from backend.app.providers.stream import Chunk, parse_ndjson_line
from backend.app.providers.types import (
    Completion,
    ConversationTurn,
    InlineImage,
    ModelInfo,
    ProviderConfig,
    ProviderKind,
)

logger = get_logger(__name__)


def ollama_message(turn: ConversationTurn) -> dict:
    message: dict = {"role": turn.role, "content": turn.text}
    images = [ref.data_base64 for ref in turn.attachments if isinstance(ref, InlineImage)]
    if len(images) != len(turn.attachments):
        logger.warning("Dropping unresolved image attachments", data={"count": len(turn.attachments) - len(images)})
    if images:
        message["images"] = images
    return message


class OllamaAdapter(HTTPProviderAdapter):
    """Ollama ``/api/chat``. Ollama does not report usage in a comparable
    shape, so completions carry none and the dispatcher estimates it."""

    kind = ProviderKind.OLLAMA
    display_name = "Ollama"

    def base_url(self, config: ProviderConfig) -> str:
        return (config.endpoint or "").rstrip("/")

    def is_configured(self, config: ProviderConfig) -> bool:
        return bool(config.endpoint and config.endpoint.strip())

    def validate(self, config: ProviderConfig) -> None:
        if not config.model:
            raise ConfigValidationError("Ollama configurations require a model")

    def headers(self, config: ProviderConfig) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        # Ollama itself has no auth; a credential is for a reverse proxy in front of it
        headers.update(auth_headers(config.credential))
        return headers

    def build_request(
        self, config: ProviderConfig, context: Sequence[ConversationTurn], stream: bool
    ) -> PreparedRequest:
        options: dict = {}
        if config.sampling.temperature is not None:
            options["temperature"] = config.sampling.temperature
        if config.sampling.max_output_tokens is not None:
            options["num_predict"] = config.sampling.max_output_tokens
        if config.sampling.repetition_penalty is not None:
            options["repeat_penalty"] = config.sampling.repetition_penalty

        body: dict = {
            "model": config.model,
            "messages": [ollama_message(turn) for turn in context],
            "stream": stream,
        }
        if options:
            body["options"] = options
        return PreparedRequest(
            method="POST",
            url=f"{self.base_url(config)}/api/chat",
            headers=self.headers(config),
            body=body,
        )

    def parse_completion(self, data: dict) -> Completion:
        message = data.get("message") or {}
        return Completion(text=message.get("content") or "")

    def parse_stream_line(self, line: str) -> list[Chunk]:
        return parse_ndjson_line(line)

    def map_status_error(self, response: httpx.Response) -> GatewayError:
        if response.status_code == 404:
            return ModelNotFound("Model not found in Ollama; pull the model first")
        return super().map_status_error(response)

    def models_request(self, config: ProviderConfig) -> PreparedRequest:
        return PreparedRequest(method="GET", url=f"{self.base_url(config)}/api/tags", headers=self.headers(config))

    def parse_models(self, data: dict) -> list[ModelInfo]:
        models = []
        for model_data in data.get("models", []):
            if not isinstance(model_data, dict):
                continue
            model_id = model_data.get("name") or model_data.get("model")
            if model_id:
                models.append(ModelInfo(id=model_id, label=model_id, raw=model_data))
        return models
