from __future__ import annotations

from typing import Sequence

from backend.app.core.errors import ConfigValidationError, ProviderError
from backend.app.core.logging import get_logger
from backend.app.providers.base import HTTPProviderAdapter, PreparedRequest
from backend.app.providers.credentials import auth_headers
from backend.app.providers.stream import Chunk, parse_sse_line
from backend.app.providers.types import (
    Completion,
    ConversationTurn,
    InlineImage,
    ModelInfo,
    ProviderConfig,
    ProviderKind,
)
from backend.app.services.token_accounting import usage_from_provider

logger = get_logger(__name__)


def openai_message(turn: ConversationTurn) -> dict:
    images = [ref for ref in turn.attachments if isinstance(ref, InlineImage)]
    if len(images) != len(turn.attachments):
        logger.warning("Dropping unresolved image attachments", data={"count": len(turn.attachments) - len(images)})
    if not images:
        return {"role": turn.role, "content": turn.text}

    content: list[dict] = []
    if turn.text:
        content.append({"type": "text", "text": turn.text})
    for image in images:
        content.append({"type": "image_url", "image_url": {"url": image.data_url}})
    return {"role": turn.role, "content": content}


class OpenAICompatAdapter(HTTPProviderAdapter):
    kind = ProviderKind.OPENAI_COMPATIBLE
    display_name = "OpenAI Compatible"
    requires_endpoint = False
    # OpenAI takes API keys as bearer tokens too
    api_key_header: str | None = None

    def __init__(self, client, default_endpoint: str = "https://api.openai.com/v1", **kwargs):
        super().__init__(client, **kwargs)
        self.default_endpoint = default_endpoint.rstrip("/")

    def base_url(self, config: ProviderConfig) -> str:
        return (config.endpoint or self.default_endpoint).rstrip("/")

    def is_configured(self, config: ProviderConfig) -> bool:
        return bool(config.credential and config.credential.strip())

    def validate(self, config: ProviderConfig) -> None:
        if not config.model:
            raise ConfigValidationError("OpenAI-compatible configurations require a model")

    def headers(self, config: ProviderConfig) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        headers.update(auth_headers(config.credential, self.api_key_header))
        return headers

    def chat_url(self, config: ProviderConfig) -> str:
        return f"{self.base_url(config)}/chat/completions"

    def request_body(self, config: ProviderConfig, context: Sequence[ConversationTurn], stream: bool) -> dict:
        body: dict = {
            "model": config.model,
            "messages": [openai_message(turn) for turn in context],
            "stream": stream,
        }
        if config.sampling.temperature is not None:
            body["temperature"] = config.sampling.temperature
        if config.sampling.max_output_tokens is not None:
            body["max_tokens"] = config.sampling.max_output_tokens
        return body

    def build_request(
        self, config: ProviderConfig, context: Sequence[ConversationTurn], stream: bool
    ) -> PreparedRequest:
        return PreparedRequest(
            method="POST",
            url=self.chat_url(config),
            headers=self.headers(config),
            body=self.request_body(config, context, stream),
        )

    def parse_completion(self, data: dict) -> Completion:
        choices = data.get("choices")
        if not isinstance(choices, list) or not choices:
            raise ProviderError("Provider response contained no choices")
        message = (choices[0] or {}).get("message") or {}
        text = message.get("content") or ""
        return Completion(text=text, usage=usage_from_provider(data.get("usage")))

    def parse_stream_line(self, line: str) -> list[Chunk]:
        return parse_sse_line(line)

    def models_request(self, config: ProviderConfig) -> PreparedRequest:
        return PreparedRequest(method="GET", url=f"{self.base_url(config)}/models", headers=self.headers(config))

    def parse_models(self, data: dict) -> list[ModelInfo]:
        models = []
        for model_data in data.get("data", []):
            if not isinstance(model_data, dict) or not model_data.get("id"):
                continue
            models.append(
                ModelInfo(
                    id=model_data["id"],
                    label=model_data["id"],
                    raw=model_data,
                )
            )
        return models
