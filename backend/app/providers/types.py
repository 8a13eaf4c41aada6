from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import Literal, Union


class ProviderKind(str, enum.Enum):
    OPENAI_COMPATIBLE = "openai_compatible"
    OLLAMA = "ollama"
    AZURE_DEPLOYMENT = "azure_deployment"


DEMO_PROVIDER_KIND = "demo"


@dataclass(frozen=True)
class SamplingParams:
    temperature: float | None = None
    max_output_tokens: int | None = None
    repetition_penalty: float | None = None


@dataclass(frozen=True)
class ProviderConfig:
    id: str
    name: str
    kind: ProviderKind
    endpoint: str | None
    model: str
    credential: str | None = None
    deployment_name: str | None = None
    api_version: str | None = None
    sampling: SamplingParams = field(default_factory=SamplingParams)
    system_prompt: str | None = None
    supports_vision: bool = False
    enabled: bool = True
    is_default: bool = False

    def public_dict(self) -> dict:
        """Config fields safe to expose to clients (no credential)."""
        return {
            "id": self.id,
            "name": self.name,
            "kind": self.kind.value,
            "endpoint": self.endpoint,
            "model": self.model,
            "deployment_name": self.deployment_name,
            "api_version": self.api_version,
            "supports_vision": self.supports_vision,
            "enabled": self.enabled,
            "is_default": self.is_default,
            "has_credential": bool(self.credential),
        }


@dataclass
class ModelInfo:
    id: str
    label: str | None = None
    raw: dict | None = None


@dataclass(frozen=True)
class InlineImage:
    data_base64: str
    mime: str = "image/jpeg"

    @property
    def data_url(self) -> str:
        return f"data:{self.mime};base64,{self.data_base64}"


@dataclass(frozen=True)
class RemoteImage:
    storage_key: str


ImageRef = Union[InlineImage, RemoteImage]

Role = Literal["system", "user", "assistant"]


@dataclass(frozen=True)
class ConversationTurn:
    role: Role
    text: str
    attachments: tuple[ImageRef, ...] = ()

    def without_attachments(self) -> ConversationTurn:
        if not self.attachments:
            return self
        return ConversationTurn(role=self.role, text=self.text)


@dataclass(frozen=True)
class UsageReport:
    input_tokens: int
    output_tokens: int
    total_tokens: int
    estimated: bool = False

    def as_dict(self) -> dict:
        return {
            "input_tokens": self.input_tokens,
            "output_tokens": self.output_tokens,
            "total_tokens": self.total_tokens,
            "estimated": self.estimated,
        }


@dataclass(frozen=True)
class StreamEvent:
    kind: Literal["delta", "done", "error"]
    text: str | None = None
    error_message: str | None = None
    error_code: str | None = None
    usage: UsageReport | None = None

    @property
    def is_terminal(self) -> bool:
        return self.kind != "delta"

    @classmethod
    def delta(cls, text: str) -> StreamEvent:
        return cls(kind="delta", text=text)

    @classmethod
    def done(cls, text: str = "", usage: UsageReport | None = None) -> StreamEvent:
        return cls(kind="done", text=text, usage=usage)

    @classmethod
    def error(cls, message: str, code: str = "PROVIDER_ERROR") -> StreamEvent:
        return cls(kind="error", error_message=message, error_code=code)


@dataclass(frozen=True)
class Completion:
    text: str
    usage: UsageReport | None = None


@dataclass
class DispatchResult:
    final_text: str
    usage: UsageReport | None
    provider_kind: str
    provider_id: str | None
    provider_display_name: str
    error_code: str | None = None
    error_message: str | None = None

    def as_dict(self) -> dict:
        return {
            "content": self.final_text,
            "usage": self.usage.as_dict() if self.usage else None,
            "provider_kind": self.provider_kind,
            "provider_id": self.provider_id,
            "provider_name": self.provider_display_name,
            "error_code": self.error_code,
            "error_message": self.error_message,
        }
