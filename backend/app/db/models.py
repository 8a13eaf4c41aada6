from __future__ import annotations

import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import (
    Boolean,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    func,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from backend.app.core.errors import ConfigValidationError
from backend.app.providers.types import ProviderConfig, ProviderKind, SamplingParams


class Base(DeclarativeBase):
    """Base class for all models."""


def _new_id() -> str:
    return str(uuid.uuid4())


class LLMConfig(Base):
    __tablename__ = "llm_configs"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    name: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    kind: Mapped[str] = mapped_column(String(50), nullable=False)  # ProviderKind value
    endpoint: Mapped[Optional[str]] = mapped_column(String(1000), nullable=True, default=None)
    credential: Mapped[Optional[str]] = mapped_column(Text, nullable=True, default=None)
    model: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    deployment_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True, default=None)
    api_version: Mapped[Optional[str]] = mapped_column(String(50), nullable=True, default=None)
    temperature: Mapped[Optional[float]] = mapped_column(Float, nullable=True, default=None)
    max_tokens: Mapped[Optional[int]] = mapped_column(Integer, nullable=True, default=None)
    repetition_penalty: Mapped[Optional[float]] = mapped_column(Float, nullable=True, default=None)
    system_prompt: Mapped[Optional[str]] = mapped_column(Text, nullable=True, default=None)
    supports_vision: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    is_default: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=func.now(), onupdate=func.now()
    )

    def to_provider_config(self) -> ProviderConfig:
        try:
            kind = ProviderKind(self.kind)
        except ValueError as exc:
            raise ConfigValidationError(f"Unsupported provider kind: {self.kind}") from exc
        return ProviderConfig(
            id=self.id,
            name=self.name,
            kind=kind,
            endpoint=self.endpoint,
            credential=self.credential,
            model=self.model or "",
            deployment_name=self.deployment_name,
            api_version=self.api_version,
            sampling=SamplingParams(
                temperature=self.temperature,
                max_output_tokens=self.max_tokens,
                repetition_penalty=self.repetition_penalty,
            ),
            system_prompt=self.system_prompt,
            supports_vision=bool(self.supports_vision),
            enabled=bool(self.is_enabled),
            is_default=bool(self.is_default),
        )


class User(Base):
    __tablename__ = "users"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    username: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    preferred_config_id: Mapped[Optional[str]] = mapped_column(
        String(36), ForeignKey("llm_configs.id", ondelete="SET NULL"), nullable=True, default=None
    )
    height: Mapped[Optional[float]] = mapped_column(Float, nullable=True, default=None)
    weight: Mapped[Optional[float]] = mapped_column(Float, nullable=True, default=None)
    body_fat: Mapped[Optional[float]] = mapped_column(Float, nullable=True, default=None)
    lifestyle_habits: Mapped[Optional[str]] = mapped_column(Text, nullable=True, default=None)
    created_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=func.now()
    )


# Indexes for performance
Index("idx_llm_configs_default", LLMConfig.is_default, LLMConfig.is_enabled)
Index("idx_users_preferred_config_id", User.preferred_config_id)
