from __future__ import annotations

import json
from contextlib import aclosing
from typing import AsyncGenerator, Literal, Sequence

from fastapi import APIRouter, Depends, Request
from fastapi.responses import StreamingResponse
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from backend.app.api.deps import get_blob_store, get_config_resolver, get_context_builder, get_dispatcher
from backend.app.core.errors import ConfigNotFound, InvalidTurnError
from backend.app.core.logging import bind_context, get_logger, user_id_var
from backend.app.db.repo.users_repo import get_user
from backend.app.db.session import get_db
from backend.app.providers.types import ConversationTurn, ImageRef, InlineImage, ProviderConfig, RemoteImage
from backend.app.services.blob_store import HTTPBlobStore
from backend.app.services.config_resolver import ConfigResolver
from backend.app.services.context_builder import ContextBuilder, profile_context_sentence
from backend.app.services.dispatcher import ProviderDispatcher
from backend.app.services.token_accounting import reconcile

logger = get_logger(__name__)

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


class ImagePayload(BaseModel):
    data: str | None = Field(default=None, description="Base64 image bytes")
    mime: str = "image/jpeg"
    key: str | None = Field(default=None, description="Blob store key")
    url: str | None = Field(default=None, description="Public blob store URL")


class ProfilePayload(BaseModel):
    height: float | None = None
    weight: float | None = None
    body_fat: float | None = None
    lifestyle_habits: str | None = None


class HistoryTurn(BaseModel):
    role: Literal["system", "user", "assistant"]
    content: str = ""
    images: list[ImagePayload] = Field(default_factory=list)


class ChatRequest(BaseModel):
    user_id: int | None = None
    config_id: str | None = None
    message: str = ""
    images: list[ImagePayload] = Field(default_factory=list)
    history: list[HistoryTurn] = Field(default_factory=list)
    profile: ProfilePayload | None = Field(default=None, description="Overrides the stored user profile")

    model_config = {
        "json_schema_extra": {
            "examples": [
                {"user_id": 1, "message": "Hello, how can you help me today?", "history": []}
            ]
        }
    }


def _image_ref(payload: ImagePayload, blob_store: HTTPBlobStore) -> ImageRef | None:
    if payload.data:
        return InlineImage(data_base64=payload.data, mime=payload.mime)
    key = payload.key or (blob_store.extract_key_from_url(payload.url) if payload.url else None)
    if key:
        return RemoteImage(storage_key=key)
    return None


def _image_refs(payloads: Sequence[ImagePayload], blob_store: HTTPBlobStore) -> list[ImageRef]:
    refs = [_image_ref(p, blob_store) for p in payloads]
    return [ref for ref in refs if ref is not None]


def _resolve_config(req: ChatRequest, resolver: ConfigResolver) -> ProviderConfig | None:
    if req.config_id:
        config = resolver.get(req.config_id)
        if config is None or not config.enabled:
            raise ConfigNotFound()
        return config
    return resolver.resolve(req.user_id)


def _profile_context(db: Session, req: ChatRequest) -> str | None:
    if req.profile is not None:
        p = req.profile
        return profile_context_sentence(p.height, p.weight, p.body_fat, p.lifestyle_habits)
    if req.user_id is None:
        return None
    user = get_user(db, req.user_id)
    if user is None:
        return None
    return profile_context_sentence(user.height, user.weight, user.body_fat, user.lifestyle_habits)


async def _prepare(
    req: ChatRequest,
    db: Session,
    resolver: ConfigResolver,
    builder: ContextBuilder,
    blob_store: HTTPBlobStore,
    dispatcher: ProviderDispatcher,
) -> tuple[ProviderConfig | None, list[ConversationTurn]]:
    if not req.message.strip() and not req.images:
        raise InvalidTurnError()

    with bind_context(user_id_var, req.user_id):
        config = _resolve_config(req, resolver)
        # Validate before any bytes are committed to the client
        dispatcher.select(config)

        history = [
            ConversationTurn(role=turn.role, text=turn.content, attachments=tuple(_image_refs(turn.images, blob_store)))
            for turn in req.history
        ]
        context = await builder.build(
            system_prompt=config.system_prompt if config else None,
            profile_context=_profile_context(db, req),
            history=history,
            new_text=req.message,
            new_images=_image_refs(req.images, blob_store),
            supports_vision=config.supports_vision if config else False,
        )
    return config, context


def _sse_data(data: dict) -> str:
    return f"data: {json.dumps(data, ensure_ascii=False)}\n\n"


router = APIRouter(prefix="/chat", tags=["chat"])


@router.post("/message")
async def send_message(
    req: ChatRequest,
    db: Session = Depends(get_db),
    resolver: ConfigResolver = Depends(get_config_resolver),
    builder: ContextBuilder = Depends(get_context_builder),
    blob_store: HTTPBlobStore = Depends(get_blob_store),
    dispatcher: ProviderDispatcher = Depends(get_dispatcher),
) -> dict:
    """Buffered chat turn: one JSON response with the full completion."""
    config, context = await _prepare(req, db, resolver, builder, blob_store, dispatcher)
    result = await dispatcher.dispatch(config, context, streaming=False)
    return result.as_dict()


@router.post("/message/stream")
async def stream_message(
    req: ChatRequest,
    request: Request,
    db: Session = Depends(get_db),
    resolver: ConfigResolver = Depends(get_config_resolver),
    builder: ContextBuilder = Depends(get_context_builder),
    blob_store: HTTPBlobStore = Depends(get_blob_store),
    dispatcher: ProviderDispatcher = Depends(get_dispatcher),
) -> StreamingResponse:
    """Streamed chat turn as ``data: {"content", "done"}`` server-sent events."""
    config, context = await _prepare(req, db, resolver, builder, blob_store, dispatcher)
    return StreamingResponse(
        stream_chat_generator(request, dispatcher, config, context),
        media_type="text/event-stream",
        headers=SSE_HEADERS,
    )


async def stream_chat_generator(
    request: Request,
    dispatcher: ProviderDispatcher,
    config: ProviderConfig | None,
    context: list[ConversationTurn],
) -> AsyncGenerator[str, None]:
    """Relay dispatcher events as they arrive; stop upstream when the client leaves."""
    async with aclosing(dispatcher.stream(config, context)) as events:
        async for event in events:
            if await request.is_disconnected():
                logger.info("Client disconnected; cancelling provider stream")
                return
            if event.kind == "delta":
                yield _sse_data({"content": event.text or "", "done": False})
            elif event.kind == "done":
                usage = reconcile(event.usage, context, event.text or "")
                yield _sse_data({"content": "", "done": True, "usage": usage.as_dict()})
            else:
                yield _sse_data(
                    {
                        "content": "",
                        "done": True,
                        "error": event.error_message,
                        "code": event.error_code,
                    }
                )
