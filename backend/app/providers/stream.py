"""Normalization of provider wire streams into StreamEvents.

OpenAI-compatible and Azure endpoints stream server-sent events
(``data: {json}`` lines ended by ``data: [DONE]``); Ollama streams one JSON
object per line. Both are turned into the same sequence: zero or more
``delta`` events followed by exactly one ``done`` or ``error``.
"""
from __future__ import annotations

import json
from dataclasses import dataclass
from typing import AsyncIterator, Callable, Union

import httpx

from backend.app.core.errors import GatewayError, ProviderTimeout, ProviderUnreachable
from backend.app.core.logging import get_logger
from backend.app.providers.types import StreamEvent, UsageReport
from backend.app.services.token_accounting import usage_from_provider

logger = get_logger(__name__)

SSE_PREFIX = "data:"
SSE_DONE = "[DONE]"


@dataclass(frozen=True)
class UsageChunk:
    usage: UsageReport


@dataclass(frozen=True)
class DeltaChunk:
    text: str


@dataclass(frozen=True)
class DoneChunk:
    pass


Chunk = Union[DeltaChunk, DoneChunk, UsageChunk]
# A line parser returns the chunks found on one wire line (usually zero or one).
LineParser = Callable[[str], list[Chunk]]


def parse_sse_line(line: str) -> list[Chunk]:
    line = line.strip()
    if not line.startswith(SSE_PREFIX):
        return []
    data = line[len(SSE_PREFIX):].strip()
    if data == SSE_DONE:
        return [DoneChunk()]
    try:
        payload = json.loads(data)
    except json.JSONDecodeError:
        return []
    if not isinstance(payload, dict):
        return []

    chunks: list[Chunk] = []
    choices = payload.get("choices")
    if isinstance(choices, list) and choices and isinstance(choices[0], dict):
        delta = choices[0].get("delta")
        if isinstance(delta, dict):
            content = delta.get("content")
            if isinstance(content, str) and content:
                chunks.append(DeltaChunk(content))
    usage = usage_from_provider(payload.get("usage"))
    if usage is not None:
        chunks.append(UsageChunk(usage))
    return chunks


def parse_ndjson_line(line: str) -> list[Chunk]:
    line = line.strip()
    if not line:
        return []
    try:
        payload = json.loads(line)
    except json.JSONDecodeError:
        return []
    if not isinstance(payload, dict):
        return []

    chunks: list[Chunk] = []
    message = payload.get("message")
    if isinstance(message, dict):
        content = message.get("content")
        if isinstance(content, str) and content:
            chunks.append(DeltaChunk(content))
    if payload.get("done") is True:
        chunks.append(DoneChunk())
    return chunks


def transport_error(exc: Exception) -> GatewayError:
    if isinstance(exc, GatewayError):
        return exc
    if isinstance(exc, httpx.TimeoutException):
        return ProviderTimeout("Provider stream stalled")
    return ProviderUnreachable("Provider connection dropped")


async def normalize(lines: AsyncIterator[str], parse_line: LineParser) -> AsyncIterator[StreamEvent]:
    """Turn raw wire lines into deltas plus exactly one terminal event.

    Malformed lines are skipped. A transport failure becomes one ``error``
    event; a transport that ends without an explicit terminator gets a
    synthesized ``done`` carrying the accumulated text.
    """
    accumulated: list[str] = []
    usage: UsageReport | None = None
    try:
        async for line in lines:
            for chunk in parse_line(line):
                if isinstance(chunk, DeltaChunk):
                    accumulated.append(chunk.text)
                    yield StreamEvent.delta(chunk.text)
                elif isinstance(chunk, UsageChunk):
                    usage = chunk.usage
                else:
                    yield StreamEvent.done("".join(accumulated), usage)
                    return
    except (httpx.HTTPError, GatewayError) as exc:
        error = transport_error(exc)
        logger.warning("Provider stream failed", data={"code": error.code, "chars": sum(map(len, accumulated))})
        yield StreamEvent.error(error.message, error.code)
        return

    logger.debug("Provider stream ended without terminator")
    yield StreamEvent.done("".join(accumulated), usage)
