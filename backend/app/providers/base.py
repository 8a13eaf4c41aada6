from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from contextlib import aclosing
from dataclasses import dataclass, field
from typing import AsyncIterator, Protocol, Sequence

import httpx

from backend.app.core.errors import (
    AuthenticationFailed,
    GatewayError,
    ModelNotFound,
    ProviderError,
    ProviderTimeout,
    ProviderUnreachable,
    RateLimited,
)
from backend.app.core.logging import get_logger
from backend.app.providers.stream import Chunk, normalize
from backend.app.providers.types import (
    Completion,
    ConversationTurn,
    ModelInfo,
    ProviderConfig,
    ProviderKind,
    StreamEvent,
)

logger = get_logger(__name__)


@dataclass(frozen=True)
class PreparedRequest:
    method: str
    url: str
    headers: dict[str, str] = field(default_factory=dict)
    body: dict | None = None


class ProviderAdapter(Protocol):
    kind: ProviderKind
    display_name: str
    requires_endpoint: bool

    def is_configured(self, config: ProviderConfig) -> bool:
        ...

    def validate(self, config: ProviderConfig) -> None:
        ...

    def build_request(
        self, config: ProviderConfig, context: Sequence[ConversationTurn], stream: bool
    ) -> PreparedRequest:
        ...

    def parse_completion(self, data: dict) -> Completion:
        ...

    def parse_stream_line(self, line: str) -> list[Chunk]:
        ...

    async def chat_once(self, config: ProviderConfig, context: Sequence[ConversationTurn]) -> Completion:
        ...

    def chat_stream(
        self, config: ProviderConfig, context: Sequence[ConversationTurn]
    ) -> AsyncIterator[StreamEvent]:
        ...

    async def list_models(self, config: ProviderConfig) -> list[ModelInfo]:
        ...


class HTTPProviderAdapter(ABC):
    """Shared HTTP plumbing for the concrete adapters.

    Subclasses supply ``build_request``, ``parse_completion``,
    ``parse_stream_line`` and ``models_request``; this class executes them with
    the injected ``httpx.AsyncClient`` and maps transport/status failures onto
    the gateway error taxonomy.
    """

    kind: ProviderKind
    display_name: str
    requires_endpoint = True

    def __init__(
        self,
        client: httpx.AsyncClient,
        timeout_seconds: float = 30,
        connect_timeout_seconds: float = 10,
        stream_idle_timeout_seconds: float = 60,
    ):
        self._client = client
        self.timeout_seconds = timeout_seconds
        self.connect_timeout_seconds = connect_timeout_seconds
        self.stream_idle_timeout_seconds = stream_idle_timeout_seconds

    # Hooks implemented per provider kind

    @abstractmethod
    def is_configured(self, config: ProviderConfig) -> bool:
        ...

    @abstractmethod
    def validate(self, config: ProviderConfig) -> None:
        ...

    @abstractmethod
    def build_request(
        self, config: ProviderConfig, context: Sequence[ConversationTurn], stream: bool
    ) -> PreparedRequest:
        ...

    @abstractmethod
    def parse_completion(self, data: dict) -> Completion:
        ...

    @abstractmethod
    def parse_stream_line(self, line: str) -> list[Chunk]:
        ...

    @abstractmethod
    def models_request(self, config: ProviderConfig) -> PreparedRequest:
        ...

    @abstractmethod
    def parse_models(self, data: dict) -> list[ModelInfo]:
        ...

    # Error mapping

    def map_status_error(self, response: httpx.Response) -> GatewayError:
        status = response.status_code
        if status in (401, 403):
            return AuthenticationFailed(detail={"status": status})
        if status == 429:
            return RateLimited()
        if status == 404:
            body = response.text.lower()
            if "model" in body and ("not found" in body or "does not exist" in body):
                return ModelNotFound()
            return ProviderError("Provider endpoint not found", detail={"status": status})
        return ProviderError(detail={"status": status})

    def map_transport_error(self, exc: Exception) -> GatewayError:
        if isinstance(exc, GatewayError):
            return exc
        if isinstance(exc, (httpx.TimeoutException, asyncio.TimeoutError)):
            return ProviderTimeout()
        if isinstance(exc, httpx.HTTPError):
            return ProviderUnreachable()
        return ProviderError("Provider communication failed")

    # Execution

    def _stream_timeout(self) -> httpx.Timeout:
        # Bound only the gap between chunks; long generations are legitimate.
        return httpx.Timeout(
            connect=self.connect_timeout_seconds,
            read=self.stream_idle_timeout_seconds,
            write=self.stream_idle_timeout_seconds,
            pool=self.connect_timeout_seconds,
        )

    async def _send(self, request: PreparedRequest) -> dict:
        response = await self._client.request(
            request.method,
            request.url,
            headers=request.headers,
            json=request.body,
            timeout=self.timeout_seconds,
        )
        if response.status_code >= 400:
            raise self.map_status_error(response)
        try:
            data = response.json()
        except ValueError as exc:
            raise ProviderError("Provider returned a non-JSON response") from exc
        if not isinstance(data, dict):
            raise ProviderError("Provider returned an unexpected response")
        return data

    async def _send_bounded(self, request: PreparedRequest) -> dict:
        try:
            return await asyncio.wait_for(self._send(request), timeout=self.timeout_seconds)
        except GatewayError:
            raise
        except Exception as exc:
            raise self.map_transport_error(exc) from exc

    async def chat_once(self, config: ProviderConfig, context: Sequence[ConversationTurn]) -> Completion:
        request = self.build_request(config, context, stream=False)
        data = await self._send_bounded(request)
        return self.parse_completion(data)

    async def chat_stream(
        self, config: ProviderConfig, context: Sequence[ConversationTurn]
    ) -> AsyncIterator[StreamEvent]:
        """Stream a completion.

        Failures before the response headers arrive are raised as
        ``GatewayError`` so the caller can fall back; once events flow every
        failure is delivered as a terminal ``error`` event.
        """
        request = self.build_request(config, context, stream=True)
        started = False
        finished = False
        try:
            async with self._client.stream(
                request.method,
                request.url,
                headers=request.headers,
                json=request.body,
                timeout=self._stream_timeout(),
            ) as response:
                if response.status_code >= 400:
                    await response.aread()
                    raise self.map_status_error(response)
                started = True
                async with aclosing(normalize(response.aiter_lines(), self.parse_stream_line)) as events:
                    async for event in events:
                        finished = event.is_terminal
                        yield event
        except (httpx.HTTPError, GatewayError) as exc:
            error = self.map_transport_error(exc)
            if not started:
                if error is exc:
                    raise
                raise error from exc
            if not finished:
                yield StreamEvent.error(error.message, error.code)
            else:
                logger.debug("Ignoring error after stream completed", data={"code": error.code})

    async def list_models(self, config: ProviderConfig) -> list[ModelInfo]:
        data = await self._send_bounded(self.models_request(config))
        models = [m for m in self.parse_models(data) if "embed" not in m.id.lower()]
        return sorted(models, key=lambda m: m.id)
