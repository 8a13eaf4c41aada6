"""Provider dispatch: adapter selection, streaming with fallback, usage reconciliation."""
from __future__ import annotations

import dataclasses
import inspect
from contextlib import aclosing
from typing import AsyncIterator, Awaitable, Callable, Sequence, Union

from backend.app.core.errors import (
    ConfigValidationError,
    GatewayError,
    ProviderError,
    ProviderUnreachable,
)
from backend.app.core.logging import bind_context, get_logger, provider_id_var
from backend.app.providers.base import ProviderAdapter
from backend.app.providers.registry import ProviderRegistry
from backend.app.providers.types import (
    DEMO_PROVIDER_KIND,
    ConversationTurn,
    DispatchResult,
    ModelInfo,
    ProviderConfig,
    StreamEvent,
    UsageReport,
)
from backend.app.services.demo_responder import DEMO_DISPLAY_NAME, DemoResponder
from backend.app.services.token_accounting import estimate_usage, reconcile, render_input

logger = get_logger(__name__)

EventSink = Callable[[StreamEvent], Union[Awaitable[None], None]]

PROBE_SYSTEM_PROMPT = "You are a helpful AI assistant. Respond briefly to test messages."
PROBE_MESSAGE = (
    "Hello! This is a test message to verify the LLM configuration is working correctly. "
    "Please respond with a brief confirmation."
)
PROBE_MAX_OUTPUT_TOKENS = 150
PROBE_DEMO_REPLY = "Demo mode: Configuration test successful! (No credential configured - using demo responses)"

# Errors worth retrying as a buffered call when a stream cannot be opened.
# Credential, deployment and model errors would only fail the same way again.
STREAM_FALLBACK_ERRORS = (ProviderUnreachable, ProviderError)


def last_user_text(context: Sequence[ConversationTurn]) -> str:
    for turn in reversed(context):
        if turn.role == "user":
            return turn.text
    return ""


class ProviderDispatcher:
    def __init__(self, registry: ProviderRegistry, demo_responder: DemoResponder):
        self.registry = registry
        self.demo = demo_responder

    def select(self, config: ProviderConfig | None) -> ProviderAdapter | None:
        """Adapter for ``config``, or ``None`` when the demo fallback applies.

        Raises ``ConfigValidationError`` for configs that are set up but
        incomplete for their kind (e.g. Azure without a deployment).
        """
        if config is None:
            logger.info("No provider configuration; using demo responder")
            return None
        adapter = self.registry.get(config.kind)
        if not adapter.is_configured(config):
            logger.info(
                "Provider configuration lacks credential or endpoint; using demo responder",
                data={"config_id": config.id, "kind": config.kind.value},
            )
            return None
        adapter.validate(config)
        return adapter

    def _demo_result(self, text: str, context: Sequence[ConversationTurn]) -> DispatchResult:
        return DispatchResult(
            final_text=text,
            usage=estimate_usage(render_input(context), text),
            provider_kind=DEMO_PROVIDER_KIND,
            provider_id=None,
            provider_display_name=DEMO_DISPLAY_NAME,
        )

    def _result(
        self,
        config: ProviderConfig | None,
        adapter: ProviderAdapter | None,
        context: Sequence[ConversationTurn],
        text: str,
        usage: UsageReport | None,
    ) -> DispatchResult:
        if adapter is None or config is None:
            return self._demo_result(text, context)
        return DispatchResult(
            final_text=text,
            usage=reconcile(usage, context, text),
            provider_kind=config.kind.value,
            provider_id=config.id,
            provider_display_name=config.name or adapter.display_name,
        )

    async def complete(self, config: ProviderConfig | None, context: Sequence[ConversationTurn]) -> DispatchResult:
        """Non-streaming dispatch. Provider failures are raised."""
        adapter = self.select(config)
        if adapter is None:
            return self._demo_result(self.demo.respond(last_user_text(context)), context)

        with bind_context(provider_id_var, config.id):
            logger.info("Dispatching completion", data={"kind": config.kind.value})
            try:
                completion = await adapter.chat_once(config, context)
            except GatewayError as exc:
                logger.warning("Provider completion failed", data={"code": exc.code})
                raise
        return self._result(config, adapter, context, completion.text, completion.usage)

    async def stream(
        self, config: ProviderConfig | None, context: Sequence[ConversationTurn]
    ) -> AsyncIterator[StreamEvent]:
        """Pull-based event stream: deltas, then exactly one ``done`` or ``error``.

        Closing this iterator closes the upstream connection.
        """
        adapter = self.select(config)
        async with aclosing(self._stream(adapter, config, context)) as events:
            async for event in events:
                yield event

    async def _stream(
        self,
        adapter: ProviderAdapter | None,
        config: ProviderConfig | None,
        context: Sequence[ConversationTurn],
    ) -> AsyncIterator[StreamEvent]:
        if adapter is None:
            async with aclosing(self.demo.stream(last_user_text(context))) as events:
                async for event in events:
                    yield event
            return

        logger.info("Dispatching stream", data={"config_id": config.id, "kind": config.kind.value})
        upstream = adapter.chat_stream(config, context)
        try:
            first = await upstream.__anext__()
        except StopAsyncIteration:
            yield StreamEvent.done("")
            return
        except STREAM_FALLBACK_ERRORS as exc:
            logger.warning(
                "Provider stream failed to start; falling back to buffered completion",
                data={"config_id": config.id, "code": exc.code},
            )
            async with aclosing(self._buffered_as_stream(adapter, config, context)) as events:
                async for event in events:
                    yield event
            return
        except GatewayError as exc:
            logger.warning("Provider stream rejected", data={"config_id": config.id, "code": exc.code})
            yield StreamEvent.error(exc.message, exc.code)
            return

        try:
            yield first
            if first.is_terminal:
                return
            async for event in upstream:
                yield event
                if event.is_terminal:
                    return
        finally:
            await upstream.aclose()

    async def _buffered_as_stream(
        self, adapter: ProviderAdapter, config: ProviderConfig, context: Sequence[ConversationTurn]
    ) -> AsyncIterator[StreamEvent]:
        try:
            completion = await adapter.chat_once(config, context)
        except GatewayError as exc:
            logger.warning("Buffered fallback failed", data={"config_id": config.id, "code": exc.code})
            yield StreamEvent.error(exc.message, exc.code)
            return
        if completion.text:
            yield StreamEvent.delta(completion.text)
        yield StreamEvent.done(completion.text, completion.usage)

    async def dispatch(
        self,
        config: ProviderConfig | None,
        context: Sequence[ConversationTurn],
        streaming: bool,
        sink: EventSink | None = None,
    ) -> DispatchResult:
        """Run one chat turn.

        With ``streaming`` every event is handed to ``sink`` as it arrives and
        provider failures end up in-band (and in ``DispatchResult.error_*``)
        instead of being raised.
        """
        if not streaming:
            return await self.complete(config, context)

        adapter = self.select(config)
        parts: list[str] = []
        final_text: str | None = None
        usage: UsageReport | None = None
        error: StreamEvent | None = None

        async with aclosing(self._stream(adapter, config, context)) as events:
            async for event in events:
                if sink is not None:
                    outcome = sink(event)
                    if inspect.isawaitable(outcome):
                        await outcome
                if event.kind == "delta":
                    parts.append(event.text or "")
                elif event.kind == "done":
                    final_text = event.text if event.text is not None else "".join(parts)
                    usage = event.usage
                else:
                    error = event

        result = self._result(config, adapter, context, final_text if final_text is not None else "".join(parts), usage)
        if error is not None:
            result.error_code = error.error_code
            result.error_message = error.error_message
        return result

    async def probe(self, config: ProviderConfig) -> str:
        """Send a fixed test message through ``config`` and return the reply."""
        adapter = self.select(config)
        if adapter is None:
            return PROBE_DEMO_REPLY
        if config.sampling.max_output_tokens is None:
            sampling = dataclasses.replace(config.sampling, max_output_tokens=PROBE_MAX_OUTPUT_TOKENS)
            config = dataclasses.replace(config, sampling=sampling)
        context = [
            ConversationTurn(role="system", text=PROBE_SYSTEM_PROMPT),
            ConversationTurn(role="user", text=PROBE_MESSAGE),
        ]
        with bind_context(provider_id_var, config.id):
            logger.info("Probing provider configuration", data={"kind": config.kind.value})
            completion = await adapter.chat_once(config, context)
        return completion.text or "Test completed but no response received"

    async def list_models(self, config: ProviderConfig) -> list[ModelInfo]:
        adapter = self.registry.get(config.kind)
        if adapter.requires_endpoint and not config.endpoint:
            raise ConfigValidationError("An endpoint is required to list models")
        with bind_context(provider_id_var, config.id):
            return await adapter.list_models(config)
