"""Token usage extraction and estimation.

Providers that report usage are trusted as-is. For the rest (Ollama, demo
responses, streams that never sent a usage chunk) usage is estimated at four
UTF-8 bytes per token. The estimate is an approximation for quota and metrics
purposes, not a guarantee of what the provider billed.
"""
from __future__ import annotations

import math
from typing import Any, Iterable

from backend.app.providers.types import ConversationTurn, UsageReport

BYTES_PER_TOKEN = 4


def estimate_tokens(text: str | None) -> int:
    if not text:
        return 0
    return math.ceil(len(text.encode("utf-8")) / BYTES_PER_TOKEN)


def estimate_usage(input_text: str, output_text: str) -> UsageReport:
    input_tokens = estimate_tokens(input_text)
    output_tokens = estimate_tokens(output_text)
    return UsageReport(
        input_tokens=input_tokens,
        output_tokens=output_tokens,
        total_tokens=input_tokens + output_tokens,
        estimated=True,
    )


def render_input(context: Iterable[ConversationTurn]) -> str:
    """Flatten the turns sent to the provider into the text the estimate counts."""
    return "\n".join(turn.text for turn in context if turn.text)


def _as_count(value: Any) -> int | None:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    return max(int(value), 0)


def usage_from_provider(raw: Any) -> UsageReport | None:
    """Read an OpenAI-style ``usage`` object; ``None`` when nothing usable is there."""
    if not isinstance(raw, dict):
        return None
    input_tokens = _as_count(raw.get("prompt_tokens"))
    output_tokens = _as_count(raw.get("completion_tokens"))
    total_tokens = _as_count(raw.get("total_tokens"))
    if input_tokens is None and output_tokens is None and total_tokens is None:
        return None

    if input_tokens is not None and output_tokens is not None:
        total_tokens = input_tokens + output_tokens
    elif total_tokens is not None:
        # Only one side known: derive the other from the total
        if input_tokens is not None:
            output_tokens = max(total_tokens - input_tokens, 0)
        elif output_tokens is not None:
            input_tokens = max(total_tokens - output_tokens, 0)
        else:
            input_tokens, output_tokens = 0, total_tokens
    else:
        input_tokens = input_tokens or 0
        output_tokens = output_tokens or 0
        total_tokens = input_tokens + output_tokens

    return UsageReport(
        input_tokens=input_tokens,
        output_tokens=output_tokens,
        total_tokens=total_tokens,
    )


def reconcile(
    reported: UsageReport | None,
    context: Iterable[ConversationTurn],
    output_text: str,
) -> UsageReport:
    """Provider-reported usage when present, else the byte-based estimate."""
    if reported is not None:
        return reported
    return estimate_usage(render_input(context), output_text)
