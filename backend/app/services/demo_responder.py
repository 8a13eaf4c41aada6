"""Canned responses used when no provider is configured."""
from __future__ import annotations

import asyncio
import re
import zlib
from typing import AsyncIterator

from backend.app.providers.types import StreamEvent

DEMO_DISPLAY_NAME = "Demo Assistant"

TEMPLATES = (
    "Hello! I'm a demo AI assistant. This is a test response since no provider is configured. "
    'Your message was: "{message}"',
    "Thank you for your message! I'm running in demo mode. In a production environment, "
    "I would be connected to a real LLM service like OpenAI, Azure OpenAI or Ollama.",
    'I understand you said: "{message}". This is a sample response from the demo AI assistant. '
    "Please configure a provider for full functionality.",
    'Hi there! I\'m currently in demo mode. Your question "{message}" would normally be processed '
    "by a configured LLM service.",
    "This is a demonstration response. To enable full AI capabilities, please configure an "
    "OpenAI, Azure OpenAI or Ollama provider in the admin settings.",
)


class DemoResponder:
    """Network-free fallback.

    The template is picked from a stable hash of the input, so a given message
    always gets the same reply whether it is streamed or not.
    """

    def __init__(self, word_delay_seconds: float = 0.05, templates: tuple[str, ...] = TEMPLATES):
        self.word_delay_seconds = word_delay_seconds
        self.templates = templates

    def choose_template(self, message: str) -> str:
        index = zlib.crc32(message.encode("utf-8")) % len(self.templates)
        return self.templates[index]

    def respond(self, message: str) -> str:
        return self.choose_template(message).format(message=message)

    async def stream(self, message: str) -> AsyncIterator[StreamEvent]:
        text = self.respond(message)
        for i, piece in enumerate(self.pieces(text)):
            if i:
                await asyncio.sleep(self.word_delay_seconds)
            yield StreamEvent.delta(piece)
        yield StreamEvent.done(text)

    @staticmethod
    def pieces(text: str) -> list[str]:
        """Split into words, each carrying the whitespace before it; joins back to ``text``."""
        pieces: list[str] = []
        gap = ""
        for part in re.split(r"(\s+)", text):
            if part.isspace() or not part:
                gap += part
            else:
                pieces.append(gap + part)
                gap = ""
        if gap:
            if pieces:
                pieces[-1] += gap
            else:
                pieces.append(gap)
        return pieces
