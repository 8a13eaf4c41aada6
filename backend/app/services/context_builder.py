"""Assembly of the message list sent to a provider for one chat turn."""
from __future__ import annotations

from typing import Iterable, Sequence

from backend.app.core.errors import InvalidTurnError
from backend.app.core.logging import get_logger
from backend.app.providers.types import ConversationTurn, ImageRef
from backend.app.services.image_resolver import ImageResolver

logger = get_logger(__name__)


def _format_number(value: float) -> str:
    return f"{value:g}"


def profile_context_sentence(
    height: float | None = None,
    weight: float | None = None,
    body_fat: float | None = None,
    lifestyle_habits: str | None = None,
) -> str | None:
    """Render the user's profile as one sentence for the system prompt."""
    parts = []
    if height:
        parts.append(f"height {_format_number(height)} cm")
    if weight:
        parts.append(f"weight {_format_number(weight)} kg")
    if body_fat:
        parts.append(f"body fat {_format_number(body_fat)}%")
    if lifestyle_habits and lifestyle_habits.strip():
        parts.append(f"lifestyle habits: {lifestyle_habits.strip()}")
    if not parts:
        return None
    return "User profile: " + ", ".join(parts) + "."


class ContextBuilder:
    def __init__(self, image_resolver: ImageResolver, default_system_prompt: str):
        self.image_resolver = image_resolver
        self.default_system_prompt = default_system_prompt

    def system_turn(self, system_prompt: str | None, profile_context: str | None) -> ConversationTurn:
        prompt = (system_prompt or "").strip() or self.default_system_prompt
        if profile_context and profile_context.strip():
            prompt = f"{prompt}\n\n{profile_context.strip()}"
        return ConversationTurn(role="system", text=prompt)

    async def _gate_attachments(
        self, attachments: Iterable[ImageRef], supports_vision: bool
    ) -> tuple[ImageRef, ...]:
        if not supports_vision:
            return ()
        resolved = []
        for ref in attachments:
            image = await self.image_resolver.resolve(ref, vision_required=True)
            if image is not None:
                resolved.append(image)
        return tuple(resolved)

    async def _gate_turn(self, turn: ConversationTurn, supports_vision: bool) -> ConversationTurn:
        if not turn.attachments:
            return turn
        if not supports_vision:
            return turn.without_attachments()
        attachments = await self._gate_attachments(turn.attachments, supports_vision)
        return ConversationTurn(role=turn.role, text=turn.text, attachments=attachments)

    async def build(
        self,
        system_prompt: str | None,
        profile_context: str | None,
        history: Sequence[ConversationTurn],
        new_text: str,
        new_images: Sequence[ImageRef] = (),
        supports_vision: bool = False,
    ) -> list[ConversationTurn]:
        if not (new_text or "").strip() and not new_images:
            raise InvalidTurnError("Message text is required unless an image is attached")

        turns = [self.system_turn(system_prompt, profile_context)]
        skipped_system = 0
        for turn in history:
            if turn.role == "system":
                skipped_system += 1
                continue
            turns.append(await self._gate_turn(turn, supports_vision))
        if skipped_system:
            logger.debug("Dropped system turns from history", data={"count": skipped_system})

        if new_images and not supports_vision:
            logger.info("Provider lacks vision support; stripping attachments", data={"count": len(new_images)})
        attachments = await self._gate_attachments(new_images, supports_vision)
        if not (new_text or "").strip() and not attachments:
            if supports_vision:
                raise InvalidTurnError("Message text is required; none of the attached images could be loaded")
            raise InvalidTurnError("Message text is required; this provider cannot read images")
        turns.append(ConversationTurn(role="user", text=new_text or "", attachments=attachments))
        return turns
