import pytest

from backend.app.core.errors import ImageResolutionFailed, InvalidTurnError
from backend.app.providers.types import ConversationTurn, InlineImage, RemoteImage
from backend.app.services.context_builder import ContextBuilder, profile_context_sentence
from backend.app.services.image_resolver import ImageResolver

DEFAULT_PROMPT = "You are a helpful AI assistant."


class FakeBlobStore:
    def __init__(self, objects=None):
        self.objects = objects or {}
        self.fetched = []

    async def fetch(self, key: str) -> bytes:
        self.fetched.append(key)
        if key not in self.objects:
            raise ImageResolutionFailed(key, "status 404")
        return self.objects[key]


def _builder(objects=None):
    store = FakeBlobStore(objects)
    return ContextBuilder(ImageResolver(store), DEFAULT_PROMPT), store


@pytest.mark.asyncio
async def test_single_leading_system_turn_with_default_prompt():
    builder, _ = _builder()
    turns = await builder.build(None, None, [], "Hello")
    assert [t.role for t in turns] == ["system", "user"]
    assert turns[0].text == DEFAULT_PROMPT
    assert turns[-1].text == "Hello"


@pytest.mark.asyncio
async def test_config_prompt_and_profile_context():
    builder, _ = _builder()
    profile = profile_context_sentence(height=180, weight=75.5)
    turns = await builder.build("Be terse.", profile, [], "Hi")
    assert turns[0].text == "Be terse.\n\nUser profile: height 180 cm, weight 75.5 kg."


@pytest.mark.asyncio
async def test_history_kept_in_order_and_system_turns_dropped():
    builder, _ = _builder()
    history = [
        ConversationTurn(role="system", text="old system"),
        ConversationTurn(role="user", text="first"),
        ConversationTurn(role="assistant", text="second"),
    ]
    turns = await builder.build(None, None, history, "third")
    assert [(t.role, t.text) for t in turns] == [
        ("system", DEFAULT_PROMPT),
        ("user", "first"),
        ("assistant", "second"),
        ("user", "third"),
    ]
    assert sum(1 for t in turns if t.role == "system") == 1


@pytest.mark.asyncio
async def test_no_vision_strips_every_attachment():
    builder, store = _builder({"a.png": b"png"})
    history = [ConversationTurn(role="user", text="look", attachments=(RemoteImage("a.png"),))]
    turns = await builder.build(
        None,
        None,
        history,
        "and this",
        new_images=[InlineImage("aGk="), RemoteImage("a.png")],
        supports_vision=False,
    )
    assert all(not t.attachments for t in turns)
    assert store.fetched == []


@pytest.mark.asyncio
async def test_vision_resolves_remote_images():
    builder, store = _builder({"uploads/cat.png": b"\x89PNG"})
    turns = await builder.build(
        None, None, [], "what is this?", new_images=[RemoteImage("uploads/cat.png")], supports_vision=True
    )
    (image,) = turns[-1].attachments
    assert isinstance(image, InlineImage)
    assert image.mime == "image/png"
    assert image.data_base64 == "iVBORw=="
    assert store.fetched == ["uploads/cat.png"]


@pytest.mark.asyncio
async def test_image_fetch_failure_drops_image_keeps_text():
    builder, _ = _builder()
    turns = await builder.build(
        None, None, [], "describe", new_images=[RemoteImage("missing.jpg")], supports_vision=True
    )
    assert turns[-1].text == "describe"
    assert turns[-1].attachments == ()


@pytest.mark.asyncio
async def test_empty_text_requires_an_image():
    builder, _ = _builder()
    with pytest.raises(InvalidTurnError):
        await builder.build(None, None, [], "   ")

    turns = await builder.build(None, None, [], "", new_images=[InlineImage("aGk=")], supports_vision=True)
    assert turns[-1].text == ""
    assert len(turns[-1].attachments) == 1


def test_profile_context_sentence_empty():
    assert profile_context_sentence() is None
    assert profile_context_sentence(lifestyle_habits="  ") is None


def test_profile_context_sentence_full():
    sentence = profile_context_sentence(170, 60, 18.5, "runs daily")
    assert sentence == "User profile: height 170 cm, weight 60 kg, body fat 18.5%, lifestyle habits: runs daily."


@pytest.mark.asyncio
async def test_image_only_message_to_text_only_provider_is_rejected():
    builder, _ = _builder()
    with pytest.raises(InvalidTurnError) as excinfo:
        await builder.build(None, None, [], "", new_images=[InlineImage("aGk=")], supports_vision=False)
    assert "cannot read images" in excinfo.value.message


@pytest.mark.asyncio
async def test_image_only_message_with_unloadable_image_is_rejected():
    builder, store = _builder()
    with pytest.raises(InvalidTurnError):
        await builder.build(None, None, [], " ", new_images=[RemoteImage("missing.jpg")], supports_vision=True)
    assert store.fetched == ["missing.jpg"]
