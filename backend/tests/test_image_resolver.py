import httpx
import pytest

from backend.app.core.errors import ImageResolutionFailed
from backend.app.providers.types import InlineImage, RemoteImage
from backend.app.services.blob_store import HTTPBlobStore
from backend.app.services.image_resolver import ImageResolver, guess_image_mime

from conftest import FakeUpstream


def _store(upstream: FakeUpstream) -> HTTPBlobStore:
    return HTTPBlobStore("http://blobs.local/minio/", "chat-uploads", upstream.client(), timeout_seconds=5)


def test_extract_key_from_url():
    store = _store(FakeUpstream())
    assert store.extract_key_from_url("http://blobs.local/minio/chat-uploads/u1/cat.png") == "u1/cat.png"
    assert store.extract_key_from_url("http://elsewhere/other-bucket/cat.png") is None
    assert store.object_url("u1/cat.png") == "http://blobs.local/minio/chat-uploads/u1/cat.png"


def test_guess_image_mime():
    assert guess_image_mime("a/b.png") == "image/png"
    assert guess_image_mime("noext") == "image/jpeg"
    assert guess_image_mime("doc.pdf") == "image/jpeg"


@pytest.mark.asyncio
async def test_resolve_fetches_and_inlines():
    upstream = FakeUpstream()
    upstream.add("GET", "/minio/chat-uploads/u1/cat.png", httpx.Response(200, content=b"abc"))
    resolver = ImageResolver(_store(upstream))

    image = await resolver.resolve(RemoteImage("u1/cat.png"), vision_required=True)
    assert image == InlineImage(data_base64="YWJj", mime="image/png")


@pytest.mark.asyncio
async def test_resolve_without_vision_is_passthrough():
    upstream = FakeUpstream()
    resolver = ImageResolver(_store(upstream))
    ref = RemoteImage("u1/cat.png")
    assert await resolver.resolve(ref, vision_required=False) is ref
    assert upstream.requests == []


@pytest.mark.asyncio
async def test_resolve_failure_returns_none():
    upstream = FakeUpstream()
    upstream.add("GET", "/minio/chat-uploads/u1/gone.png", httpx.Response(404))
    upstream.add("GET", "/minio/chat-uploads/u1/down.png", httpx.ConnectError("refused"))
    resolver = ImageResolver(_store(upstream))

    assert await resolver.resolve(RemoteImage("u1/gone.png"), vision_required=True) is None
    assert await resolver.resolve(RemoteImage("u1/down.png"), vision_required=True) is None


@pytest.mark.asyncio
async def test_fetch_rejects_path_traversal():
    upstream = FakeUpstream()
    with pytest.raises(ImageResolutionFailed):
        await _store(upstream).fetch("../secrets.png")
    assert upstream.requests == []
