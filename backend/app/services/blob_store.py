"""Read access to the object store holding uploaded chat images."""
from __future__ import annotations

import re
from typing import Protocol

import httpx

from backend.app.core.errors import ImageResolutionFailed


class BlobStore(Protocol):
    async def fetch(self, key: str) -> bytes:
        ...


class HTTPBlobStore:
    """Fetches objects through the store's public HTTP endpoint: ``{base}/{bucket}/{key}``."""

    def __init__(self, base_url: str, bucket: str, client: httpx.AsyncClient, timeout_seconds: float = 10):
        self.base_url = base_url.rstrip("/")
        self.bucket = bucket
        self.timeout_seconds = timeout_seconds
        self._client = client
        self._key_pattern = re.compile(rf"/{re.escape(bucket)}/(.+)$")

    def object_url(self, key: str) -> str:
        return f"{self.base_url}/{self.bucket}/{key.lstrip('/')}"

    def extract_key_from_url(self, url: str) -> str | None:
        """Recover the storage key from a public object URL."""
        match = self._key_pattern.search(url)
        return match.group(1) if match else None

    async def fetch(self, key: str) -> bytes:
        if not key or ".." in key.split("/"):
            raise ImageResolutionFailed(key, "invalid storage key")
        try:
            response = await self._client.get(self.object_url(key), timeout=self.timeout_seconds)
        except httpx.HTTPError as exc:
            raise ImageResolutionFailed(key, type(exc).__name__) from exc
        if response.status_code != 200:
            raise ImageResolutionFailed(key, f"status {response.status_code}")
        return response.content
