from __future__ import annotations

import base64
import mimetypes

from backend.app.core.errors import ImageResolutionFailed
from backend.app.core.logging import get_logger
from backend.app.providers.types import ImageRef, InlineImage, RemoteImage
from backend.app.services.blob_store import BlobStore

logger = get_logger(__name__)

DEFAULT_IMAGE_MIME = "image/jpeg"


def guess_image_mime(key: str) -> str:
    mime, _ = mimetypes.guess_type(key)
    if mime and mime.startswith("image/"):
        return mime
    return DEFAULT_IMAGE_MIME


class ImageResolver:
    """Turns stored image references into inline base64 payloads for vision models."""

    def __init__(self, blob_store: BlobStore):
        self.blob_store = blob_store

    async def resolve(self, ref: ImageRef, vision_required: bool) -> ImageRef | None:
        """Return a transport-ready reference, or ``None`` when the image must be dropped.

        Failures never propagate: the turn's text is delivered without the image.
        """
        if not vision_required or isinstance(ref, InlineImage):
            return ref
        if not isinstance(ref, RemoteImage):
            logger.warning("Unknown image reference type", data={"type": type(ref).__name__})
            return None

        try:
            data = await self.blob_store.fetch(ref.storage_key)
        except ImageResolutionFailed as exc:
            logger.warning("Image resolution failed; dropping image", data={"key": exc.storage_key, "reason": exc.reason})
            return None
        except Exception:
            logger.exception("Image resolution failed; dropping image", data={"key": ref.storage_key})
            return None

        return InlineImage(
            data_base64=base64.b64encode(data).decode("ascii"),
            mime=guess_image_mime(ref.storage_key),
        )
