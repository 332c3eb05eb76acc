"""Image store — turns inline data-URL images into files under uploads/.

Learn: Legacy marketplace clients send the photo inline as
`data:image/jpeg;base64,...`. Storing that in the listings table would bloat
every catalog snapshot, so it is decoded once, written to disk under a
generated name, and the listing keeps only the public path
(`/uploads/<name>`), which the static file mount serves.

References that are not data URLs (already-uploaded paths, external URLs)
are kept as they are.
"""

import asyncio
import base64
import binascii
import re
import uuid
from pathlib import Path

import structlog

from marketsync.services.listing_service import ListingValidationError

logger = structlog.get_logger()

_DATA_URL = re.compile(
    r"^data:image/(?P<subtype>[a-zA-Z0-9.+-]+);base64,(?P<data>.*)$", re.DOTALL
)

# MIME subtypes whose file extension differs from the subtype itself
_EXTENSIONS = {"jpeg": "jpg", "svg+xml": "svg", "x-icon": "ico"}


class ImageStore:
    """Persist inline images and hand back stable reference paths."""

    def __init__(self, directory: str | Path, url_prefix: str = "/uploads", max_bytes: int = 5 * 1024 * 1024):
        self.directory = Path(directory)
        self.url_prefix = url_prefix.rstrip("/")
        self.max_bytes = max_bytes

    @staticmethod
    def is_inline(image_ref: str) -> bool:
        return image_ref.startswith("data:")

    def ensure_directory(self) -> None:
        self.directory.mkdir(parents=True, exist_ok=True)

    async def save(self, data_url: str) -> str:
        """Decode a base64 data URL, write it to disk, return its public path."""
        match = _DATA_URL.match(data_url)
        if not match:
            raise ListingValidationError("imageRef must be a base64 data:image URL")
        try:
            payload = base64.b64decode(match["data"], validate=True)
        except (binascii.Error, ValueError) as e:
            raise ListingValidationError("imageRef is not valid base64 image data") from e
        if not payload:
            raise ListingValidationError("imageRef is empty")
        if len(payload) > self.max_bytes:
            raise ListingValidationError(
                f"imageRef exceeds the {self.max_bytes} byte limit"
            )

        subtype = match["subtype"].lower()
        name = f"{uuid.uuid4().hex}.{_EXTENSIONS.get(subtype, subtype)}"
        path = self.directory / name
        # File I/O off the event loop
        await asyncio.to_thread(self._write, path, payload)
        logger.info("image.stored", path=str(path), size=len(payload))
        return f"{self.url_prefix}/{name}"

    def _write(self, path: Path, payload: bytes) -> None:
        self.ensure_directory()
        path.write_bytes(payload)

    def owns(self, image_ref: str) -> bool:
        """Whether `image_ref` is a path handed out by save()."""
        return image_ref.startswith(f"{self.url_prefix}/")

    def discard(self, image_ref: str) -> None:
        """Remove a file previously returned by save(); other references are ignored."""
        if not self.owns(image_ref):
            return
        path = self.directory / Path(image_ref[len(self.url_prefix) + 1:]).name
        path.unlink(missing_ok=True)
        logger.info("image.discarded", path=str(path))
