"""
ResoCtrl -- Image Handles

Owned references to decoded preview/thumbnail images.

Every handle is tagged with its owner ("preview" or "thumbnail") and must be
released by that owner when it is superseded or torn down. Live handles are
tracked in a process-wide registry so leaks show up in tests and in
/api/health.
"""

import logging
import threading
import uuid
from io import BytesIO

from PIL import Image, UnidentifiedImageError

logger = logging.getLogger(__name__)

PREVIEW = "preview"
THUMBNAIL = "thumbnail"

# handle id -> ImageHandle, for every handle not yet released
_live = {}
_live_lock = threading.Lock()


class ImageDecodeError(Exception):
    """Raised when response bytes are not a readable image."""
    pass


class ImageHandle:
    """Decoded image plus the encoded bytes it came from.

    The encoded bytes are what gets served back to the browser; the decoded
    image validates the payload and gives us its size.
    """

    def __init__(self, image: Image.Image, data: bytes, media_type: str, owner: str):
        self.id = uuid.uuid4().hex
        self.owner = owner
        self.media_type = media_type
        self.size = image.size
        self._image = image
        self._data = data
        self._released = False
        with _live_lock:
            _live[self.id] = self

    @property
    def released(self) -> bool:
        return self._released

    @property
    def image(self) -> Image.Image:
        if self._released:
            raise ValueError(f"Image handle {self.id} already released")
        return self._image

    def read(self) -> bytes:
        """Return the encoded bytes. Callers copy them out before any await."""
        if self._released:
            raise ValueError(f"Image handle {self.id} already released")
        return self._data

    def release(self) -> bool:
        """Close the image and drop the bytes. Second call is a no-op."""
        if self._released:
            logger.warning("Image handle %s (%s) released twice", self.id, self.owner)
            return False
        self._released = True
        with _live_lock:
            _live.pop(self.id, None)
        self._image.close()
        self._image = None
        self._data = b""
        return True

    def __repr__(self):
        state = "released" if self._released else "live"
        return f"<ImageHandle {self.owner} {self.id[:8]} {self.size[0]}x{self.size[1]} {state}>"


def decode_image(data: bytes, owner: str, media_type: str | None = None) -> ImageHandle:
    """Decode image bytes into a new live handle.

    Raises:
        ImageDecodeError: If the bytes are empty or not an image Pillow can read.
    """
    if not data:
        raise ImageDecodeError("Empty image body")
    try:
        image = Image.open(BytesIO(data))
        image.load()
    except (UnidentifiedImageError, Image.DecompressionBombError, OSError, ValueError, SyntaxError, EOFError) as e:
        # Some plugins raise ValueError or SyntaxError on malformed headers
        raise ImageDecodeError(f"Unreadable image: {e}") from e
    if not media_type or not media_type.startswith("image/"):
        media_type = Image.MIME.get(image.format or "", "application/octet-stream")
    return ImageHandle(image, data, media_type, owner)


def live_handles(owner: str | None = None) -> list:
    """Snapshot of handles that have not been released, optionally by owner."""
    with _live_lock:
        handles = list(_live.values())
    if owner is None:
        return handles
    return [h for h in handles if h.owner == owner]
