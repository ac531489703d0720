"""Snapshot the current camera frame as a JPEG data URI.

The capture side never raises: a missing source, a source that has not
produced a frame yet, or a frame that fails to encode all yield None and the
chat turn proceeds text-only.
"""

from __future__ import annotations

import logging
import threading
from typing import Optional, Protocol

from PIL import Image

from utils.media_validation import decode_image_payload, encode_jpeg_data_uri, open_image

LOGGER = logging.getLogger(__name__)

JPEG_QUALITY = 80


class FrameSource(Protocol):
    """Anything that can hand out the frame currently on screen."""

    @property
    def width(self) -> int: ...

    @property
    def height(self) -> int: ...

    def read_frame(self) -> Image.Image: ...


class LatestFrameBuffer:
    """Frame source holding the most recent frame pushed by the client.

    Frames are decoded on `update` so a bad frame is rejected immediately
    instead of at capture time.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._frame: Optional[Image.Image] = None

    @property
    def width(self) -> int:
        with self._lock:
            return self._frame.width if self._frame is not None else 0

    @property
    def height(self) -> int:
        with self._lock:
            return self._frame.height if self._frame is not None else 0

    def update(self, data: str | bytes) -> None:
        """Replace the held frame.

        Args:
            data: A `data:image/...;base64,` URI, bare base64 or raw image bytes.

        Raises:
            ValueError: If the data cannot be decoded as an image.
        """
        frame = open_image(decode_image_payload(data))
        with self._lock:
            self._frame = frame

    def clear(self) -> None:
        with self._lock:
            self._frame = None

    def read_frame(self) -> Image.Image:
        with self._lock:
            if self._frame is None:
                raise RuntimeError("No frame has been received yet.")
            return self._frame.copy()


class ImageCapture:
    """Encode the frame of an attached source as `data:image/jpeg;base64,...`."""

    def __init__(self, source: Optional[FrameSource] = None, quality: int = JPEG_QUALITY) -> None:
        self.source = source
        self.quality = quality

    def attach(self, source: Optional[FrameSource]) -> None:
        self.source = source

    def capture(self) -> Optional[str]:
        """Return the current frame as a JPEG data URI, or None if unavailable."""
        source = self.source
        if source is None:
            return None
        try:
            if source.width <= 0 or source.height <= 0:
                return None
            frame = source.read_frame()
            return encode_jpeg_data_uri(frame, quality=self.quality)
        except Exception:
            LOGGER.warning("Image capture failed; continuing without an image", exc_info=True)
            return None
