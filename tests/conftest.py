"""
Shared fixtures for the style advisor test suite.

Provides: a temporary SQLite database, the conversation store, a notifier,
image helpers and an httpx byte stream that yields pre-split chunks.
"""

import base64
import io
from typing import Iterable, List

import httpx
import pytest
from PIL import Image

from services.conversation_store import ConversationStore
from services.notifier import Notifier
from utils.database_init import AsyncDatabaseInitializer


class ChunkedStream(httpx.AsyncByteStream):
    """Response body delivered in exactly the given chunks."""

    def __init__(self, chunks: Iterable[bytes]) -> None:
        self._chunks: List[bytes] = list(chunks)

    async def __aiter__(self):
        for chunk in self._chunks:
            yield chunk

    async def aclose(self) -> None:
        pass


def sse_body(*events: str) -> List[bytes]:
    """Encode JSON event strings as `data:` lines, one chunk per line."""
    return [f"data: {event}\n\n".encode("utf-8") for event in events]


def make_image(mode: str = "RGB", size=(32, 24), color=(200, 30, 30)) -> Image.Image:
    if mode == "RGBA":
        return Image.new("RGBA", size, color + (128,))
    return Image.new(mode, size, color)


def png_bytes(img: Image.Image) -> bytes:
    buf = io.BytesIO()
    img.save(buf, format="PNG")
    return buf.getvalue()


def png_data_uri(img: Image.Image) -> str:
    return "data:image/png;base64," + base64.b64encode(png_bytes(img)).decode("ascii")


@pytest.fixture
def db_initializer(tmp_path) -> AsyncDatabaseInitializer:
    """Fresh database under a per-test temporary directory."""
    return AsyncDatabaseInitializer(parent_folder=tmp_path, reset=False)


@pytest.fixture
def store(db_initializer) -> ConversationStore:
    return ConversationStore(db_initializer)


@pytest.fixture
def notifier() -> Notifier:
    return Notifier()
