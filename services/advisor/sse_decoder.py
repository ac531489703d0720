"""Incremental decoding of `data: {...}` event streams returned by the model function."""

from __future__ import annotations

import codecs
import json
import logging
from dataclasses import dataclass
from typing import AsyncIterable, AsyncIterator, Optional

LOGGER = logging.getLogger(__name__)

DONE_SENTINEL = "[DONE]"


@dataclass(frozen=True)
class StreamFragment:
    """One decoded event of a streamed reply."""

    content: str = ""
    error: Optional[str] = None
    done: bool = False


async def iter_lines(chunks: AsyncIterable[bytes]) -> AsyncIterator[str]:
    """Yield complete text lines from arbitrarily split byte chunks.

    Multi-byte UTF-8 sequences and partial lines are carried across chunk
    boundaries. Text left without a trailing newline when the stream closes
    is yielded as a final line.
    """
    decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
    pending = ""
    async for chunk in chunks:
        if not chunk:
            continue
        pending += decoder.decode(chunk)
        while True:
            newline = pending.find("\n")
            if newline < 0:
                break
            line, pending = pending[:newline], pending[newline + 1:]
            yield line.rstrip("\r")
    pending += decoder.decode(b"", final=True)
    if pending.strip():
        yield pending.rstrip("\r")


def parse_event_line(line: str) -> Optional[StreamFragment]:
    """Decode one line; returns None for blank, comment or unparseable lines."""
    line = line.strip()
    if not line or line.startswith(":"):
        return None
    if not line.startswith("data:"):
        return None
    data = line[len("data:"):].strip()
    if not data:
        return None
    if data == DONE_SENTINEL:
        return StreamFragment(done=True)
    try:
        event = json.loads(data)
    except json.JSONDecodeError:
        LOGGER.warning("Skipping malformed stream line: %.120s", data)
        return None
    if not isinstance(event, dict):
        LOGGER.warning("Skipping non-object stream event: %.120s", data)
        return None
    if event.get("error"):
        return StreamFragment(error=str(event["error"]))
    content = event.get("content")
    if content is None:
        return None
    return StreamFragment(content=str(content))


async def iter_fragments(chunks: AsyncIterable[bytes]) -> AsyncIterator[StreamFragment]:
    """Pull-based iterator of decoded fragments; stops after a `[DONE]` marker."""
    async for line in iter_lines(chunks):
        fragment = parse_event_line(line)
        if fragment is None:
            continue
        if fragment.done:
            return
        yield fragment
