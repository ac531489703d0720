"""Validation and encoding helpers for camera frames and dictation audio."""

from __future__ import annotations

import base64
import binascii
import io
from typing import Tuple

from PIL import Image

JPEG_DATA_URI_PREFIX = "data:image/jpeg;base64,"

ALLOWED_AUDIO_TYPES = {
    "audio/wav": "wav",
    "audio/x-wav": "wav",
    "audio/webm": "webm",
    "audio/mpeg": "mp3",
    "audio/mp3": "mp3",
    "audio/mp4": "mp4",
    "audio/aac": "m4a",
    "audio/ogg": "ogg",
    "audio/opus": "ogg",
    "audio/flac": "flac",
    "audio/x-flac": "flac",
}


def split_data_uri(data: str) -> Tuple[str, str]:
    """Split a `data:<mime>;base64,<payload>` string into (mime, payload).

    Bare base64 strings are returned with an empty mime type.
    """
    if not data.startswith("data:"):
        return "", data.strip()
    header, sep, payload = data.partition(",")
    if not sep or ";base64" not in header:
        raise ValueError("Only base64 data URIs are supported.")
    mime = header[len("data:"):].split(";", 1)[0].strip().lower()
    return mime, payload.strip()


def decode_image_payload(data: str | bytes) -> bytes:
    """Return raw image bytes from a data URI, a base64 string or raw bytes.

    Raises:
        ValueError: If the payload is empty or is not valid base64.
    """
    if isinstance(data, (bytes, bytearray)):
        raw = bytes(data)
        if not raw:
            raise ValueError("Image payload is empty.")
        return raw

    mime, payload = split_data_uri(data)
    if mime and not mime.startswith("image/"):
        raise ValueError(f"Unsupported frame content type: {mime}")
    if not payload:
        raise ValueError("Image payload is empty.")
    try:
        return base64.b64decode(payload, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise ValueError("Invalid base64 image data provided") from exc


def open_image(raw: bytes) -> Image.Image:
    """Open and fully load an image so the buffer can be released."""
    try:
        img = Image.open(io.BytesIO(raw))
        img.load()
    except Exception as exc:
        raise ValueError("Decoded bytes are not a supported image format") from exc
    return img


def encode_jpeg_data_uri(img: Image.Image, quality: int = 80, background: Tuple[int, int, int] = (255, 255, 255)) -> str:
    """Encode a PIL image as a JPEG data URI, flattening any alpha channel."""
    if img.mode in ("RGBA", "LA") or (img.mode == "P" and "transparency" in img.info):
        rgba = img.convert("RGBA")
        flat = Image.new("RGB", rgba.size, background)
        flat.paste(rgba, mask=rgba.split()[3])
        img = flat
    elif img.mode != "RGB":
        img = img.convert("RGB")

    out_io = io.BytesIO()
    img.save(out_io, format="JPEG", quality=quality)
    return JPEG_DATA_URI_PREFIX + base64.b64encode(out_io.getvalue()).decode("utf-8")


def is_image_data_uri(value: str | None) -> bool:
    return bool(value) and value.startswith("data:image/")


def audio_filename_for_mime(mime_type: str) -> str:
    """Return an upload filename whose extension the transcription service accepts.

    MIME parameters such as `;codecs=opus` are ignored.

    Raises:
        ValueError: If the MIME type is not a supported audio format.
    """
    mime = (mime_type or "").lower().split(";", 1)[0].strip()
    suffix = ALLOWED_AUDIO_TYPES.get(mime)
    if suffix is None:
        raise ValueError(f"Unsupported or unknown audio MIME type: '{mime_type}'")
    return f"dictation.{suffix}"


def decode_audio_payload(audio_b64: str) -> bytes:
    """Decode a base64 audio chunk, rejecting empty input."""
    if not audio_b64:
        raise ValueError("Audio payload is required for dictation.")
    try:
        audio_bytes = base64.b64decode(audio_b64, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise ValueError("Audio payload must be base64-encoded.") from exc
    if not audio_bytes:
        raise ValueError("Audio payload is empty.")
    return audio_bytes
