"""Server-side speech recognition built on OpenAI audio transcription."""

from __future__ import annotations

import logging
import os
import tempfile
from typing import Callable, List, Optional, Sequence

from openai import AsyncOpenAI

from services.realtime.transcript_source import RecognitionSegment
from utils.media_validation import audio_filename_for_mime, decode_audio_payload

LOGGER = logging.getLogger(__name__)


class DictationTranscriber:
	"""Convert base64 audio chunks into text transcripts."""

	def __init__(self, client: AsyncOpenAI, model: str = "whisper-1") -> None:
		if client is None:
			raise ValueError("AsyncOpenAI client is required.")
		self.client = client
		self.model = model

	async def transcribe(self, audio_b64: str, mime_type: str = "audio/webm") -> str:
		"""Return a whitespace-trimmed transcript for the provided audio chunk.

		Args:
			audio_b64: Base64-encoded audio payload.
			mime_type: MIME type of the chunk; selects the upload file extension.

		Raises:
			ValueError: If the payload or MIME type is not acceptable.
			RuntimeError: If the transcription request fails.
		"""
		audio_bytes = decode_audio_payload(audio_b64)
		filename = audio_filename_for_mime(mime_type)
		suffix = os.path.splitext(filename)[1]

		# A named temporary file gives the multipart upload a real filename, which
		# the transcription endpoint uses to detect the container format.
		tmp_file = None
		try:
			with tempfile.NamedTemporaryFile(delete=False, suffix=suffix) as tf:
				tf.write(audio_bytes)
				tmp_file = tf.name

			with open(tmp_file, "rb") as fh:
				try:
					response = await self.client.audio.transcriptions.create(
						model=self.model,
						file=fh,
						response_format="text",
					)
				except Exception as exc:
					raise RuntimeError(f"Transcription failed: {exc}") from exc
		finally:
			if tmp_file and os.path.exists(tmp_file):
				try:
					os.remove(tmp_file)
				except OSError:
					LOGGER.warning("Could not remove temporary audio file %s", tmp_file)

		return (response or "").strip()


class DictationRecognizer:
	"""Speech recognizer fed with audio chunks pushed by the client.

	Every transcribed chunk becomes one finalized segment; there are no
	interim results.
	"""

	supported = True

	def __init__(self, transcriber: DictationTranscriber) -> None:
		self.transcriber = transcriber
		self._segments: List[RecognitionSegment] = []
		self._on_result: Optional[Callable[[Sequence[RecognitionSegment]], None]] = None
		self._on_error: Optional[Callable[[str], None]] = None

	@property
	def active(self) -> bool:
		return self._on_result is not None

	def start(
		self,
		on_result: Callable[[Sequence[RecognitionSegment]], None],
		on_error: Callable[[str], None],
	) -> None:
		self._segments = []
		self._on_result = on_result
		self._on_error = on_error

	def stop(self) -> None:
		self._on_result = None
		self._on_error = None

	async def feed_audio(self, audio_b64: str, mime_type: str = "audio/webm") -> str:
		"""Transcribe one chunk and report the updated segment list.

		Returns the chunk's text ("" when nothing was recognized or the
		transcription failed).

		Raises:
			RuntimeError: If dictation has not been started.
			ValueError: If the audio payload is invalid.
		"""
		if not self.active:
			raise RuntimeError("Dictation is not active; send dictation.start first.")
		try:
			text = await self.transcriber.transcribe(audio_b64, mime_type)
		except RuntimeError:
			LOGGER.exception("Dictation chunk could not be transcribed")
			if self._on_error is not None:
				self._on_error("network")
			return ""

		# The source may have stopped while the chunk was being transcribed.
		if not text or self._on_result is None:
			return text
		self._segments.append(RecognitionSegment(text=text, is_final=True))
		self._on_result(list(self._segments))
		return text
