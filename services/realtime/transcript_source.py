"""Turn continuous speech recognition into a live transcript plus an end-of-turn signal."""

from __future__ import annotations

import asyncio
import inspect
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Optional, Protocol, Sequence, Set

from services.notifier import Notifier

LOGGER = logging.getLogger(__name__)

PAUSE_SECONDS = 2.0
CLEAR_DELAY_SECONDS = 1.0


@dataclass(frozen=True)
class RecognitionSegment:
	text: str
	is_final: bool


class SpeechRecognizer(Protocol):
	"""Continuous recognizer reporting every segment of the current listening session.

	`on_result` receives all segments recognized so far, finalized ones first
	and the interim one (if any) last. `on_error` receives a short error code;
	`"aborted"` means the session was stopped on purpose.
	"""

	@property
	def supported(self) -> bool: ...

	def start(
		self,
		on_result: Callable[[Sequence[RecognitionSegment]], None],
		on_error: Callable[[str], None],
	) -> None: ...

	def stop(self) -> None: ...


class TranscriptState(str, Enum):
	IDLE = "idle"
	LISTENING = "listening"
	DEBOUNCING = "debouncing"


def compose_transcript(segments: Sequence[RecognitionSegment]) -> str:
	"""Join the finalized segments and the current interim segment."""
	finals = [s.text.strip() for s in segments if s.is_final and s.text.strip()]
	interim = next((s.text.strip() for s in reversed(segments) if not s.is_final), "")
	parts = finals + ([interim] if interim else [])
	return " ".join(parts)


class TurnTranscriptSource:
	"""Expose one live transcript and fire `on_turn_end` after a pause in speech.

	Each non-empty change of the transcript restarts a pause timer. When it
	fires the source stops listening, hands the transcript to `on_turn_end`
	exactly once and clears the live transcript after a short delay so the
	client can show what was sent.
	"""

	def __init__(
		self,
		recognizer: Optional[SpeechRecognizer],
		notifier: Notifier,
		pause_seconds: float = PAUSE_SECONDS,
		clear_delay_seconds: float = CLEAR_DELAY_SECONDS,
		on_transcript: Optional[Callable[[str], None]] = None,
	) -> None:
		self.recognizer = recognizer
		self.notifier = notifier
		self.pause_seconds = pause_seconds
		self.clear_delay_seconds = clear_delay_seconds
		self.on_transcript = on_transcript

		self._state = TranscriptState.IDLE
		self._transcript = ""
		self._on_turn_end: Optional[Callable[[str], Any]] = None
		self._loop: Optional[asyncio.AbstractEventLoop] = None
		self._pause_handle: Optional[asyncio.TimerHandle] = None
		self._clear_handle: Optional[asyncio.TimerHandle] = None
		self._recognizer_active = False
		self._cleaning_up = False
		self._pending: Set[asyncio.Future] = set()

	@property
	def state(self) -> TranscriptState:
		return self._state

	@property
	def transcript(self) -> str:
		return self._transcript

	@property
	def is_listening(self) -> bool:
		return self._state is TranscriptState.LISTENING

	def start(self, on_turn_end: Callable[[str], Any]) -> bool:
		"""Begin listening. Returns False (after notifying) when speech input is unavailable.

		Must be called from inside the running event loop.
		"""
		if self.recognizer is None or not self.recognizer.supported:
			self.notifier.error("Speech recognition is not supported in this browser.", title="Voice input unavailable")
			return False

		if self._state is not TranscriptState.IDLE:
			self.stop()

		self._loop = asyncio.get_running_loop()
		self._on_turn_end = on_turn_end
		self._set_transcript("")
		self._state = TranscriptState.LISTENING
		try:
			self.recognizer.start(self._handle_result, self._handle_error)
		except Exception:
			LOGGER.exception("Speech recognizer failed to start")
			self.notifier.error("Could not start voice input. Please try again.")
			self.stop()
			return False
		self._recognizer_active = True
		LOGGER.debug("Transcript source listening")
		return True

	def stop(self) -> None:
		"""Cancel timers, release the recognizer and return to idle. Safe to call repeatedly."""
		if self._cleaning_up:
			return
		self._cleaning_up = True
		try:
			self._cancel_timers()
			self._teardown_recognizer()
			self._on_turn_end = None
			self._state = TranscriptState.IDLE
			self._set_transcript("")
		finally:
			self._cleaning_up = False

	def _handle_result(self, segments: Sequence[RecognitionSegment]) -> None:
		if self._state is not TranscriptState.LISTENING:
			return
		text = compose_transcript(segments)
		if text == self._transcript:
			return
		self._set_transcript(text)
		if text:
			self._restart_pause_timer()

	def _handle_error(self, error: str) -> None:
		if self._state is not TranscriptState.LISTENING:
			return
		LOGGER.warning("Speech recognition error: %s", error)
		if error != "aborted":
			self.notifier.error(f"Speech recognition error: {error}", title="Voice input error")
		self.stop()

	def _restart_pause_timer(self) -> None:
		if self._pause_handle is not None:
			self._pause_handle.cancel()
		assert self._loop is not None
		self._pause_handle = self._loop.call_later(self.pause_seconds, self._on_pause)

	def _on_pause(self) -> None:
		self._pause_handle = None
		if self._state is not TranscriptState.LISTENING:
			return
		text = self._transcript.strip()
		callback = self._on_turn_end
		self._on_turn_end = None
		self._state = TranscriptState.DEBOUNCING
		self._teardown_recognizer()

		if callback is not None and text:
			try:
				result = callback(text)
			except Exception:
				LOGGER.exception("Turn-end handler failed")
			else:
				if inspect.isawaitable(result):
					future = asyncio.ensure_future(result)
					self._pending.add(future)
					future.add_done_callback(self._on_callback_done)

		assert self._loop is not None
		self._clear_handle = self._loop.call_later(self.clear_delay_seconds, self._finish_turn)

	def _finish_turn(self) -> None:
		self._clear_handle = None
		if self._state is TranscriptState.DEBOUNCING:
			self._state = TranscriptState.IDLE
			self._set_transcript("")

	def _on_callback_done(self, future: asyncio.Future) -> None:
		self._pending.discard(future)
		if future.cancelled():
			return
		exc = future.exception()
		if exc is not None:
			LOGGER.error("Turn-end handler raised", exc_info=exc)

	def _cancel_timers(self) -> None:
		for handle in (self._pause_handle, self._clear_handle):
			if handle is not None:
				handle.cancel()
		self._pause_handle = None
		self._clear_handle = None

	def _teardown_recognizer(self) -> None:
		if not self._recognizer_active or self.recognizer is None:
			return
		self._recognizer_active = False
		try:
			self.recognizer.stop()
		except Exception:
			LOGGER.warning("Speech recognizer failed to stop cleanly", exc_info=True)

	def _set_transcript(self, text: str) -> None:
		if text == self._transcript:
			return
		self._transcript = text
		if self.on_transcript is not None:
			self.on_transcript(text)
