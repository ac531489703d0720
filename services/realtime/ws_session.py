"""Dispatch realtime websocket events to the chat, dictation and video services."""
from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Awaitable, Callable, Dict, Optional, Set

from fastapi import WebSocket

from models.video_session import VideoSession
from services.advisor.advisor_client import StyleAdvisorClient
from services.advisor.chat_engine import DEFAULT_TEMPERATURE, ChatStreamEngine
from services.advisor.conversation_view import ConversationView, TurnEvent, TurnEventKind
from services.capture.image_capture import ImageCapture, LatestFrameBuffer
from services.conversation_store import ConversationStore
from services.notifier import Notification, Notifier
from services.realtime.dictation import DictationRecognizer, DictationTranscriber
from services.realtime.transcript_source import TurnTranscriptSource
from services.video.session_manager import STATUS_POLL_SECONDS, VideoSessionManager
from services.video.video_client import VideoServiceClient
from dal.video_session_dal import VideoSessionDAL

LOGGER = logging.getLogger(__name__)


class RealtimeSessionHandler:
	"""Own the per-connection services and route websocket messages to them.

	Long-running operations (turn sends, analyses, video calls, dictation
	chunks) run as tasks so the receive loop keeps reading; outbound events
	go through one queue drained by a single sender task, which keeps them
	in the order they were produced.
	"""

	def __init__(
		self,
		websocket: WebSocket,
		store: ConversationStore,
		advisor: StyleAdvisorClient,
		video_client: VideoServiceClient,
		video_dal: Optional[VideoSessionDAL] = None,
		transcriber: Optional[DictationTranscriber] = None,
		default_persona_id: Optional[str] = None,
	) -> None:
		self.websocket = websocket
		self.outbox: asyncio.Queue = asyncio.Queue()
		self.notifier = Notifier(sink=self._queue_notification)
		self.frames = LatestFrameBuffer()
		self.engine = ChatStreamEngine(
			store,
			advisor,
			capture=ImageCapture(self.frames),
			notifier=self.notifier,
			view=ConversationView(listener=self._queue_turn_event),
		)
		self.recognizer = DictationRecognizer(transcriber) if transcriber is not None else None
		self.transcript = TurnTranscriptSource(self.recognizer, self.notifier, on_transcript=self._queue_transcript)
		manager_kwargs: Dict[str, Any] = {"dal": video_dal, "on_change": self._queue_video_session}
		if default_persona_id:
			manager_kwargs["default_persona_id"] = default_persona_id
		self.video = VideoSessionManager(video_client, self.notifier, **manager_kwargs)
		self._tasks: Set[asyncio.Task] = set()
		self._sender: Optional[asyncio.Task] = None

	def start(self) -> None:
		self._sender = asyncio.create_task(self._drain_outbox())

	async def handle(self, payload: Dict[str, Any]) -> None:
		"""Process a single inbound websocket payload."""
		request_id = payload.get("request_id")
		message_type = payload.get("type")
		try:
			if message_type == "frame.update":
				self.frames.update(payload.get("image") or "")
			elif message_type == "session.select":
				session_id = self._require(payload, "session_id")
				turns = await self.engine.select_session(session_id)
				self._ack(request_id, message_type, session_id=session_id, turn_count=len(turns))
			elif message_type == "session.new":
				self.engine.new_session()
				self._ack(request_id, message_type)
			elif message_type == "session.delete":
				session_id = self._require(payload, "session_id")
				await self.engine.delete_session(session_id)
				self._ack(request_id, message_type, session_id=session_id)
			elif message_type == "turn.send":
				text = payload.get("text") or ""
				temperature = float(payload.get("temperature", DEFAULT_TEMPERATURE))
				self._spawn(request_id, message_type, self.engine.send_turn(text, payload.get("image"), temperature), self._turn_result)
			elif message_type == "analysis.request":
				temperature = float(payload.get("temperature", DEFAULT_TEMPERATURE))
				self._spawn(request_id, message_type, self.engine.analyze_image(payload.get("image"), temperature), self._turn_result)
			elif message_type == "dictation.start":
				listening = self.transcript.start(self._on_turn_end)
				self._ack(request_id, message_type, listening=listening)
			elif message_type == "dictation.audio":
				if self.recognizer is None:
					raise RuntimeError("Dictation is not available.")
				audio_b64 = payload.get("audio_b64") or ""
				mime_type = payload.get("mime_type") or "audio/webm"
				self._spawn(request_id, message_type, self.recognizer.feed_audio(audio_b64, mime_type), lambda text: {"text": text})
			elif message_type == "dictation.stop":
				self.transcript.stop()
				self._ack(request_id, message_type)
			elif message_type == "video.create":
				coro = self.video.create_session(
					name=payload.get("conversation_name"),
					context=payload.get("conversational_context"),
					persona_id=payload.get("persona_id"),
					session_id=self.engine.current_session_id,
				)
				self._spawn(request_id, message_type, coro, lambda record: {"session": record.to_dict()})
			elif message_type == "video.end":
				conversation_id = self._require(payload, "conversation_id")
				self._spawn(request_id, message_type, self.video.end_session(conversation_id), lambda _: {"conversation_id": conversation_id})
			elif message_type == "video.status":
				conversation_id = self._require(payload, "conversation_id")
				self._spawn(request_id, message_type, self._poll_status(conversation_id), None)
			elif message_type == "video.watch":
				conversation_id = self._require(payload, "conversation_id")
				interval = float(payload.get("interval", STATUS_POLL_SECONDS))
				self._spawn(request_id, message_type, self._watch_status(conversation_id, interval), lambda status: {"conversation_id": conversation_id, "status": status})
			else:
				raise ValueError("Unsupported message type.")
		except Exception as exc:
			LOGGER.warning("Realtime message %s failed: %s", message_type, exc)
			self._send_error(request_id, str(exc))

	async def close(self) -> None:
		"""Stop dictation, cancel in-flight work and end any live video conversation."""
		self.transcript.stop()
		tasks = list(self._tasks)
		for task in tasks:
			task.cancel()
		if tasks:
			await asyncio.gather(*tasks, return_exceptions=True)
		try:
			await self.video.close()
		except Exception:
			LOGGER.exception("Video cleanup on disconnect failed")
		if self._sender is not None:
			self._sender.cancel()
			await asyncio.gather(self._sender, return_exceptions=True)

	def reject(self, detail: str) -> None:
		"""Report a frame that could not be parsed."""
		self._send_error(None, detail)

	def _on_turn_end(self, transcript: str) -> None:
		self._spawn(None, "turn.send", self.engine.send_turn(transcript), self._turn_result)

	async def _poll_status(self, conversation_id: str) -> None:
		status = await self.video.get_status(conversation_id)
		self._put({"type": "video.status", "conversation_id": conversation_id, "status": status.value})

	async def _watch_status(self, conversation_id: str, interval: float) -> Optional[str]:
		last: Optional[str] = None
		async for status in self.video.watch_status(conversation_id, interval):
			last = status.value
			self._put({"type": "video.status", "conversation_id": conversation_id, "status": last})
		return last

	def _spawn(
		self,
		request_id: Any,
		operation: str,
		coro: Awaitable[Any],
		on_result: Optional[Callable[[Any], Optional[Dict[str, Any]]]],
	) -> None:
		task = asyncio.ensure_future(coro)
		self._tasks.add(task)

		def _done(finished: asyncio.Task) -> None:
			self._tasks.discard(finished)
			if finished.cancelled():
				return
			exc = finished.exception()
			if exc is not None:
				self._send_error(request_id, str(exc), operation=operation)
				return
			if on_result is not None:
				self._ack(request_id, operation, **(on_result(finished.result()) or {}))

		task.add_done_callback(_done)

	@staticmethod
	def _turn_result(turn: Any) -> Dict[str, Any]:
		return {"turn": turn.to_dict() if turn is not None else None}

	@staticmethod
	def _require(payload: Dict[str, Any], key: str) -> str:
		value = str(payload.get(key) or "").strip()
		if not value:
			raise ValueError(f"{key} is required.")
		return value

	def _queue_turn_event(self, event: TurnEvent) -> None:
		if event.kind is TurnEventKind.RESET:
			self._put({"type": event.kind.value, "turns": [t.to_dict() for t in event.turns or []]})
		elif event.turn is not None:
			self._put({"type": event.kind.value, "turn": event.turn.to_dict()})

	def _queue_notification(self, note: Notification) -> None:
		self._put({"type": "notification", **note.to_dict()})

	def _queue_transcript(self, text: str) -> None:
		self._put({"type": "transcript.live", "text": text})

	def _queue_video_session(self, record: VideoSession) -> None:
		self._put({"type": "video.session", "session": record.to_dict()})

	def _ack(self, request_id: Any, operation: Optional[str], **fields: Any) -> None:
		self._put({"type": "ack", "request_id": request_id, "operation": operation, **fields})

	def _send_error(self, request_id: Any, detail: str, operation: Optional[str] = None) -> None:
		self._put({"type": "error", "request_id": request_id, "operation": operation, "detail": detail})

	def _put(self, payload: Dict[str, Any]) -> None:
		self.outbox.put_nowait(payload)

	async def _drain_outbox(self) -> None:
		while True:
			payload = await self.outbox.get()
			try:
				await self.websocket.send_text(json.dumps(payload))
			except Exception:
				LOGGER.warning("Dropping %s event; websocket is gone", payload.get("type"))
				return
