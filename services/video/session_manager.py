"""Lifecycle of external video-avatar conversations for one client connection."""

from __future__ import annotations

import asyncio
import logging
from collections import deque
from typing import AsyncIterator, Awaitable, Callable, Deque, FrozenSet, Optional, Set

from models.errors import BusyError, ConcurrencyLimitError
from models.video_session import VideoSession, VideoStatus
from dal.video_session_dal import VideoSessionDAL
from services.notifier import Notifier
from services.video.video_client import VideoServiceClient
from utils.database_init import STORE_ERRORS

LOGGER = logging.getLogger(__name__)

DEFAULT_CONVERSATION_NAME = "Style Advice Session"
DEFAULT_CONVERSATIONAL_CONTEXT = (
    "You are Alex, a sophisticated AI style advisor with advanced visual analysis capabilities. "
    "Provide personalized fashion advice, analyze outfits, and help users develop their personal style. "
    "Be friendly, knowledgeable, and visually perceptive. Help users understand colors, patterns, and styling techniques."
)
DEFAULT_PERSONA_ID = "p24293d6"
CLEANUP_GRACE_SECONDS = 0.5
STATUS_POLL_SECONDS = 5.0
ENDED_HISTORY_SIZE = 32


class VideoSessionManager:
    """Create, poll and end video conversations, keeping at most one live.

    The set of conversation ids believed to be live remotely is owned by the
    manager and exposed read-only. Every create first ends whatever is in
    that set, then waits a short grace period so the provider releases its
    concurrency slots.
    """

    def __init__(
        self,
        client: VideoServiceClient,
        notifier: Notifier,
        dal: Optional[VideoSessionDAL] = None,
        default_persona_id: str = DEFAULT_PERSONA_ID,
        grace_seconds: float = CLEANUP_GRACE_SECONDS,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        on_change: Optional[Callable[[VideoSession], None]] = None,
        user_id: Optional[str] = None,
    ) -> None:
        self.client = client
        self.notifier = notifier
        self.dal = dal
        self.default_persona_id = default_persona_id
        self.grace_seconds = grace_seconds
        self.on_change = on_change
        self.user_id = user_id
        self.current: Optional[VideoSession] = None
        self._sleep = sleep
        self._active_ids: Set[str] = set()
        # most recently ended ids, so a repeated end is a no-op
        self._ended_ids: Deque[str] = deque(maxlen=ENDED_HISTORY_SIZE)
        self._creating = False

    @property
    def active_conversation_ids(self) -> FrozenSet[str]:
        return frozenset(self._active_ids)

    @property
    def is_creating(self) -> bool:
        return self._creating

    async def create_session(
        self,
        name: Optional[str] = None,
        context: Optional[str] = None,
        persona_id: Optional[str] = None,
        session_id: Optional[str] = None,
        callback_url: Optional[str] = None,
    ) -> VideoSession:
        """End every tracked conversation, then create a new one.

        Raises:
            BusyError: Another create is still running.
            ConcurrencyLimitError: The provider is still at its session cap.
            MalformedResponseError, RemoteCallError, RemoteTimeoutError: Create failed.
        """
        if self._creating:
            raise BusyError("A video conversation is already being created.")
        self._creating = True
        try:
            await self.end_all_active()
            if self.grace_seconds > 0:
                await self._sleep(self.grace_seconds)

            try:
                result = await self.client.create_conversation(
                    conversation_name=name or DEFAULT_CONVERSATION_NAME,
                    conversational_context=context or DEFAULT_CONVERSATIONAL_CONTEXT,
                    persona_id=persona_id or self.default_persona_id,
                    callback_url=callback_url,
                )
            except ConcurrencyLimitError:
                LOGGER.warning("Video provider concurrency limit hit")
                self.notifier.error(ConcurrencyLimitError.user_message, title="Video sessions busy")
                raise
            except Exception:
                LOGGER.exception("Failed to create video conversation")
                self.notifier.error("Failed to create video conversation. Please try again.")
                raise

            record = VideoSession(
                conversation_id=str(result["conversation_id"]),
                conversation_url=str(result["conversation_url"]),
                status=VideoStatus.from_remote(result.get("status")),
                conversation_name=result.get("conversation_name") or name or DEFAULT_CONVERSATION_NAME,
                session_id=session_id,
                callback_url=callback_url,
                user_id=self.user_id,
            )
            self._active_ids.add(record.conversation_id)
            self.current = record
            await self._persist_new(record)
            self._emit(record)
            self.notifier.notify("Video conversation ready", "Your AI style advisor is ready for a video chat!")
            LOGGER.info("Video conversation %s created", record.conversation_id)
            return record
        finally:
            self._creating = False

    async def end_session(self, conversation_id: str, notify: bool = True) -> None:
        """End a conversation remotely and forget it locally whatever the remote outcome.

        With `notify=False` (cleanup paths) a remote failure is only logged;
        otherwise the user is told and the error is re-raised. Ending an id
        that was already ended does nothing.
        """
        if conversation_id in self._ended_ids and conversation_id not in self._active_ids:
            LOGGER.debug("Video conversation %s already ended", conversation_id)
            return

        error: Optional[Exception] = None
        try:
            await self.client.end_conversation(conversation_id)
        except Exception as exc:
            error = exc
        finally:
            self._forget(conversation_id)
        await self._persist_status(conversation_id, VideoStatus.ENDED)

        if error is None:
            LOGGER.info("Video conversation %s ended", conversation_id)
            if notify:
                self.notifier.notify("Video conversation ended", "Thanks for chatting with your style advisor.")
            return

        if not notify:
            LOGGER.warning("Ending video conversation %s failed during cleanup: %s", conversation_id, error)
            return
        LOGGER.error("Ending video conversation %s failed: %s", conversation_id, error)
        self.notifier.error("Failed to end the video conversation. Please try again.")
        raise error

    async def end_all_active(self) -> None:
        """End every tracked conversation concurrently; the active set is empty afterwards."""
        conversation_ids = list(self._active_ids)
        if conversation_ids:
            LOGGER.info("Cleaning up %d active video conversation(s)", len(conversation_ids))
            results = await asyncio.gather(
                *(self.end_session(cid, notify=False) for cid in conversation_ids),
                return_exceptions=True,
            )
            for cid, result in zip(conversation_ids, results):
                if isinstance(result, Exception):
                    LOGGER.warning("Cleanup of video conversation %s failed: %s", cid, result)
        self._active_ids.clear()

    async def get_status(self, conversation_id: str) -> VideoStatus:
        """Poll the provider and mirror the status locally. Poll failures propagate untouched."""
        result = await self.client.get_conversation_status(conversation_id)
        cached = self.current.status if self.current and self.current.conversation_id == conversation_id else None
        status = VideoStatus.from_remote(result.get("status"), default=cached)

        if status is VideoStatus.ENDED:
            self._active_ids.discard(conversation_id)
            self._mark_ended(conversation_id)
        if self.current is not None and self.current.conversation_id == conversation_id:
            if self.current.status is not status:
                self.current.status = status
                self._emit(self.current)
        await self._persist_status(conversation_id, status)
        return status

    async def watch_status(self, conversation_id: str, interval: float = STATUS_POLL_SECONDS) -> AsyncIterator[VideoStatus]:
        """Yield the status every `interval` seconds until the conversation is no longer live."""
        while True:
            status = await self.get_status(conversation_id)
            yield status
            if not status.is_live:
                return
            await self._sleep(interval)

    async def close(self) -> None:
        """End every tracked conversation; called when the client goes away."""
        await self.end_all_active()
        self.current = None

    def _forget(self, conversation_id: str) -> None:
        self._active_ids.discard(conversation_id)
        self._mark_ended(conversation_id)
        if self.current is not None and self.current.conversation_id == conversation_id:
            ended = self.current
            ended.status = VideoStatus.ENDED
            self.current = None
            self._emit(ended)

    def _mark_ended(self, conversation_id: str) -> None:
        if conversation_id not in self._ended_ids:
            self._ended_ids.append(conversation_id)

    async def _persist_new(self, record: VideoSession) -> None:
        if self.dal is None:
            return
        try:
            await self.dal.create(record)
        except STORE_ERRORS:
            LOGGER.exception("Could not persist video conversation %s", record.conversation_id)

    async def _persist_status(self, conversation_id: str, status: VideoStatus) -> None:
        if self.dal is None:
            return
        try:
            await self.dal.update_status(conversation_id, status)
        except STORE_ERRORS:
            LOGGER.exception("Could not update status of video conversation %s", conversation_id)

    def _emit(self, record: VideoSession) -> None:
        if self.on_change is not None:
            self.on_change(record)
