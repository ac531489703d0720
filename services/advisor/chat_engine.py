"""Send a user turn to the style advisor and stream its reply into the conversation."""

from __future__ import annotations

import asyncio
import logging
from contextlib import contextmanager
from typing import AsyncIterator, Iterator, List, Optional, Set

from models.errors import (
    AdvisorError,
    BusyError,
    CaptureUnavailableError,
    EmptyInputError,
    PersistenceError,
    SessionCreationError,
    StreamError,
)
from models.session_models import Role, Turn, VisualTurn, latest_visual_context, new_local_id
from services.advisor.advisor_client import StyleAdvisorClient
from services.advisor.conversation_view import ConversationView
from services.advisor.sse_decoder import StreamFragment
from services.capture.image_capture import ImageCapture
from services.conversation_store import ConversationStore
from services.notifier import Notifier

LOGGER = logging.getLogger(__name__)

ERROR_REPLY = "Sorry, I encountered an error. Please try again."
ANALYSIS_ERROR_REPLY = "Failed to analyze your style. Please try again."
DEFAULT_TEMPERATURE = 0.5

_UNSAVED_SESSION_KEY = "__new__"


class ChatStreamEngine:
    """Orchestrate one chat turn end to end.

    The user turn is written in two phases: it is appended to the view
    before it is persisted, and a persistence failure leaves it visible but
    stops the turn before the model is called. The assistant reply appears
    as a placeholder that grows while fragments arrive and is persisted once
    the stream ends.

    Calls are single-flight per session: a second call while one is running
    for the same session raises `BusyError` instead of interleaving.
    """

    def __init__(
        self,
        store: ConversationStore,
        advisor: StyleAdvisorClient,
        capture: Optional[ImageCapture] = None,
        notifier: Optional[Notifier] = None,
        view: Optional[ConversationView] = None,
    ) -> None:
        self.store = store
        self.advisor = advisor
        self.capture = capture
        self.notifier = notifier if notifier is not None else Notifier()
        self.view = view if view is not None else ConversationView()
        self.current_session_id: Optional[str] = None
        self._inflight: Set[str] = set()

    @property
    def is_busy(self) -> bool:
        return bool(self._inflight)

    @property
    def turns(self) -> List[Turn]:
        return self.view.turns

    async def send_turn(self, text: str, image: Optional[str] = None, temperature: float = DEFAULT_TEMPERATURE) -> Optional[Turn]:
        """Send `text` (and an image, explicit or captured) and stream the reply.

        Returns:
            The completed assistant turn, or None when the model replied with
            no content.

        Raises:
            EmptyInputError: `text` is blank; nothing is changed.
            BusyError: A turn for this session is already in flight.
            SessionCreationError: No session could be created; no turn is shown.
            PersistenceError, RemoteCallError, RemoteTimeoutError, StreamError,
            MalformedResponseError: After one error turn and one notification.
        """
        text = (text or "").strip()
        if not text:
            self.notifier.error(EmptyInputError.user_message, title="Empty message")
            raise EmptyInputError("Message text is empty.")

        with self._single_flight():
            resolved_image = image or self._capture()
            session_id = await self._ensure_session()
            with self._claim(session_id):
                return await self._run_turn(session_id, text, resolved_image, temperature)

    async def analyze_image(self, image: Optional[str] = None, temperature: float = DEFAULT_TEMPERATURE) -> Turn:
        """Ask for a first style analysis of an image and store it as an assistant turn.

        The returned appearance description is kept as the turn's visual
        context so later turns can refer back to it.
        """
        resolved_image = image or self._capture()
        if not resolved_image:
            self.notifier.error(CaptureUnavailableError.user_message, title="No image")
            raise CaptureUnavailableError("No image supplied and capture returned nothing.")

        with self._single_flight():
            session_id = await self._ensure_session()
            with self._claim(session_id):
                try:
                    payload = self.advisor.build_payload([], temperature, image=resolved_image)
                    result = await self.advisor.analyze(payload)
                    turn = self.view.append(
                        Turn(
                            id=new_local_id(),
                            role=Role.ASSISTANT,
                            content=result.response,
                            visual_context=result.visual_context,
                            session_id=session_id,
                        )
                    )
                    saved = await self.store.append_turn(session_id, Role.ASSISTANT, result.response, result.visual_context)
                    if not saved:
                        raise PersistenceError("Could not save the style analysis.")
                    return turn
                except Exception as exc:
                    self._fail(exc, None, ANALYSIS_ERROR_REPLY, title="Analysis failed")
                    raise

    async def select_session(self, session_id: str) -> List[Turn]:
        """Make `session_id` current and load its persisted turns into the view."""
        if self.is_busy:
            raise BusyError("Cannot switch sessions while a reply is in progress.")
        turns = await self.store.list_turns(session_id)
        self.current_session_id = session_id
        self.view.replace(turns)
        return turns

    def new_session(self) -> None:
        """Clear the view; the next turn creates a fresh session."""
        if self.is_busy:
            raise BusyError("Cannot start a new chat while a reply is in progress.")
        self.current_session_id = None
        self.view.clear()

    async def delete_session(self, session_id: str) -> None:
        if self.is_busy:
            raise BusyError("Cannot delete a session while a reply is in progress.")
        await self.store.delete_session(session_id)
        if self.current_session_id == session_id:
            self.current_session_id = None
            self.view.clear()

    async def _run_turn(self, session_id: str, text: str, image: Optional[str], temperature: float) -> Optional[Turn]:
        placeholder_id: Optional[str] = None
        try:
            self.view.append(Turn(id=new_local_id(), role=Role.USER, content=text, visual_context=image, session_id=session_id))
            if not await self.store.append_turn(session_id, Role.USER, text, image):
                raise PersistenceError("Could not save the user message.")

            history = await self.store.list_turns(session_id)
            payload = self.advisor.build_payload(
                self.view.turns,
                temperature,
                image=image,
                visual_context=latest_visual_context(history),
                visual_history=[VisualTurn.from_turn(t) for t in history],
            )

            async with self.advisor.open_stream(payload) as fragments:
                placeholder = self.view.append(
                    Turn(id=new_local_id(), role=Role.ASSISTANT, content="", session_id=session_id, complete=False)
                )
                placeholder_id = placeholder.id
                reply = await self._reconcile_stream(placeholder_id, fragments)

            if not reply:
                LOGGER.info("Style advisor returned an empty reply for session %s", session_id)
                self.view.remove(placeholder_id)
                return None

            self.view.mark_complete(placeholder_id)
            if not await self.store.append_turn(session_id, Role.ASSISTANT, reply):
                raise PersistenceError("Could not save the assistant reply.")
            return self.view.get(placeholder_id)
        except asyncio.CancelledError:
            self._drop_placeholder(placeholder_id)
            raise
        except Exception as exc:
            self._fail(exc, placeholder_id, ERROR_REPLY)
            raise

    async def _reconcile_stream(self, turn_id: str, fragments: AsyncIterator[StreamFragment]) -> str:
        """Apply fragments in order to the placeholder and return the full reply."""
        buffer = ""
        async for fragment in fragments:
            if fragment.error:
                raise StreamError(f"Style advisor stream error: {fragment.error}")
            if not fragment.content:
                continue
            buffer += fragment.content
            self.view.update_content(turn_id, buffer)
        return buffer

    async def _ensure_session(self) -> str:
        if self.current_session_id:
            return self.current_session_id
        session_id = await self.store.create_session()
        if session_id is None:
            self.notifier.error(SessionCreationError.user_message)
            raise SessionCreationError("Chat session could not be created.")
        self.current_session_id = session_id
        return session_id

    def _capture(self) -> Optional[str]:
        if self.capture is None:
            return None
        return self.capture.capture()

    def _fail(self, exc: BaseException, placeholder_id: Optional[str], reply: str, title: str = "Error") -> None:
        if isinstance(exc, AdvisorError):
            LOGGER.error("Chat turn failed: %s", exc)
        else:
            LOGGER.exception("Chat turn failed unexpectedly")
        self._drop_placeholder(placeholder_id)
        self.view.append(
            Turn(
                id=new_local_id(),
                role=Role.ASSISTANT,
                content=reply,
                session_id=self.current_session_id,
                is_error=True,
            )
        )
        description = exc.user_message if isinstance(exc, AdvisorError) else reply
        self.notifier.error(description, title=title)

    def _drop_placeholder(self, placeholder_id: Optional[str]) -> None:
        if placeholder_id is None:
            return
        turn = self.view.get(placeholder_id)
        if turn is not None and not turn.complete:
            self.view.remove(placeholder_id)

    @contextmanager
    def _single_flight(self) -> Iterator[None]:
        key = self.current_session_id or _UNSAVED_SESSION_KEY
        self._acquire(key)
        try:
            yield
        finally:
            self._inflight.discard(key)

    @contextmanager
    def _claim(self, session_id: str) -> Iterator[None]:
        added = session_id not in self._inflight
        self._inflight.add(session_id)
        try:
            yield
        finally:
            if added:
                self._inflight.discard(session_id)

    def _acquire(self, key: str) -> None:
        if key in self._inflight:
            self.notifier.error(BusyError.user_message, title="Busy")
            raise BusyError(f"A reply is already in progress for {key}.")
        self._inflight.add(key)
