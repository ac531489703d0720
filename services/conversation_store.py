"""Persistence facade for chat sessions and their turns.

Every method converts database failures into an empty/negative result and
logs the cause, so callers branch on return values instead of catching
driver exceptions.
"""

from __future__ import annotations

import logging
from datetime import date
from typing import List, Optional

from dal.message_dal import MessageDAL
from dal.session_dal import SessionDAL
from models.session_models import Role, Session, Turn
from utils.database_init import STORE_ERRORS, AsyncDatabaseInitializer

LOGGER = logging.getLogger(__name__)


def default_session_title(today: Optional[date] = None) -> str:
    return f"Chat {(today or date.today()).isoformat()}"


class ConversationStore:
    """CRUD over persisted sessions and turns; the single source of truth for history."""

    def __init__(
        self,
        db_initializer: AsyncDatabaseInitializer,
        session_dal: Optional[SessionDAL] = None,
        message_dal: Optional[MessageDAL] = None,
    ) -> None:
        self._sessions = session_dal if session_dal is not None else SessionDAL(db_initializer)
        self._messages = message_dal if message_dal is not None else MessageDAL(db_initializer)

    async def list_sessions(self, user_id: Optional[str] = None) -> List[Session]:
        """Return sessions ordered by `updated_at` descending, or [] on failure."""
        try:
            return await self._sessions.list_sessions(user_id=user_id)
        except STORE_ERRORS:
            LOGGER.exception("Failed to list sessions")
            return []

    async def get_session(self, session_id: str) -> Optional[Session]:
        try:
            return await self._sessions.get_session(session_id)
        except STORE_ERRORS:
            LOGGER.exception("Failed to load session %s", session_id)
            return None

    async def create_session(self, title: Optional[str] = None, user_id: Optional[str] = None) -> Optional[str]:
        """Create a session and return its id, or None when the write fails."""
        title = (title or "").strip() or default_session_title()
        try:
            session = await self._sessions.create_session(title, user_id=user_id)
        except STORE_ERRORS:
            LOGGER.exception("Failed to create session %r", title)
            return None
        LOGGER.info("Created session %s (%s)", session.id, title)
        return session.id

    async def list_turns(self, session_id: str) -> List[Turn]:
        """Return a session's turns oldest first, or [] on failure."""
        try:
            return await self._messages.list_messages(session_id)
        except STORE_ERRORS:
            LOGGER.exception("Failed to list turns for session %s", session_id)
            return []

    async def append_turn(
        self,
        session_id: str,
        role: Role,
        content: str,
        visual_context: Optional[str] = None,
    ) -> bool:
        """Persist one turn and bump the session's `updated_at`. Returns False on failure."""
        try:
            await self._messages.create_message(session_id, role, content, visual_context)
        except STORE_ERRORS:
            LOGGER.exception("Failed to append %s turn to session %s", role, session_id)
            return False
        return True

    async def rename_session(self, session_id: str, title: str) -> bool:
        title = (title or "").strip()
        if not title:
            return False
        try:
            return await self._sessions.rename_session(session_id, title)
        except STORE_ERRORS:
            LOGGER.exception("Failed to rename session %s", session_id)
            return False

    async def delete_session(self, session_id: str) -> None:
        """Delete a session and its turns. Failures are logged, not raised."""
        try:
            deleted = await self._sessions.delete_session(session_id)
        except STORE_ERRORS:
            LOGGER.exception("Failed to delete session %s", session_id)
            return
        if not deleted:
            LOGGER.warning("Delete requested for unknown session %s", session_id)
