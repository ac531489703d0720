"""Async Data Access Layer for the `messages` table."""

from __future__ import annotations

import uuid
from typing import List, Optional, Sequence

from models.session_models import Role, Turn, utc_now
from utils.database_init import AsyncDatabaseInitializer


class MessageDAL:
    """Data access layer for persisted turns.

    Turns are always read back in `created_at` order with insertion order
    (rowid) breaking ties, so two writes within the same clock tick keep
    the order they were appended in.
    """

    _COLUMNS = ("id", "session_id", "role", "content", "visual_context", "created_at")
    _COLUMN_LIST = ", ".join(_COLUMNS)

    def __init__(self, db_initializer: AsyncDatabaseInitializer) -> None:
        self._db = db_initializer

    async def create_message(
        self,
        session_id: str,
        role: Role,
        content: str,
        visual_context: Optional[str] = None,
    ) -> Turn:
        """Insert a turn and bump the owning session's `updated_at`.

        Both writes share one transaction. An unknown `session_id` violates
        the foreign key and raises `aiosqlite.IntegrityError`.

        Returns:
            The stored turn with its row id and timestamp.
        """
        turn = Turn(
            id=str(uuid.uuid4()),
            role=Role(role),
            content=content,
            visual_context=visual_context or None,
            created_at=utc_now(),
            session_id=session_id,
        )
        async with self._db.connection() as conn:
            await conn.execute(
                f"INSERT INTO messages ({self._COLUMN_LIST}) VALUES (?, ?, ?, ?, ?, ?)",
                (turn.id, session_id, turn.role.value, turn.content, turn.visual_context, turn.created_at),
            )
            await conn.execute(
                "UPDATE sessions SET updated_at = ? WHERE id = ?",
                (turn.created_at, session_id),
            )
            await conn.commit()
        return turn

    async def list_messages(self, session_id: str) -> List[Turn]:
        """Return every turn of a session, oldest first."""
        async with self._db.connection() as conn:
            cur = await conn.execute(
                f"SELECT {self._COLUMN_LIST} FROM messages WHERE session_id = ? ORDER BY created_at ASC, rowid ASC",
                (session_id,),
            )
            rows = await cur.fetchall()
            return [self._row_to_turn(r) for r in rows]

    @staticmethod
    def _row_to_turn(row: Sequence[object]) -> Turn:
        return Turn(
            id=row[0],
            session_id=row[1],
            role=Role(row[2]),
            content=row[3],
            visual_context=row[4],
            created_at=row[5],
        )
