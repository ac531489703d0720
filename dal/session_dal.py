"""Async Data Access Layer for the `sessions` table.

Provides SessionDAL with async CRUD operations compatible with
`utils.database_init.AsyncDatabaseInitializer`.
"""

from __future__ import annotations

import uuid
from typing import List, Optional, Sequence

from models.session_models import Session, utc_now
from utils.database_init import AsyncDatabaseInitializer


class SessionDAL:
    """Data access layer for chat sessions.

    Methods raise `aiosqlite.Error` on database failures; callers decide
    whether to surface or swallow them.
    """

    _COLUMNS = ("id", "title", "user_id", "created_at", "updated_at")
    _COLUMN_LIST = ", ".join(_COLUMNS)

    def __init__(self, db_initializer: AsyncDatabaseInitializer) -> None:
        self._db = db_initializer

    async def create_session(self, title: str, user_id: Optional[str] = None) -> Session:
        """Insert a new session row and return it."""
        now = utc_now()
        session = Session(id=str(uuid.uuid4()), title=title, user_id=user_id, created_at=now, updated_at=now)
        async with self._db.connection() as conn:
            await conn.execute(
                f"INSERT INTO sessions ({self._COLUMN_LIST}) VALUES (?, ?, ?, ?, ?)",
                (session.id, session.title, session.user_id, session.created_at, session.updated_at),
            )
            await conn.commit()
        return session

    async def get_session(self, session_id: str) -> Optional[Session]:
        """Return the session for `session_id`, or None if not found."""
        async with self._db.connection() as conn:
            cur = await conn.execute(
                f"SELECT {self._COLUMN_LIST} FROM sessions WHERE id = ?",
                (session_id,),
            )
            row = await cur.fetchone()
            return self._row_to_session(row) if row else None

    async def list_sessions(self, user_id: Optional[str] = None, limit: int = 100) -> List[Session]:
        """List sessions, most recently updated first."""
        async with self._db.connection() as conn:
            if user_id is None:
                cur = await conn.execute(
                    f"SELECT {self._COLUMN_LIST} FROM sessions ORDER BY updated_at DESC, rowid DESC LIMIT ?",
                    (limit,),
                )
            else:
                cur = await conn.execute(
                    f"SELECT {self._COLUMN_LIST} FROM sessions WHERE user_id = ? "
                    "ORDER BY updated_at DESC, rowid DESC LIMIT ?",
                    (user_id, limit),
                )
            rows = await cur.fetchall()
            return [self._row_to_session(r) for r in rows]

    async def rename_session(self, session_id: str, title: str) -> bool:
        """Change a session title. Returns True if a row was changed."""
        async with self._db.connection() as conn:
            await conn.execute(
                "UPDATE sessions SET title = ?, updated_at = ? WHERE id = ?",
                (title, utc_now(), session_id),
            )
            await conn.commit()
            cur = await conn.execute("SELECT changes()")
            changed = await cur.fetchone()
            return bool(changed and changed[0] > 0)

    async def delete_session(self, session_id: str) -> bool:
        """Delete a session and, through the foreign key, its messages."""
        async with self._db.connection() as conn:
            await conn.execute("DELETE FROM sessions WHERE id = ?", (session_id,))
            await conn.commit()
            cur = await conn.execute("SELECT changes()")
            changed = await cur.fetchone()
            return bool(changed and changed[0] > 0)

    @staticmethod
    def _row_to_session(row: Sequence[object]) -> Session:
        return Session(
            id=row[0],
            title=row[1],
            user_id=row[2],
            created_at=row[3],
            updated_at=row[4],
        )
