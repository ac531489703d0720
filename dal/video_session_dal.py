"""Async Data Access Layer for the `video_sessions` table."""

from __future__ import annotations

import uuid
from typing import List, Optional, Sequence

from models.session_models import utc_now
from models.video_session import VideoSession, VideoStatus
from utils.database_init import AsyncDatabaseInitializer


class VideoSessionDAL:
    """Data access layer for video conversation records keyed by `conversation_id`."""

    _COLUMNS = (
        "id",
        "conversation_id",
        "conversation_name",
        "conversation_url",
        "status",
        "callback_url",
        "user_id",
        "session_id",
        "created_at",
        "updated_at",
    )
    _COLUMN_LIST = ", ".join(_COLUMNS)

    def __init__(self, db_initializer: AsyncDatabaseInitializer) -> None:
        self._db = db_initializer

    async def create(self, record: VideoSession) -> VideoSession:
        """Insert a record and return it with its id and timestamps filled in."""
        now = utc_now()
        record.id = record.id or str(uuid.uuid4())
        record.created_at = record.created_at or now
        record.updated_at = now
        async with self._db.connection() as conn:
            await conn.execute(
                f"INSERT INTO video_sessions ({self._COLUMN_LIST}) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                (
                    record.id,
                    record.conversation_id,
                    record.conversation_name,
                    record.conversation_url,
                    record.status.value,
                    record.callback_url,
                    record.user_id,
                    record.session_id,
                    record.created_at,
                    record.updated_at,
                ),
            )
            await conn.commit()
        return record

    async def get_by_conversation_id(self, conversation_id: str) -> Optional[VideoSession]:
        async with self._db.connection() as conn:
            cur = await conn.execute(
                f"SELECT {self._COLUMN_LIST} FROM video_sessions WHERE conversation_id = ?",
                (conversation_id,),
            )
            row = await cur.fetchone()
            return self._row_to_record(row) if row else None

    async def list(self, session_id: Optional[str] = None, limit: int = 100) -> List[VideoSession]:
        """List records, newest first, optionally limited to one chat session."""
        async with self._db.connection() as conn:
            if session_id:
                cur = await conn.execute(
                    f"SELECT {self._COLUMN_LIST} FROM video_sessions WHERE session_id = ? "
                    "ORDER BY created_at DESC LIMIT ?",
                    (session_id, limit),
                )
            else:
                cur = await conn.execute(
                    f"SELECT {self._COLUMN_LIST} FROM video_sessions ORDER BY created_at DESC LIMIT ?",
                    (limit,),
                )
            rows = await cur.fetchall()
            return [self._row_to_record(r) for r in rows]

    async def update_status(self, conversation_id: str, status: VideoStatus) -> bool:
        """Set the cached status. Returns True if a row was changed."""
        async with self._db.connection() as conn:
            await conn.execute(
                "UPDATE video_sessions SET status = ?, updated_at = ? WHERE conversation_id = ?",
                (status.value, utc_now(), conversation_id),
            )
            await conn.commit()
            cur = await conn.execute("SELECT changes()")
            changed = await cur.fetchone()
            return bool(changed and changed[0] > 0)

    async def delete(self, conversation_id: str) -> bool:
        async with self._db.connection() as conn:
            await conn.execute("DELETE FROM video_sessions WHERE conversation_id = ?", (conversation_id,))
            await conn.commit()
            cur = await conn.execute("SELECT changes()")
            changed = await cur.fetchone()
            return bool(changed and changed[0] > 0)

    @staticmethod
    def _row_to_record(row: Sequence[object]) -> VideoSession:
        return VideoSession(
            id=row[0],
            conversation_id=row[1],
            conversation_name=row[2],
            conversation_url=row[3],
            status=VideoStatus.from_remote(row[4]),
            callback_url=row[5],
            user_id=row[6],
            session_id=row[7],
            created_at=row[8],
            updated_at=row[9],
        )
