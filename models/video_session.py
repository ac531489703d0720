from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional


class VideoStatus(str, Enum):
    """Locally cached status of a remote video conversation."""

    PENDING = "pending"
    ACTIVE = "active"
    ENDED = "ended"
    ERROR = "error"

    @classmethod
    def from_remote(cls, value: Optional[str], default: Optional["VideoStatus"] = None) -> "VideoStatus":
        """Map a status string reported by the video service onto a local status.

        Unknown or missing values fall back to `default` (PENDING when omitted).
        """
        normalized = (value or "").strip().lower()
        mapping = {
            "pending": cls.PENDING,
            "waiting": cls.PENDING,
            "starting": cls.PENDING,
            "active": cls.ACTIVE,
            "ended": cls.ENDED,
            "completed": cls.ENDED,
            "error": cls.ERROR,
            "failed": cls.ERROR,
        }
        return mapping.get(normalized, default or cls.PENDING)

    @property
    def is_live(self) -> bool:
        return self in (VideoStatus.PENDING, VideoStatus.ACTIVE)


@dataclass
class VideoSession:
    """In-memory representation of a row in the `video_sessions` table.

    Attributes:
        conversation_id: Id assigned by the video service; correlation key.
        conversation_url: URL the client embeds to join the call.
        status: Cached status; the video service is authoritative.
        conversation_name: Optional display name sent at creation.
        session_id: Chat session the call belongs to, if any.
        callback_url: Optional webhook registered with the video service.
        user_id: Optional owner.
        id: Row id (None until persisted).
        created_at: ISO timestamp of the insert.
        updated_at: ISO timestamp of the last status change.
    """

    conversation_id: str
    conversation_url: str
    status: VideoStatus = VideoStatus.PENDING
    conversation_name: Optional[str] = None
    session_id: Optional[str] = None
    callback_url: Optional[str] = None
    user_id: Optional[str] = None
    id: Optional[str] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "conversation_id": self.conversation_id,
            "conversation_name": self.conversation_name,
            "conversation_url": self.conversation_url,
            "status": self.status.value,
            "callback_url": self.callback_url,
            "user_id": self.user_id,
            "session_id": self.session_id,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }
