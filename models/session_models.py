"""Session and turn models for the chat workflow."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Iterable, Optional
from uuid import uuid4


def utc_now() -> str:
	"""Return the current UTC time as an ISO-8601 string with microseconds."""
	return datetime.now(timezone.utc).isoformat(timespec="microseconds")


def new_local_id() -> str:
	"""Return a process-unique id for a turn that has not been persisted yet."""
	return f"local-{uuid4().hex}"


class Role(str, Enum):
	"""Author of a turn."""

	USER = "user"
	ASSISTANT = "assistant"


@dataclass
class Session:
	"""One advisory conversation as stored in the `sessions` table."""

	id: str
	title: str
	created_at: str
	updated_at: str
	user_id: Optional[str] = None

	def to_dict(self) -> Dict[str, Any]:
		return {
			"id": self.id,
			"title": self.title,
			"user_id": self.user_id,
			"created_at": self.created_at,
			"updated_at": self.updated_at,
		}


@dataclass
class Turn:
	"""A single user or assistant message.

	Attributes:
		id: Local id for in-memory turns, row id for turns read from the store.
		role: Author of the turn.
		content: Text; grows while an assistant reply is streaming.
		visual_context: Photo data URI sent with a user turn, or appearance notes
			on an assistant turn produced by an image analysis.
		created_at: ISO timestamp set at creation.
		session_id: Owning session when known.
		complete: False only for an assistant placeholder still receiving content.
		is_error: True for the local fallback turn shown after a failure.
	"""

	id: str
	role: Role
	content: str
	visual_context: Optional[str] = None
	created_at: str = field(default_factory=utc_now)
	session_id: Optional[str] = None
	complete: bool = True
	is_error: bool = False

	def to_message(self) -> Dict[str, str]:
		"""Return the `{role, content}` pair sent to the model."""
		return {"role": self.role.value, "content": self.content}

	def to_dict(self) -> Dict[str, Any]:
		return {
			"id": self.id,
			"role": self.role.value,
			"content": self.content,
			"visual_context": self.visual_context,
			"created_at": self.created_at,
			"session_id": self.session_id,
			"complete": self.complete,
			"is_error": self.is_error,
		}


@dataclass(frozen=True)
class VisualTurn:
	"""History entry sent alongside a model call so it can recall what it saw."""

	role: str
	content: str
	visual_context: Optional[str]
	created_at: str

	@classmethod
	def from_turn(cls, turn: Turn) -> "VisualTurn":
		return cls(
			role=turn.role.value,
			content=turn.content,
			visual_context=turn.visual_context,
			created_at=turn.created_at,
		)

	def to_payload(self) -> Dict[str, Any]:
		return {
			"role": self.role,
			"content": self.content,
			"visual_context": self.visual_context,
			"created_at": self.created_at,
		}


def latest_visual_context(turns: Iterable[Turn]) -> Optional[str]:
	"""Return the last non-empty visual context scanning oldest to newest."""
	latest: Optional[str] = None
	for turn in turns:
		if turn.visual_context:
			latest = turn.visual_context
	return latest
