"""Chat-session and video-session bookkeeping behind the REST routes."""

from __future__ import annotations

from typing import Any, Dict, List, Optional

from fastapi import HTTPException, Request

from dal.video_session_dal import VideoSessionDAL
from services.conversation_store import ConversationStore


def _store(request: Request) -> ConversationStore:
	return ConversationStore(request.app.state.db_initializer)


async def list_sessions(request: Request) -> List[Dict[str, Any]]:
	"""Return every session, most recently active first."""
	sessions = await _store(request).list_sessions()
	return [s.to_dict() for s in sessions]


async def create_session(request: Request, title: Optional[str]) -> Dict[str, Any]:
	store = _store(request)
	session_id = await store.create_session(title)
	if session_id is None:
		raise HTTPException(status_code=500, detail="Could not create session")
	session = await store.get_session(session_id)
	return session.to_dict() if session else {"id": session_id}


async def rename_session(request: Request, session_id: str, title: str) -> Dict[str, Any]:
	if not title.strip():
		raise HTTPException(status_code=400, detail="Title must not be empty")
	store = _store(request)
	if not await store.rename_session(session_id, title):
		raise HTTPException(status_code=404, detail=f"Session {session_id} not found")
	session = await store.get_session(session_id)
	return session.to_dict() if session else {"id": session_id, "title": title.strip()}


async def delete_session(request: Request, session_id: str) -> Dict[str, Any]:
	store = _store(request)
	if await store.get_session(session_id) is None:
		raise HTTPException(status_code=404, detail=f"Session {session_id} not found")
	await store.delete_session(session_id)
	return {"id": session_id, "deleted": True}


async def list_session_turns(request: Request, session_id: str) -> List[Dict[str, Any]]:
	"""Return a session's transcript oldest first."""
	store = _store(request)
	if await store.get_session(session_id) is None:
		raise HTTPException(status_code=404, detail=f"Session {session_id} not found")
	turns = await store.list_turns(session_id)
	return [t.to_dict() for t in turns]


async def list_video_sessions(request: Request, session_id: Optional[str]) -> List[Dict[str, Any]]:
	dal = VideoSessionDAL(request.app.state.db_initializer)
	records = await dal.list(session_id=session_id)
	return [r.to_dict() for r in records]


async def get_video_session(request: Request, conversation_id: str) -> Dict[str, Any]:
	record = await VideoSessionDAL(request.app.state.db_initializer).get_by_conversation_id(conversation_id)
	if record is None:
		raise HTTPException(status_code=404, detail=f"Video session {conversation_id} not found")
	return record.to_dict()


async def delete_video_session(request: Request, conversation_id: str) -> Dict[str, Any]:
	dal = VideoSessionDAL(request.app.state.db_initializer)
	if not await dal.delete(conversation_id):
		raise HTTPException(status_code=404, detail=f"Video session {conversation_id} not found")
	return {"conversation_id": conversation_id, "deleted": True}
