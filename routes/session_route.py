"""FastAPI routes for chat sessions and recorded video sessions."""

from typing import Optional

from fastapi import APIRouter, HTTPException, Request
from pydantic import BaseModel

from controllers.session_controller import (
	create_session,
	delete_session,
	delete_video_session,
	get_video_session,
	list_session_turns,
	list_sessions,
	list_video_sessions,
	rename_session,
)

router = APIRouter()


class CreatePayload(BaseModel):
	title: Optional[str] = None


class RenamePayload(BaseModel):
	title: str


@router.get("/sessions")
async def list_sessions_route(request: Request):
	try:
		return await list_sessions(request)
	except HTTPException:
		raise
	except Exception as exc:
		raise HTTPException(status_code=500, detail=str(exc))


@router.post("/sessions")
async def create_session_route(request: Request, payload: CreatePayload):
	try:
		return await create_session(request, payload.title)
	except HTTPException:
		raise
	except Exception as exc:
		raise HTTPException(status_code=500, detail=str(exc))


@router.patch("/sessions/{session_id}")
async def rename_session_route(request: Request, session_id: str, payload: RenamePayload):
	try:
		return await rename_session(request, session_id, payload.title)
	except HTTPException:
		raise
	except Exception as exc:
		raise HTTPException(status_code=500, detail=str(exc))


@router.delete("/sessions/{session_id}")
async def delete_session_route(request: Request, session_id: str):
	try:
		return await delete_session(request, session_id)
	except HTTPException:
		raise
	except Exception as exc:
		raise HTTPException(status_code=500, detail=str(exc))


@router.get("/sessions/{session_id}/turns")
async def list_turns_route(request: Request, session_id: str):
	try:
		return await list_session_turns(request, session_id)
	except HTTPException:
		raise
	except Exception as exc:
		raise HTTPException(status_code=500, detail=str(exc))


@router.get("/video-sessions")
async def list_video_sessions_route(request: Request, session_id: Optional[str] = None):
	try:
		return await list_video_sessions(request, session_id)
	except HTTPException:
		raise
	except Exception as exc:
		raise HTTPException(status_code=500, detail=str(exc))


@router.get("/video-sessions/{conversation_id}")
async def get_video_session_route(request: Request, conversation_id: str):
	try:
		return await get_video_session(request, conversation_id)
	except HTTPException:
		raise
	except Exception as exc:
		raise HTTPException(status_code=500, detail=str(exc))


@router.delete("/video-sessions/{conversation_id}")
async def delete_video_session_route(request: Request, conversation_id: str):
	try:
		return await delete_video_session(request, conversation_id)
	except HTTPException:
		raise
	except Exception as exc:
		raise HTTPException(status_code=500, detail=str(exc))
