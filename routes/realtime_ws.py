"""WebSocket endpoint for the live chat, dictation and video workflow."""

from __future__ import annotations

import json

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from dal.video_session_dal import VideoSessionDAL
from services.advisor.advisor_client import StyleAdvisorClient
from services.conversation_store import ConversationStore
from services.realtime.dictation import DictationTranscriber
from services.realtime.ws_session import RealtimeSessionHandler
from services.video.video_client import VideoServiceClient

router = APIRouter()


def build_handler(websocket: WebSocket) -> RealtimeSessionHandler:
	"""Wire one connection's services from the shared clients on `app.state`."""
	state = websocket.app.state
	settings = state.settings
	openai_client = getattr(state, "openai_client", None)
	return RealtimeSessionHandler(
		websocket,
		store=ConversationStore(state.db_initializer),
		advisor=StyleAdvisorClient(
			state.http_client,
			settings.style_advisor_url,
			api_key=settings.style_advisor_api_key,
			model=settings.style_advisor_model,
			timeout=settings.remote_timeout_seconds,
		),
		video_client=VideoServiceClient(
			state.http_client,
			settings.video_service_url,
			api_key=settings.video_service_api_key,
			timeout=settings.remote_timeout_seconds,
		),
		video_dal=VideoSessionDAL(state.db_initializer),
		transcriber=DictationTranscriber(openai_client) if openai_client is not None else None,
		default_persona_id=settings.video_persona_id,
	)


@router.websocket("/ws")
async def realtime_socket(websocket: WebSocket):
	"""Handle chat turns, dictation and video sessions over one websocket."""
	await websocket.accept()
	handler = build_handler(websocket)
	handler.start()
	try:
		while True:
			try:
				raw = await websocket.receive_text()
			except WebSocketDisconnect:
				break
			try:
				payload = json.loads(raw)
			except ValueError:
				handler.reject("Payload must be JSON")
				continue
			if not isinstance(payload, dict):
				handler.reject("Payload must be a JSON object")
				continue
			await handler.handle(payload)
	finally:
		await handler.close()
	try:
		await websocket.close()
	except RuntimeError:
		pass
