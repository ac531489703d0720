"""FastAPI routes exposing the model and video functions."""

from typing import Any, Dict, List, Literal, Optional

from fastapi import APIRouter, HTTPException, Request
from pydantic import BaseModel, Field

from controllers.advisor_controller import run_style_advisor, run_video_integration

router = APIRouter(prefix="/functions")


class ChatMessagePayload(BaseModel):
	role: Literal["user", "assistant"]
	content: str


class StyleAdvisorPayload(BaseModel):
	messages: List[ChatMessagePayload] = Field(default_factory=list)
	temperature: float = 0.7
	model: Optional[str] = None
	image: Optional[str] = None
	capturedImage: Optional[str] = None
	visualContext: Optional[str] = None
	visualHistory: List[Dict[str, Any]] = Field(default_factory=list)


class VideoIntegrationPayload(BaseModel):
	action: str
	data: Dict[str, Any] = Field(default_factory=dict)


@router.post("/style-advisor")
async def style_advisor_route(request: Request, payload: StyleAdvisorPayload):
	"""Image analysis (JSON) or follow-up reply (event stream)."""
	try:
		return await run_style_advisor(
			request,
			messages=[{"role": m.role, "content": m.content} for m in payload.messages],
			image=payload.image or payload.capturedImage,
			model=payload.model,
			temperature=payload.temperature,
			visual_context=payload.visualContext,
			visual_history=payload.visualHistory,
		)
	except HTTPException:
		raise
	except Exception as exc:
		raise HTTPException(status_code=500, detail=str(exc))


@router.post("/video-integration")
async def video_integration_route(request: Request, payload: VideoIntegrationPayload):
	"""Dispatch `create_conversation`, `get_conversation_status` or `end_conversation`."""
	return await run_video_integration(request, payload.action, payload.data)
