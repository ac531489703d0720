"""Controllers for the model and video functions served by this app."""

import logging
from typing import Any, Dict, List, Optional

from fastapi import Request
from fastapi.responses import JSONResponse, StreamingResponse

from services.advisor.style_advisor import StyleAdvisorService
from services.video.tavus_gateway import TavusGateway

LOGGER = logging.getLogger(__name__)


async def run_style_advisor(
    request: Request,
    messages: List[Dict[str, str]],
    image: Optional[str],
    model: Optional[str],
    temperature: float,
    visual_context: Optional[str] = None,
    visual_history: Optional[List[Dict[str, Any]]] = None,
):
    """Answer a style-advisor request.

    - No messages and an image: a JSON analysis `{response, visualContext}`.
    - Messages: an event stream of `data: {"content": ...}` lines.
    - Neither: 400 `{"error": "Invalid request format"}`.
    """
    settings = request.app.state.settings
    service = StyleAdvisorService(request.app.state.openai_client, default_model=settings.style_advisor_model)

    if not messages and image:
        LOGGER.info("Processing initial image analysis")
        try:
            result = await service.analyze(image, model=model, temperature=temperature)
        except Exception as exc:
            LOGGER.exception("Style analysis failed")
            return JSONResponse({"error": str(exc) or "Style analysis failed"}, status_code=500)
        return JSONResponse(result)

    if messages:
        LOGGER.info("Processing follow-up conversation with %d messages", len(messages))
        return StreamingResponse(
            service.stream_reply(
                messages,
                model=model,
                temperature=temperature,
                image=image,
                visual_context=visual_context,
                visual_history=visual_history or [],
            ),
            media_type="text/event-stream",
            headers={"Cache-Control": "no-cache"},
        )

    return JSONResponse({"error": "Invalid request format"}, status_code=400)


async def run_video_integration(request: Request, action: str, data: Dict[str, Any]) -> JSONResponse:
    """Forward a video action to Tavus; 400 for bad requests, 500 for upstream failures."""
    settings = request.app.state.settings
    gateway = TavusGateway(
        request.app.state.http_client,
        settings.tavus_api_key,
        base_url=settings.tavus_api_url,
        timeout=settings.remote_timeout_seconds,
    )
    try:
        result = await gateway.dispatch(action, data)
    except ValueError as exc:
        return JSONResponse({"error": str(exc)}, status_code=400)
    except Exception as exc:
        LOGGER.exception("Video integration action %s failed", action)
        return JSONResponse({"error": str(exc) or "An unexpected error occurred"}, status_code=500)
    return JSONResponse(result)
