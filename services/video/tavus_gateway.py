"""Video-avatar function: forwards `action` requests to the Tavus v2 API."""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

import httpx

from services.video.session_manager import DEFAULT_CONVERSATION_NAME, DEFAULT_CONVERSATIONAL_CONTEXT, DEFAULT_PERSONA_ID

LOGGER = logging.getLogger(__name__)

DEFAULT_REPLICA_ID = "re8e740a42"
DEFAULT_PROPERTIES = {
    "enable_recording": True,
    "max_call_duration": 300,
    "participant_absent_timeout": 60,
    "participant_left_timeout": 60,
}

ACTIONS = ("create_conversation", "get_conversation_status", "end_conversation")


class TavusGateway:
    """Thin async wrapper over the Tavus conversations endpoints.

    Raises `ValueError` for bad requests (unknown action, missing id) and
    `RuntimeError` for upstream failures; the route maps them to 400 and 500.
    """

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        api_key: Optional[str],
        base_url: str = "https://tavusapi.com/v2",
        timeout: float = 60.0,
    ) -> None:
        self._http = http_client
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout

    async def dispatch(self, action: str, data: Optional[Dict[str, Any]]) -> Dict[str, Any]:
        data = data or {}
        LOGGER.info("Video integration action: %s", action)
        if action == "create_conversation":
            return await self.create_conversation(data)
        if action == "get_conversation_status":
            return await self.get_conversation_status(self._require_id(data))
        if action == "end_conversation":
            return await self.end_conversation(self._require_id(data))
        raise ValueError(f"Unknown action: {action}")

    async def create_conversation(self, data: Dict[str, Any]) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "replica_id": data.get("replica_id") or DEFAULT_REPLICA_ID,
            "persona_id": data.get("persona_id") or DEFAULT_PERSONA_ID,
            "conversation_name": data.get("conversation_name") or DEFAULT_CONVERSATION_NAME,
            "conversational_context": data.get("conversational_context") or DEFAULT_CONVERSATIONAL_CONTEXT,
            "properties": dict(DEFAULT_PROPERTIES),
        }
        if data.get("callback_url"):
            payload["callback_url"] = data["callback_url"]
        return await self._request("POST", "/conversations", "create conversation", json=payload)

    async def get_conversation_status(self, conversation_id: str) -> Dict[str, Any]:
        return await self._request("GET", f"/conversations/{conversation_id}", "get conversation status")

    async def end_conversation(self, conversation_id: str) -> Dict[str, Any]:
        result = await self._request("POST", f"/conversations/{conversation_id}/end", "end conversation")
        result.setdefault("conversation_id", conversation_id)
        result.setdefault("status", "ended")
        return result

    @staticmethod
    def _require_id(data: Dict[str, Any]) -> str:
        conversation_id = str(data.get("conversation_id") or "").strip()
        if not conversation_id:
            raise ValueError("conversation_id is required")
        return conversation_id

    async def _request(self, method: str, path: str, what: str, json: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        if not self.api_key:
            raise RuntimeError("Tavus API key not configured")
        headers = {
            "x-api-key": self.api_key,
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }
        try:
            response = await self._http.request(
                method,
                f"{self.base_url}{path}",
                json=json,
                headers=headers,
                timeout=httpx.Timeout(self.timeout),
            )
        except httpx.HTTPError as exc:
            raise RuntimeError(f"Failed to {what}: {exc}") from exc

        if not response.is_success:
            LOGGER.error("Tavus %s failed: %s %.500s", what, response.status_code, response.text)
            raise RuntimeError(f"Failed to {what}: {response.status_code} - {response.text}")
        if not response.content:
            return {}
        try:
            body = response.json()
        except ValueError as exc:
            raise RuntimeError(f"Failed to {what}: invalid JSON from Tavus") from exc
        return body if isinstance(body, dict) else {"data": body}
