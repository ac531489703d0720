"""HTTP client for the remote video-avatar function (`action` dispatch)."""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

import httpx

from models.errors import (
    ConcurrencyLimitError,
    MalformedResponseError,
    RemoteCallError,
    RemoteTimeoutError,
)

LOGGER = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 60.0

_CONCURRENCY_MARKERS = (
    "concurrent",
    "maximum number of",
    "too many",
    "limit reached",
)


def is_concurrency_limit(message: str) -> bool:
    """Return True if an error message reports the provider's session cap."""
    lowered = (message or "").lower()
    return any(marker in lowered for marker in _CONCURRENCY_MARKERS)


class VideoServiceClient:
    """POST `{action, data}` to the video function and validate the answers."""

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        url: str,
        api_key: Optional[str] = None,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
    ) -> None:
        if http_client is None:
            raise ValueError("httpx.AsyncClient is required.")
        self._http = http_client
        self.url = url
        self.api_key = api_key
        self.timeout = timeout

    async def create_conversation(
        self,
        conversation_name: Optional[str] = None,
        conversational_context: Optional[str] = None,
        persona_id: Optional[str] = None,
        callback_url: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Create a conversation and return the provider's answer.

        Raises:
            MalformedResponseError: The answer lacks `conversation_id` or `conversation_url`.
            ConcurrencyLimitError: The provider refused because of its session cap.
        """
        data: Dict[str, Any] = {}
        if conversation_name:
            data["conversation_name"] = conversation_name
        if conversational_context:
            data["conversational_context"] = conversational_context
        if persona_id:
            data["persona_id"] = persona_id
        if callback_url:
            data["callback_url"] = callback_url

        result = await self._dispatch("create_conversation", data)
        if not result.get("conversation_id") or not result.get("conversation_url"):
            raise MalformedResponseError("Video service answered without conversation_id/conversation_url")
        return result

    async def get_conversation_status(self, conversation_id: str) -> Dict[str, Any]:
        return await self._dispatch("get_conversation_status", {"conversation_id": conversation_id})

    async def end_conversation(self, conversation_id: str) -> Dict[str, Any]:
        return await self._dispatch("end_conversation", {"conversation_id": conversation_id})

    async def _dispatch(self, action: str, data: Dict[str, Any]) -> Dict[str, Any]:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        LOGGER.info("Video service action %s", action)
        try:
            response = await self._http.post(
                self.url,
                json={"action": action, "data": data},
                headers=headers,
                timeout=httpx.Timeout(self.timeout),
            )
        except httpx.TimeoutException as exc:
            raise RemoteTimeoutError(f"Video service did not answer {action} within {self.timeout:g}s") from exc
        except httpx.HTTPError as exc:
            raise RemoteCallError(0, str(exc)) from exc

        try:
            body = response.json()
        except ValueError:
            body = None

        error_text = None
        if isinstance(body, dict) and body.get("error"):
            error_text = str(body["error"])
        elif not response.is_success:
            error_text = response.text

        if error_text is not None:
            LOGGER.error("Video service %s failed (%s): %.500s", action, response.status_code, error_text)
            if is_concurrency_limit(error_text):
                raise ConcurrencyLimitError(error_text)
            raise RemoteCallError(response.status_code, error_text)

        if not isinstance(body, dict):
            raise MalformedResponseError(f"Video service returned a non-object body for {action}")
        return body
