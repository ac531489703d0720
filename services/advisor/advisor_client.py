"""HTTP client for the remote style-advisor model function."""

from __future__ import annotations

import json
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any, AsyncIterator, Dict, Iterable, Optional, Sequence

import httpx

from models.errors import MalformedResponseError, RemoteCallError, RemoteTimeoutError, StreamError
from models.session_models import Turn, VisualTurn
from services.advisor.sse_decoder import StreamFragment, iter_fragments

LOGGER = logging.getLogger(__name__)

DEFAULT_MODEL = "gpt-4o-mini"
DEFAULT_TIMEOUT_SECONDS = 60.0


@dataclass(frozen=True)
class AnalysisResult:
    response: str
    visual_context: Optional[str] = None


class StyleAdvisorClient:
    """Post chat turns to the model function and expose its reply as fragments.

    Both streamed (`text/event-stream`) and single JSON replies are accepted;
    a JSON reply is surfaced as one content fragment.
    """

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        url: str,
        api_key: Optional[str] = None,
        model: str = DEFAULT_MODEL,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
    ) -> None:
        if http_client is None:
            raise ValueError("httpx.AsyncClient is required.")
        self._http = http_client
        self.url = url
        self.api_key = api_key
        self.model = model
        self.timeout = timeout

    def build_payload(
        self,
        turns: Iterable[Turn],
        temperature: float,
        image: Optional[str] = None,
        visual_context: Optional[str] = None,
        visual_history: Optional[Sequence[VisualTurn]] = None,
    ) -> Dict[str, Any]:
        """Assemble the request body; optional keys are omitted when empty."""
        payload: Dict[str, Any] = {
            "messages": [turn.to_message() for turn in turns],
            "temperature": temperature,
            "model": self.model,
        }
        if image:
            payload["image"] = image
        if visual_context:
            payload["visualContext"] = visual_context
        if visual_history:
            payload["visualHistory"] = [entry.to_payload() for entry in visual_history]
        return payload

    def _headers(self) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    @asynccontextmanager
    async def open_stream(self, payload: Dict[str, Any]) -> AsyncIterator[AsyncIterator[StreamFragment]]:
        """Send `payload` and yield an async iterator over the reply fragments.

        Raises:
            RemoteTimeoutError: The request or a read exceeded the timeout.
            RemoteCallError: Transport failure (status 0) or a non-2xx answer.
        """
        LOGGER.info(
            "Calling style advisor: %d messages, image=%s, visualHistory=%d",
            len(payload.get("messages", [])),
            "image" in payload,
            len(payload.get("visualHistory", [])),
        )
        request = self._http.build_request(
            "POST",
            self.url,
            json=payload,
            headers=self._headers(),
            timeout=httpx.Timeout(self.timeout),
        )
        try:
            response = await self._http.send(request, stream=True)
        except httpx.TimeoutException as exc:
            raise RemoteTimeoutError(f"Style advisor did not answer within {self.timeout:g}s") from exc
        except httpx.HTTPError as exc:
            raise RemoteCallError(0, str(exc)) from exc

        try:
            if not response.is_success:
                body = (await response.aread()).decode("utf-8", errors="replace")
                LOGGER.error("Style advisor error %s: %.500s", response.status_code, body)
                raise RemoteCallError(response.status_code, body)
            yield self._fragments(response)
        finally:
            await response.aclose()

    async def _fragments(self, response: httpx.Response) -> AsyncIterator[StreamFragment]:
        content_type = response.headers.get("content-type", "").lower()
        try:
            if content_type.startswith("application/json"):
                body = await response.aread()
                yield StreamFragment(content=self._parse_json_reply(response.status_code, body).response)
                return
            async for fragment in iter_fragments(response.aiter_bytes()):
                yield fragment
        except httpx.TimeoutException as exc:
            raise RemoteTimeoutError(f"Style advisor stream stalled for {self.timeout:g}s") from exc
        except httpx.HTTPError as exc:
            raise StreamError(f"Style advisor stream broke: {exc}") from exc

    async def analyze(self, payload: Dict[str, Any]) -> AnalysisResult:
        """Send an image-only request and return the JSON analysis."""
        try:
            response = await self._http.post(
                self.url,
                json=payload,
                headers=self._headers(),
                timeout=httpx.Timeout(self.timeout),
            )
        except httpx.TimeoutException as exc:
            raise RemoteTimeoutError(f"Style advisor did not answer within {self.timeout:g}s") from exc
        except httpx.HTTPError as exc:
            raise RemoteCallError(0, str(exc)) from exc

        if not response.is_success:
            LOGGER.error("Style advisor analysis error %s: %.500s", response.status_code, response.text)
            raise RemoteCallError(response.status_code, response.text)
        return self._parse_json_reply(response.status_code, response.content)

    @staticmethod
    def _parse_json_reply(status: int, body: bytes) -> AnalysisResult:
        try:
            data = json.loads(body)
        except ValueError as exc:
            raise MalformedResponseError("Style advisor returned invalid JSON") from exc
        if not isinstance(data, dict):
            raise MalformedResponseError("Style advisor returned a non-object JSON body")
        if data.get("error"):
            raise RemoteCallError(status, str(data["error"]))
        reply = data.get("response") or data.get("analysis")
        if not isinstance(reply, str) or not reply:
            raise MalformedResponseError("Style advisor reply has no 'response' text")
        visual_context = data.get("visualContext")
        return AnalysisResult(response=reply, visual_context=visual_context if isinstance(visual_context, str) and visual_context else None)
