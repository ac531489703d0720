"""Error taxonomy shared by the chat engine, the store and the video manager."""

from __future__ import annotations

from typing import Optional


class AdvisorError(Exception):
    """Base class for failures the style advisor reports to the user."""

    user_message = "Sorry, I encountered an error. Please try again."


class EmptyInputError(AdvisorError, ValueError):
    """Raised when a turn is sent without any text."""

    user_message = "Please type a message before sending."


class BusyError(AdvisorError, RuntimeError):
    """Raised when an operation for the same key is already in flight."""

    user_message = "Please wait for the current reply to finish."


class SessionCreationError(AdvisorError, RuntimeError):
    """Raised when a chat session could not be created."""

    user_message = "Could not start a new chat session. Please try again."


class PersistenceError(AdvisorError, RuntimeError):
    """Raised when a turn could not be written to the store."""


class RemoteCallError(AdvisorError, RuntimeError):
    """Raised when a remote function answers with a non-success status.

    Attributes:
        status: HTTP status code (0 when the request never got a response).
        body: Raw response body or transport error text, kept for logs only.
    """

    def __init__(self, status: int, body: str, message: Optional[str] = None) -> None:
        self.status = status
        self.body = body
        super().__init__(message or f"Remote call failed with status {status}: {body[:200]}")


class StreamError(AdvisorError, RuntimeError):
    """Raised when a streamed reply carries an error fragment or breaks mid-way."""


class MalformedResponseError(AdvisorError, ValueError):
    """Raised when a successful response is missing required fields."""


class RemoteTimeoutError(AdvisorError, TimeoutError):
    """Raised when a remote call exceeds its network timeout."""

    user_message = "The request timed out. Please try again."


class ConcurrencyLimitError(AdvisorError, RuntimeError):
    """Raised when the video service rejects a create because of its session cap."""

    user_message = "Please wait, cleaning up previous sessions."


class CaptureUnavailableError(AdvisorError, RuntimeError):
    """Raised when an operation needs a camera frame and none can be captured."""

    user_message = "No camera image is available. Check that your webcam is on."
