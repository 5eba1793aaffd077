from __future__ import annotations

from typing import Any, Dict, Optional


class CoachApiError(Exception):
    """Base error for the analysis pipeline.

    `status_code` and `public_message` are what the HTTP layer returns; the
    exception text itself is only ever logged server-side.
    """

    status_code: int = 500
    public_message: str = "Video analysis failed"

    def to_body(self) -> Dict[str, Any]:
        return {"error": self.public_message}


class Unauthenticated(CoachApiError):
    status_code = 401

    def __init__(self, reason: str = "Missing or invalid Authorization header"):
        super().__init__(reason)
        self.reason = reason

    def to_body(self) -> Dict[str, Any]:
        return {"error": self.reason}


class Forbidden(CoachApiError):
    """Identity is genuine but not allowed (wrong hosted domain, unverified email)."""

    status_code = 403

    def __init__(self, error: str, message: Optional[str] = None):
        super().__init__(error)
        self.error = error
        self.message = message

    def to_body(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {"error": self.error}
        if self.message:
            body["message"] = self.message
        return body


class InvalidRequest(CoachApiError):
    status_code = 400

    def __init__(self, error: str, **extra: Any):
        super().__init__(error)
        self.error = error
        self.extra = extra

    def to_body(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {"error": self.error}
        body.update(self.extra)
        return body


class RateLimited(CoachApiError):
    status_code = 429

    def __init__(self, limit: int, retry_after: int, resource: str = "video"):
        super().__init__(f"rate limit exceeded for {resource}: limit={limit}")
        self.limit = limit
        self.retry_after = retry_after
        self.resource = resource

    def to_body(self) -> Dict[str, Any]:
        noun = "video analyses" if self.resource == "video" else "analyses"
        return {
            "error": "Rate limit exceeded",
            "message": f"Maximum {self.limit} {noun} per hour. Please try again later.",
            "retry_after": self.retry_after,
        }


class UpstreamError(CoachApiError):
    """Non-2xx (or unreachable) response from a Gemini endpoint."""

    status_code = 502
    public_message = "Analysis service error"

    def __init__(self, status: Optional[int], body: str = ""):
        super().__init__(f"upstream error status={status}")
        self.status = status
        # Bounded so a large upstream page never ends up in logs wholesale
        self.body = (body or "")[:1024]


class StatusQueryError(UpstreamError):
    public_message = "Video processing status unavailable"


class EmptyCompletion(UpstreamError):
    """The model returned no candidates or no text (e.g. safety block)."""

    public_message = "Analysis service returned no results"

    def __init__(self, block_reason: Optional[str] = None):
        super().__init__(None, "")
        self.block_reason = block_reason

    def to_body(self) -> Dict[str, Any]:
        if self.block_reason:
            return {"error": "Video analysis blocked or failed", "message": "Content was blocked by safety filters"}
        return {"error": "Video analysis blocked or failed", "message": self.public_message}


class MalformedResponse(CoachApiError):
    status_code = 502
    public_message = "Invalid response format from analysis service"

    def __init__(self, reason: str, text_length: int = 0):
        super().__init__(reason)
        self.reason = reason
        self.text_length = text_length


class ProcessingFailed(CoachApiError):
    status_code = 502
    public_message = "Video processing failed"


class ProcessingTimedOut(CoachApiError):
    status_code = 502
    public_message = "Video processing timed out"


class CleanupFailed(CoachApiError):
    """Logged only; never returned to the caller."""

    def __init__(self, name: str, status: Optional[int] = None):
        super().__init__(f"failed to delete {name} status={status}")
        self.name = name
        self.status = status
