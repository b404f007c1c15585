"""Error kinds raised by the turn pipeline.

Every error carries an HTTP status so the transport layer can map it
without knowing which stage raised it.
"""


class ChatError(Exception):
    """Base class for pipeline errors."""

    kind = "internal"
    status_code = 500

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code

    def to_dict(self) -> dict:
        return {"error": self.kind, "message": self.message, "status": self.status_code}


class InvalidInput(ChatError):
    kind = "invalid_input"
    status_code = 400


class NotFound(ChatError):
    kind = "not_found"
    status_code = 404


class QuotaExceeded(ChatError):
    kind = "quota_exceeded"
    status_code = 429


class UnsafeContent(ChatError):
    """Content blocked by the fast gate or the moderation API."""

    kind = "unsafe_content"
    status_code = 400

    def __init__(self, message: str, reason: str, category: str | None = None):
        super().__init__(message)
        self.reason = reason
        self.category = category


class ModelUnavailable(ChatError):
    kind = "model_unavailable"
    status_code = 502


class ModerationUnavailable(ChatError):
    kind = "moderation_unavailable"
    status_code = 502


class IdempotentResponseMissing(ChatError):
    kind = "idempotent_response_missing"
    status_code = 409


class Internal(ChatError):
    kind = "internal"
    status_code = 500
