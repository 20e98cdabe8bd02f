"""Error taxonomy shared by all handlers.

Handlers and dependencies raise these; a single exception handler registered
in ``create_app`` renders them as ``{"status": "error", "message": ...}``.
"""


class WaitlistError(Exception):
    """Base error carrying an HTTP status and a client-safe message."""

    status_code: int = 500
    default_message: str = "Internal server error"

    def __init__(self, message: str | None = None, headers: dict[str, str] | None = None):
        self.message = message or self.default_message
        self.headers = headers or {}
        super().__init__(self.message)

    def to_body(self) -> dict[str, object]:
        return {"status": "error", "message": self.message}


class ValidationError(WaitlistError):
    """Bad input shape or content."""

    status_code = 400
    default_message = "Invalid request"


class AuthError(WaitlistError):
    """Missing, invalid or expired session, or wrong password.

    The message never says which.
    """

    status_code = 401
    default_message = "Unauthorized"


class ForbiddenOrigin(WaitlistError):
    status_code = 403
    default_message = "Origin not allowed"


class NotFound(WaitlistError):
    status_code = 404
    default_message = "Not found"


class MethodNotAllowed(WaitlistError):
    status_code = 405
    default_message = "Method not allowed"


class Conflict(WaitlistError):
    status_code = 409
    default_message = "Conflict"


class RateLimited(WaitlistError):
    """Too many requests; carries retry-after seconds when known."""

    status_code = 429
    default_message = "Too many requests. Please try again later."

    def __init__(self, message: str | None = None, retry_after: int | None = None):
        headers = {"Retry-After": str(retry_after)} if retry_after else None
        super().__init__(message, headers=headers)
        self.retry_after = retry_after

    def to_body(self) -> dict[str, object]:
        body = super().to_body()
        if self.retry_after:
            body["retryAfter"] = self.retry_after
        return body


class Misconfigured(WaitlistError):
    """Required secrets are missing or too weak."""

    status_code = 500
    default_message = "Server is misconfigured"


class UpstreamFailure(WaitlistError):
    """Store or mail transport failure."""

    status_code = 500
    default_message = "Internal server error"
