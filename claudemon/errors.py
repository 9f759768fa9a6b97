"""Failure taxonomy for the turn loop.

Every failure that reaches the request lifecycle is one of these. ``fatal``
errors halt the loop on first sight; the rest are counted and only halt it
once they repeat ``MAX_CONSECUTIVE_ERRORS`` times in a row.
"""

# Endpoint error types that can never succeed on retry
FATAL_ERROR_KINDS = frozenset({
    "authentication_error",
    "permission_error",
    "billing_error",
    "invalid_api_key",
})
# Some quota failures arrive as a plain invalid_request_error
FATAL_MESSAGE_MARKERS = ("credit balance", "quota", "invalid x-api-key")
TRANSIENT_ERROR_KINDS = frozenset({"rate_limit_error", "overloaded_error", "api_error"})


class ClaudemonError(Exception):
    code = "error"
    fatal = False


class TransportError(ClaudemonError):
    """Connection never produced a status + body."""

    code = "transport_error"


class RequestTimeout(TransportError):
    code = "timeout"


class MalformedResponseError(ClaudemonError):
    code = "malformed_response"


class EndpointError(ClaudemonError):
    """Structured ``{"error": {"type", "message"}}`` returned by the endpoint."""

    def __init__(self, kind: str, message: str, status: int | None = None):
        super().__init__(f"{kind}: {message}" if message else kind)
        self.kind = kind or "unknown_error"
        self.message = message
        self.status = status

    @property
    def code(self) -> str:
        return self.kind

    @property
    def fatal(self) -> bool:
        if self.kind in FATAL_ERROR_KINDS or self.status in (401, 403):
            return True
        lowered = (self.message or "").lower()
        return any(marker in lowered for marker in FATAL_MESSAGE_MARKERS)

    @property
    def transient(self) -> bool:
        return self.kind in TRANSIENT_ERROR_KINDS or self.status in (429, 500, 502, 503, 529)
