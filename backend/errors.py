"""
Error taxonomy for the webhook endpoint.

The service raises these; `main.py` renders them as
`{"error": <message>, "reason": <code>}` with the matching status code.
Anything else escaping a request is a bug and becomes a generic 500.
"""


class WebhookError(Exception):
    status_code = 500
    reason = "internal_error"

    def __init__(self, message: str, reason: str | None = None):
        super().__init__(message)
        self.message = message
        if reason is not None:
            self.reason = reason


class MalformedInput(WebhookError):
    status_code = 400
    reason = "malformed_input"


class Unauthorized(WebhookError):
    status_code = 403
    reason = "forbidden"


class NodeNotFound(WebhookError):
    status_code = 404
    reason = "not_found"


class PayloadTooLarge(WebhookError):
    status_code = 413
    reason = "payload_too_large"


class UnsupportedMediaType(WebhookError):
    status_code = 415
    reason = "unsupported_media_type"


class EventTooOld(WebhookError):
    status_code = 422
    reason = "event_too_old"


class RateLimited(WebhookError):
    status_code = 429
    reason = "rate_limited"


class DownstreamError(WebhookError):
    """Identity, catalog or persistence failure. The message is passed through."""

    status_code = 500
    reason = "downstream_failure"
