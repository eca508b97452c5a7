"""Error kinds shared by routes, producer and consumer. Each carries the HTTP status it maps to."""

from __future__ import annotations


class ChatError(Exception):
    """Base error. Routes turn it into a plain-text response with status_code."""

    status_code = 500
    public_message = "An error occurred while processing your request"

    def __init__(self, message: str = "") -> None:
        super().__init__(message or self.public_message)
        self.message = message or self.public_message


class BackendConnectionError(ChatError):
    """Model backend unreachable or refused the call. No frame stream is opened."""

    public_message = "Failed to generate response"


class StreamError(ChatError):
    """Backend failed after streaming began. Reported in-band as an Error frame."""

    public_message = "Stream interrupted"


class FrameParseError(ChatError):
    """Malformed frame on the consumer side. Logged and skipped."""

    status_code = 400
    public_message = "Malformed frame"


class AuthorizationError(ChatError):
    status_code = 401
    public_message = "Unauthorized"


class NotFoundError(ChatError):
    status_code = 404
    public_message = "Not Found"


class BadRequestError(ChatError):
    status_code = 400
    public_message = "Bad Request"
