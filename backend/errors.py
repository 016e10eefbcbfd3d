"""Error taxonomy shared by the HTTP gateways.

Each error carries the HTTP status it maps to and a public message that is safe to
return to the caller. Internal detail belongs in the log, not in ``message``.
"""

from __future__ import annotations


class SpeakXError(Exception):
    status_code = 500
    default_message = "Internal server error"

    def __init__(self, message: str | None = None) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)


class ValidationError(SpeakXError):
    status_code = 400
    default_message = "Invalid request payload"


class ServiceUnavailable(SpeakXError):
    status_code = 503
    default_message = "Gemini AI not configured"


class UpstreamFailure(SpeakXError):
    status_code = 500
    default_message = "AI provider request failed"


class InvalidAIResponse(UpstreamFailure):
    default_message = "Invalid response format from AI"


class NotFound(SpeakXError):
    status_code = 404
    default_message = "Endpoint not found"
