"""Shared error codes, user-facing messages and exception types."""

from __future__ import annotations

PERMISSION_DENIED = "PERMISSION_DENIED"
SESSION_INIT_FAILED = "SESSION_INIT_FAILED"
UNSUPPORTED_FORMAT = "UNSUPPORTED_FORMAT"
NETWORK_ERROR = "NETWORK_ERROR"
AUTH_FAILED = "AUTH_FAILED"
ASR_PROTOCOL_ERROR = "ASR_PROTOCOL_ERROR"
SESSION_CANCELLED = "SESSION_CANCELLED"

ERROR_MESSAGES = {
    PERMISSION_DENIED: "Microphone or speech recognition permission is required.",
    SESSION_INIT_FAILED: "Could not start the recognition session.",
    UNSUPPORTED_FORMAT: "Audio format cannot be converted for the recognizer.",
    NETWORK_ERROR: "Network failed, please retry.",
    AUTH_FAILED: "API key is invalid.",
    ASR_PROTOCOL_ERROR: "ASR response format is invalid.",
    SESSION_CANCELLED: "Recognition session was cancelled.",
}


class TranscriptionError(Exception):
    code = ASR_PROTOCOL_ERROR

    def __init__(self, message: str = "", code: str | None = None) -> None:
        if code is not None:
            self.code = code
        super().__init__(message or ERROR_MESSAGES.get(self.code, self.code))
        self.message = str(self)


class AuthorizationError(TranscriptionError):
    code = PERMISSION_DENIED


class SessionInitError(TranscriptionError):
    code = SESSION_INIT_FAILED


class UnsupportedFormat(TranscriptionError):
    code = UNSUPPORTED_FORMAT


class TransportError(TranscriptionError):
    code = NETWORK_ERROR


class DecodingError(TranscriptionError):
    code = ASR_PROTOCOL_ERROR


def classify_backend_error(message: str) -> TranscriptionError:
    """Map a backend/SDK failure message to a transcription error."""
    low = message.lower()
    if "401" in low or "auth" in low or "api key" in low or "apikey" in low:
        return SessionInitError(message, code=AUTH_FAILED)
    if "timeout" in low or "network" in low or "connection" in low or "closed" in low:
        return TransportError(message)
    return DecodingError(message)
