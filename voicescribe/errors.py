"""
Error taxonomy for the transcription service.

Every failure the service knows about is a :class:`TranscriptionError`
subclass carrying a stable ``kind`` string.  The HTTP layer turns any
exception into a ``{"error": kind, "message": ...}`` body via
:func:`error_response`, so nothing escapes to crash the process.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional, Tuple

logger = logging.getLogger(__name__)


class TranscriptionError(Exception):
    """Base class for all service errors."""

    kind = "TranscriptionError"
    http_status = 500

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def to_dict(self) -> Dict[str, Any]:
        return {"error": self.kind, "message": self.message}


class ValidationError(TranscriptionError):
    """Missing or unusable caller input."""

    kind = "ValidationError"
    http_status = 400


class ConfigurationError(TranscriptionError):
    """Missing or malformed settings or credentials.  Never retried."""

    kind = "ConfigurationError"
    http_status = 500


class UpstreamSubmissionError(TranscriptionError):
    """The recognizer rejected the start request."""

    kind = "UpstreamSubmissionError"
    http_status = 502


class UpstreamRecognitionError(TranscriptionError):
    """The recognizer reported a terminal failure for a running job."""

    kind = "UpstreamRecognitionError"
    http_status = 502

    def __init__(self, message: str, *, code: Optional[int] = None) -> None:
        super().__init__(message)
        self.code = code
        self.upstream_message = message

    def to_dict(self) -> Dict[str, Any]:
        body = super().to_dict()
        if self.code is not None:
            body["code"] = self.code
        return body


class UpstreamUnavailableError(TranscriptionError):
    """A status read failed after retries.  The job itself may still be running."""

    kind = "UpstreamUnavailableError"
    http_status = 502


class JobTimeoutError(TranscriptionError, TimeoutError):
    """Local waiting was abandoned before the job reached a terminal state."""

    kind = "TimeoutError"
    http_status = 504


class NoSpeechDetectedError(TranscriptionError):
    """The job finished but produced no usable transcript."""

    kind = "NoSpeechDetectedError"
    http_status = 422


class StorageError(TranscriptionError):
    """Staging against the object store failed."""

    kind = "StorageError"
    http_status = 502


def error_response(exc: BaseException) -> Tuple[Dict[str, Any], int]:
    """Convert an exception into a JSON body and an HTTP status code."""
    if isinstance(exc, TranscriptionError):
        return exc.to_dict(), exc.http_status
    logger.error("Unexpected error: %s", exc, exc_info=exc)
    return {"error": "InternalError", "message": str(exc) or "Internal server error"}, 500
