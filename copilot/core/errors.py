"""Error types shared by the adapters, the analysis client and the API.

Every failure is terminal for the operation that raised it. Adapters turn
these into state machine events; API routes turn them into HTTP responses.
"""

from enum import Enum
from typing import Optional


class CaptureErrorKind(str, Enum):
    PERMISSION_DENIED = "permission_denied"
    NO_DEVICE = "no_device"
    DEVICE_BUSY = "device_busy"
    UNSUPPORTED = "unsupported"
    NO_SPEECH = "no_speech"
    ABORTED = "aborted"
    NETWORK = "network"
    OTHER = "other"


class PlaybackErrorKind(str, Enum):
    BLOCKED = "blocked"
    UNSUPPORTED_FORMAT = "unsupported_format"
    DECODE = "decode"
    NETWORK = "network"
    EMPTY_PAYLOAD = "empty_payload"
    OTHER = "other"


class CopilotError(Exception):
    """Base exception for all copilot errors."""

    def __init__(self, message: str, details: Optional[dict] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class AnalysisFailed(CopilotError):
    """The analysis collaborator returned non-2xx, or could not be reached."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        details = {"status_code": status_code} if status_code is not None else {}
        super().__init__(message, details)
        self.status_code = status_code


class CaptureError(CopilotError):
    def __init__(self, kind: CaptureErrorKind, message: str):
        super().__init__(message, {"kind": kind.value})
        self.kind = kind


class SynthesisError(CopilotError):
    def __init__(self, kind: PlaybackErrorKind, message: str):
        super().__init__(message, {"kind": kind.value})
        self.kind = kind


class FallbackRequested(CopilotError):
    """Remote synthesis is unavailable; switch to local synthesis quietly."""
