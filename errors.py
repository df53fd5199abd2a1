"""Shared error taxonomy, user-facing messages and the transport text classifier.

The streaming endpoint's client library reports failures as human readable
text only, so every raw message is routed through :func:`classify_error`
before it reaches a caller. Vendor wording changes are absorbed by editing
``_PATTERNS`` and nothing else.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum
from typing import Pattern


class ErrorKind(str, Enum):
    PERMISSION_DENIED = "PERMISSION_DENIED"
    CONFIGURATION = "CONFIGURATION_ERROR"
    AUTH_FAILED = "AUTH_FAILED"
    ACCESS_FORBIDDEN = "ACCESS_FORBIDDEN"
    NETWORK_ERROR = "NETWORK_ERROR"
    NOT_CONNECTED = "NOT_CONNECTED"
    CAPTURE_STATE = "CAPTURE_STATE"
    UNKNOWN = "UNKNOWN"


ERROR_MESSAGES = {
    ErrorKind.PERMISSION_DENIED: "Microphone access denied. Please grant permission to use the microphone.",
    ErrorKind.CONFIGURATION: "API key is required.",
    ErrorKind.AUTH_FAILED: "Authentication failed. Check your API key.",
    ErrorKind.ACCESS_FORBIDDEN: "Permission denied. Check your account and plan.",
    ErrorKind.NETWORK_ERROR: "Network error. WebSocket connection failed (check network/firewall).",
    ErrorKind.NOT_CONNECTED: "Not connected to transcription service.",
    ErrorKind.CAPTURE_STATE: "Microphone stream not initialized. Call request_access() first.",
    ErrorKind.UNKNOWN: "Transcription error.",
}


class VoiceToTextError(Exception):
    """Base error. ``detail`` keeps the raw upstream text for diagnostics."""

    kind = ErrorKind.UNKNOWN

    def __init__(self, message: str = "", detail: str = "") -> None:
        super().__init__(message or ERROR_MESSAGES[self.kind])
        self.detail = detail

    @property
    def message(self) -> str:
        return str(self)


class PermissionDeniedError(VoiceToTextError):
    kind = ErrorKind.PERMISSION_DENIED


class ConfigurationError(VoiceToTextError):
    kind = ErrorKind.CONFIGURATION


class AuthFailureError(VoiceToTextError):
    kind = ErrorKind.AUTH_FAILED


class AccessForbiddenError(VoiceToTextError):
    kind = ErrorKind.ACCESS_FORBIDDEN


class NetworkFailureError(VoiceToTextError):
    kind = ErrorKind.NETWORK_ERROR


class NotConnectedError(VoiceToTextError):
    kind = ErrorKind.NOT_CONNECTED


class CaptureStateError(VoiceToTextError):
    kind = ErrorKind.CAPTURE_STATE


class UnknownTranscriptionError(VoiceToTextError):
    kind = ErrorKind.UNKNOWN


_ERROR_TYPES: dict[ErrorKind, type[VoiceToTextError]] = {
    ErrorKind.PERMISSION_DENIED: PermissionDeniedError,
    ErrorKind.CONFIGURATION: ConfigurationError,
    ErrorKind.AUTH_FAILED: AuthFailureError,
    ErrorKind.ACCESS_FORBIDDEN: AccessForbiddenError,
    ErrorKind.NETWORK_ERROR: NetworkFailureError,
    ErrorKind.NOT_CONNECTED: NotConnectedError,
    ErrorKind.CAPTURE_STATE: CaptureStateError,
    ErrorKind.UNKNOWN: UnknownTranscriptionError,
}

# First match wins, so auth must be checked before the network phrases.
_PATTERNS: list[tuple[Pattern[str], ErrorKind]] = [
    (re.compile(r"status:\s*401|\b401\b|unauthori[sz]ed|no key or access token|access token|authentication failed", re.I), ErrorKind.AUTH_FAILED),
    (re.compile(r"status:\s*403|\b403\b|forbidden", re.I), ErrorKind.ACCESS_FORBIDDEN),
    (re.compile(r"timeout|timed out|ready state:\s*clos(?:ing|ed)|\b1006\b|network error|abnormal", re.I), ErrorKind.NETWORK_ERROR),
]


def classify_message(text: str) -> ErrorKind:
    """Map opaque transport text onto an :class:`ErrorKind`."""
    for pattern, kind in _PATTERNS:
        if pattern.search(text or ""):
            return kind
    return ErrorKind.UNKNOWN


def classify_error(text: str, prefix: str = "") -> VoiceToTextError:
    """Build the classified error for ``text``.

    Known kinds carry the canonical user message; unknown text is kept
    verbatim after ``prefix`` (or the generic message) so nothing is lost.
    """
    kind = classify_message(text)
    if kind == ErrorKind.UNKNOWN:
        lead = prefix or ERROR_MESSAGES[kind].rstrip(".")
        message = f"{lead}: {text}" if text else ERROR_MESSAGES[kind]
    else:
        message = ERROR_MESSAGES[kind]
    return _ERROR_TYPES[kind](message, detail=text)


def as_voice_error(exc: BaseException) -> VoiceToTextError:
    if isinstance(exc, VoiceToTextError):
        return exc
    return classify_error(str(exc))


@dataclass(frozen=True)
class RetryPolicy:
    """Which connect failures count as transient, and how often to retry."""

    max_attempts: int = 2
    backoff_s: float = 0.5
    patterns: tuple[str, ...] = (r"\b1006\b", r"network error", r"abnormal")

    def should_retry(self, message: str) -> bool:
        return any(re.search(p, message or "", re.I) for p in self.patterns)
