"""Core data models for the app."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional
from urllib.parse import urlencode

import numpy as np

SAMPLE_RATE = 16000
CHANNELS = 1
FRAME_SIZE = 4096  # ~256 ms at 16 kHz

DEFAULT_ENDPOINT = "wss://api.deepgram.com/v1/listen"
DEFAULT_MODEL = "nova-2"
DEFAULT_LANGUAGE = "en-US"


class ConnectionState(str, Enum):
    IDLE = "IDLE"
    CONNECTING = "CONNECTING"
    OPEN = "OPEN"
    CLOSING = "CLOSING"
    CLOSED = "CLOSED"


class TransportEventKind(str, Enum):
    OPEN = "open"
    TRANSCRIPT = "transcript"
    METADATA = "metadata"
    ERROR = "error"
    CLOSE = "close"


@dataclass
class AudioFrame:
    samples: np.ndarray
    sample_rate: int = SAMPLE_RATE
    channels: int = CHANNELS
    timestamp_ms: int = 0


@dataclass(frozen=True)
class TranscriptEvent:
    text: str
    is_final: bool
    confidence: float = 0.0


@dataclass
class TransportEvent:
    kind: str
    text: str = ""
    is_final: bool = False
    confidence: float = 0.0
    message: str = ""
    code: Optional[int] = None
    reason: str = ""
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class DiagnosticResult:
    success: bool
    message: str
    code: Optional[int] = None
    reason: Optional[str] = None


@dataclass(frozen=True)
class DiagnosticsReport:
    api_key: DiagnosticResult
    websocket: Optional[DiagnosticResult] = None
    native_websocket: Optional[DiagnosticResult] = None


@dataclass(frozen=True)
class StreamingConfig:
    """Parameters agreed with the listen endpoint at handshake time."""

    api_key: str
    language: str = DEFAULT_LANGUAGE
    model: str = DEFAULT_MODEL
    punctuate: bool = True
    interim_results: bool = True
    smart_format: bool = True
    encoding: str = "linear16"
    sample_rate: int = SAMPLE_RATE
    channels: int = CHANNELS
    endpoint: str = DEFAULT_ENDPOINT

    def query_params(self) -> dict[str, str]:
        return {
            "model": self.model,
            "language": self.language,
            "punctuate": _flag(self.punctuate),
            "interim_results": _flag(self.interim_results),
            "smart_format": _flag(self.smart_format),
            "encoding": self.encoding,
            "sample_rate": str(self.sample_rate),
            "channels": str(self.channels),
        }

    def listen_url(self) -> str:
        return f"{self.endpoint}?{urlencode(self.query_params())}"


@dataclass(frozen=True)
class OrchestratorState:
    is_recording: bool = False
    is_processing: bool = False
    transcript: str = ""
    interim_transcript: str = ""
    error: Optional[str] = None
    is_ready: bool = False


def _flag(value: bool) -> str:
    return "true" if value else "false"
