"""Protocol interfaces used by the streaming session and the controller."""

from __future__ import annotations

from typing import Callable, Protocol

from models import AudioFrame, DiagnosticResult, StreamingConfig, TransportEvent

FrameCallback = Callable[[AudioFrame], None]
TransportEventSink = Callable[[TransportEvent], None]


class CaptureSource(Protocol):
    def request_access(self) -> bool: ...

    def start(self, on_frame: FrameCallback) -> None: ...

    def stop(self) -> None: ...

    def cleanup(self) -> None: ...


class Transport(Protocol):
    """One duplex connection. Events arrive on the transport's own thread."""

    def open(self) -> None: ...

    def send(self, payload: bytes) -> None: ...

    def finish(self) -> None: ...

    def close(self) -> None: ...


TransportFactory = Callable[[StreamingConfig, TransportEventSink], Transport]


class AlternateProber(Protocol):
    def probe(self, api_key: str, timeout_s: float) -> DiagnosticResult: ...


class ClipboardService(Protocol):
    def copy_text(self, text: str) -> None: ...


class ConfigStore(Protocol):
    def get_api_key(self) -> str: ...

    def set_api_key(self, key: str) -> None: ...

    def get_language(self) -> str: ...

    def set_language(self, language: str) -> None: ...

    def get_model(self) -> str: ...

    def get_hotkey(self) -> str: ...

    def set_hotkey(self, hotkey: str) -> None: ...
