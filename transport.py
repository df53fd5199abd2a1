"""Duplex WebSocket transport for the live "listen" endpoint.

Audio goes out as binary messages. Results come back as JSON text messages,
which a reader thread turns into :class:`TransportEvent` objects, in the
order they were received. Handshake success is reported as the ``open``
event and the ``close`` event is always the last one delivered.
"""

from __future__ import annotations

import json
import logging
import ssl
import threading
from typing import Any, Optional, Union

from websockets.exceptions import ConnectionClosed, InvalidStatus, WebSocketException
from websockets.sync.client import ClientConnection, connect

from errors import NetworkFailureError, NotConnectedError
from interfaces import TransportEventSink
from models import StreamingConfig, TransportEvent, TransportEventKind

logger = logging.getLogger(__name__)

NORMAL_CLOSURE = 1000
ABNORMAL_CLOSURE = 1006
FINISH_MESSAGE = json.dumps({"type": "CloseStream"})


def handshake_error_message(exc: BaseException) -> str:
    """Describe a failed opening handshake in the wording the classifier knows."""
    if isinstance(exc, InvalidStatus):
        return f"{exc} (Status: {exc.response.status_code})"
    if isinstance(exc, TimeoutError):
        return f"Connection timeout: {exc}"
    if isinstance(exc, OSError):
        return f"Network error: {exc}"
    return str(exc) or exc.__class__.__name__


class WebSocketTransport:
    def __init__(
        self,
        config: StreamingConfig,
        on_event: TransportEventSink,
        open_timeout_s: float = 10.0,
        proxy: Union[str, bool, None] = True,
        ssl_context: Optional[ssl.SSLContext] = None,
    ) -> None:
        self._config = config
        self._on_event = on_event
        self._open_timeout_s = open_timeout_s
        self._proxy = proxy
        self._ssl_context = ssl_context
        self._ws: Optional[ClientConnection] = None
        self._thread: Optional[threading.Thread] = None
        self._close_requested = threading.Event()
        self._lock = threading.Lock()

    def open(self) -> None:
        if self._thread and self._thread.is_alive():
            return
        self._close_requested.clear()
        self._thread = threading.Thread(target=self._run, name="listen-reader", daemon=True)
        self._thread.start()

    def send(self, payload: bytes) -> None:
        ws = self._ws
        if ws is None:
            raise NotConnectedError()
        try:
            ws.send(payload)
        except ConnectionClosed as exc:
            raise NotConnectedError(detail=str(exc)) from exc
        except OSError as exc:
            raise NetworkFailureError(detail=str(exc)) from exc

    def finish(self) -> None:
        ws = self._ws
        if ws is None:
            return
        ws.send(FINISH_MESSAGE)

    def close(self) -> None:
        self._close_requested.set()
        with self._lock:
            ws, self._ws = self._ws, None
        if ws is not None:
            ws.close(NORMAL_CLOSURE)

    # ------------------------------------------------------------------
    # Reader thread
    # ------------------------------------------------------------------

    def _run(self) -> None:
        try:
            ws = self._connect()
        except (WebSocketException, OSError) as exc:
            message = handshake_error_message(exc)
            logger.debug("Handshake with %s failed: %s", self._config.endpoint, message)
            self._emit(TransportEvent(kind=TransportEventKind.ERROR.value, message=message))
            self._emit(
                TransportEvent(
                    kind=TransportEventKind.CLOSE.value,
                    code=ABNORMAL_CLOSURE,
                    reason=message,
                )
            )
            return

        with self._lock:
            if self._close_requested.is_set():
                ws.close(NORMAL_CLOSURE)
                return
            self._ws = ws
        self._emit(TransportEvent(kind=TransportEventKind.OPEN.value))

        try:
            for message in ws:
                self._dispatch(message)
        except ConnectionClosed:
            pass

        code = ws.close_code if ws.close_code is not None else ABNORMAL_CLOSURE
        self._emit(
            TransportEvent(
                kind=TransportEventKind.CLOSE.value,
                code=code,
                reason=ws.close_reason or "",
            )
        )

    def _connect(self) -> ClientConnection:
        kwargs: dict[str, Any] = {
            "additional_headers": {"Authorization": f"Token {self._config.api_key}"},
            "open_timeout": self._open_timeout_s,
            "proxy": self._proxy,
        }
        if self._ssl_context is not None:
            kwargs["ssl"] = self._ssl_context
        return connect(self._config.listen_url(), **kwargs)

    def _dispatch(self, raw: Union[str, bytes]) -> None:
        try:
            payload = json.loads(raw)
        except (TypeError, ValueError):
            logger.debug("Ignoring non-JSON message (%d bytes)", len(raw))
            return
        if not isinstance(payload, dict):
            return
        self._emit(parse_message(payload))

    def _emit(self, event: TransportEvent) -> None:
        self._on_event(event)


def parse_message(payload: dict[str, Any]) -> TransportEvent:
    """Translate one inbound JSON message into a transport event."""
    kind = payload.get("type", "")
    if kind == "Results":
        alternatives = (payload.get("channel") or {}).get("alternatives") or [{}]
        best = alternatives[0] or {}
        return TransportEvent(
            kind=TransportEventKind.TRANSCRIPT.value,
            text=str(best.get("transcript") or ""),
            is_final=bool(payload.get("is_final", False)),
            confidence=float(best.get("confidence") or 0.0),
        )
    if kind == "Error":
        message = payload.get("description") or payload.get("message") or payload.get("reason") or "Transcription error"
        return TransportEvent(kind=TransportEventKind.ERROR.value, message=str(message))
    return TransportEvent(kind=TransportEventKind.METADATA.value, metadata=payload)


def websocket_transport_factory(config: StreamingConfig, on_event: TransportEventSink) -> WebSocketTransport:
    return WebSocketTransport(config, on_event)
