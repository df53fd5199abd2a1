"""Streaming session: one duplex connection's lifecycle.

``IDLE -> CONNECTING -> OPEN -> CLOSING -> CLOSED``, with
``CONNECTING -> CLOSED`` when an attempt fails. The session only becomes
OPEN on the transport's ``open`` event; inbound events from a transport
that has been replaced or disconnected are dropped.
"""

from __future__ import annotations

import logging
import threading
import time
from typing import Callable, Optional

from errors import (
    ConfigurationError,
    NetworkFailureError,
    NotConnectedError,
    RetryPolicy,
    UnknownTranscriptionError,
    VoiceToTextError,
    classify_error,
)
from events import EventChannel, Subscription
from interfaces import Transport, TransportFactory
from models import (
    ConnectionState,
    StreamingConfig,
    TranscriptEvent,
    TransportEvent,
    TransportEventKind,
)
from transport import ABNORMAL_CLOSURE, NORMAL_CLOSURE, websocket_transport_factory

logger = logging.getLogger(__name__)


class OpenWaiter:
    """First-outcome-wins latch for a connection attempt."""

    def __init__(self) -> None:
        self.done = threading.Event()
        self.opened = False
        self.message = ""
        self.code: Optional[int] = None
        self.reason: Optional[str] = None
        self._lock = threading.Lock()

    def succeed(self, message: str = "") -> bool:
        with self._lock:
            if self.done.is_set():
                return False
            self.opened = True
            self.message = message
            self.done.set()
            return True

    def fail(self, message: str, code: Optional[int] = None, reason: Optional[str] = None) -> bool:
        with self._lock:
            if self.done.is_set():
                return False
            self.message = message
            self.code = code
            self.reason = reason
            self.done.set()
            return True


def describe_close(code: Optional[int], reason: str) -> str:
    return f"Closed (code {code})" + (f": {reason}" if reason else "")


def close_error(code: int, reason: str) -> VoiceToTextError:
    if code == ABNORMAL_CLOSURE:
        return NetworkFailureError(
            "Connection closed abnormally (1006). Possible network/firewall/TLS/proxy issue "
            "blocking WebSocket connections.",
            detail=reason,
        )
    return classify_error(f"Connection closed (code {code})" + (f": {reason}" if reason else ""))


class StreamingSession:
    def __init__(
        self,
        config: StreamingConfig,
        transport_factory: Optional[TransportFactory] = None,
        connect_timeout_s: float = 10.0,
        finish_grace_s: float = 0.5,
        retry_policy: Optional[RetryPolicy] = None,
    ) -> None:
        if not config.api_key or not config.api_key.strip():
            raise ConfigurationError("API key is required.")
        self.config = config
        self._transport_factory = transport_factory or websocket_transport_factory
        self._connect_timeout_s = connect_timeout_s
        self._finish_grace_s = finish_grace_s
        self._retry_policy = retry_policy or RetryPolicy()

        self.transcripts: EventChannel[TranscriptEvent] = EventChannel("transcript")
        self.errors: EventChannel[VoiceToTextError] = EventChannel("error")
        self.closed: EventChannel[int] = EventChannel("close")

        self._lock = threading.RLock()
        self._state = ConnectionState.IDLE
        self._transport: Optional[Transport] = None
        self._waiter: Optional[OpenWaiter] = None
        self._generation = 0

    @property
    def state(self) -> ConnectionState:
        return self._state

    def on_transcript(self, listener: Callable[[TranscriptEvent], None]) -> Subscription:
        return self.transcripts.subscribe(listener)

    def on_error(self, listener: Callable[[VoiceToTextError], None]) -> Subscription:
        return self.errors.subscribe(listener)

    def on_close(self, listener: Callable[[int], None]) -> Subscription:
        """Called with the close code when an open connection ends."""
        return self.closed.subscribe(listener)

    def connect(self) -> None:
        with self._lock:
            if self._state == ConnectionState.OPEN:
                logger.warning("Already connected to transcription service")
                return
            if self._state == ConnectionState.CONNECTING:
                raise UnknownTranscriptionError("A connection attempt is already in progress.")
            stale = self._detach_transport() if self._state == ConnectionState.CLOSING else None
        if stale is not None:
            _close_quietly(stale)

        policy = self._retry_policy
        last_message = ""
        for attempt in range(1, policy.max_attempts + 1):
            opened, last_message = self._open_once()
            if opened:
                logger.info("Connected to %s", self.config.endpoint)
                return
            if attempt < policy.max_attempts and policy.should_retry(last_message):
                logger.warning(
                    "Connection attempt %d failed (%s), retrying in %.1fs",
                    attempt,
                    last_message,
                    policy.backoff_s,
                )
                time.sleep(policy.backoff_s)
                continue
            break

        error = classify_error(last_message)
        logger.error("Failed to connect to transcription service: %s", last_message)
        self.errors.emit(error)
        raise type(error)(
            f"Failed to connect to transcription service: {last_message or error}",
            detail=last_message,
        )

    def send(self, frame: bytes) -> None:
        with self._lock:
            transport = self._transport if self._state == ConnectionState.OPEN else None
        if transport is None:
            raise NotConnectedError()
        transport.send(frame)

    def finish(self) -> None:
        with self._lock:
            transport = self._transport
            if transport is None or self._state not in (ConnectionState.OPEN, ConnectionState.CLOSING):
                return
            self._state = ConnectionState.CLOSING
        try:
            transport.finish()
        except Exception as exc:
            logger.error("Error finishing transcription: %s", exc)
            return
        time.sleep(self._finish_grace_s)

    def disconnect(self) -> None:
        with self._lock:
            transport = self._detach_transport()
            self._state = ConnectionState.CLOSED
        if transport is not None:
            _close_quietly(transport)
        self.transcripts.clear()
        self.errors.clear()
        self.closed.clear()

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _open_once(self) -> tuple[bool, str]:
        waiter = OpenWaiter()
        with self._lock:
            self._generation += 1
            generation = self._generation
            self._waiter = waiter
            self._state = ConnectionState.CONNECTING
            try:
                transport = self._transport_factory(
                    self.config, lambda event: self._handle_event(generation, event)
                )
            except Exception as exc:
                self._waiter = None
                self._state = ConnectionState.CLOSED
                return False, str(exc)
            self._transport = transport

        try:
            transport.open()
        except Exception as exc:
            waiter.fail(str(exc))
        if not waiter.done.wait(self._connect_timeout_s):
            waiter.fail("Connection timeout")

        with self._lock:
            if waiter.opened and generation == self._generation:
                self._waiter = None
                return True, ""
            if generation == self._generation:
                self._waiter = None
                self._transport = None
                self._state = ConnectionState.CLOSED
        _close_quietly(transport)
        return False, waiter.message

    def _handle_event(self, generation: int, event: TransportEvent) -> None:
        kind = event.kind
        with self._lock:
            if generation != self._generation:
                return
            state = self._state
            if state == ConnectionState.CONNECTING:
                waiter = self._waiter
                if waiter is None:
                    return
                if kind == TransportEventKind.OPEN.value:
                    if waiter.succeed():
                        self._state = ConnectionState.OPEN
                elif kind == TransportEventKind.ERROR.value:
                    waiter.fail(event.message or "Transcription error")
                elif kind == TransportEventKind.CLOSE.value:
                    waiter.fail(describe_close(event.code, event.reason), event.code, event.reason)
                return
            if state not in (ConnectionState.OPEN, ConnectionState.CLOSING):
                return
            if kind == TransportEventKind.CLOSE.value:
                self._transport = None
                self._state = ConnectionState.CLOSED

        if kind == TransportEventKind.TRANSCRIPT.value:
            if event.text:
                self.transcripts.emit(
                    TranscriptEvent(text=event.text, is_final=event.is_final, confidence=event.confidence)
                )
        elif kind == TransportEventKind.METADATA.value:
            logger.debug("Metadata: %s", event.metadata)
        elif kind == TransportEventKind.ERROR.value:
            error = classify_error(event.message)
            logger.error("Transcription error: %s", event.message)
            self.errors.emit(error)
        elif kind == TransportEventKind.CLOSE.value:
            code = event.code if event.code is not None else ABNORMAL_CLOSURE
            logger.info("Connection closed (code %s) %s", code, event.reason)
            if code != NORMAL_CLOSURE:
                self.errors.emit(close_error(code, event.reason))
            self.closed.emit(code)

    def _detach_transport(self) -> Optional[Transport]:
        transport, self._transport = self._transport, None
        waiter, self._waiter = self._waiter, None
        self._generation += 1
        if waiter is not None:
            waiter.fail("Disconnected")
        return transport


def _close_quietly(transport: Transport) -> None:
    try:
        transport.close()
    except Exception as exc:
        logger.warning("Error closing transport: %s", exc)
