"""Connection diagnostics.

A probe is a throwaway connection used only to find out whether the
endpoint accepts the credential. The primary probe goes through the same
transport as real sessions, and therefore through the same proxy and TLS
settings. When it fails, :class:`WebSocketHandshakeProber` repeats the
handshake directly, with the system proxy disabled and a fresh TLS context,
so that an intercepting proxy is not misreported as a bad API key.
"""

from __future__ import annotations

import logging
import ssl
from typing import Optional
from urllib.parse import urlencode

from websockets.exceptions import InvalidStatus, WebSocketException
from websockets.sync.client import connect

from errors import (
    ErrorKind,
    NetworkFailureError,
    UnknownTranscriptionError,
    VoiceToTextError,
    classify_error,
    classify_message,
)
from interfaces import AlternateProber, TransportFactory
from models import (
    DEFAULT_ENDPOINT,
    DEFAULT_LANGUAGE,
    DEFAULT_MODEL,
    SAMPLE_RATE,
    DiagnosticResult,
    DiagnosticsReport,
    StreamingConfig,
    TransportEvent,
    TransportEventKind,
)
from session import OpenWaiter, describe_close
from transport import ABNORMAL_CLOSURE, websocket_transport_factory

logger = logging.getLogger(__name__)


class WebSocketHandshakeProber:
    """Direct handshake against the listen endpoint, bypassing proxy settings."""

    def __init__(
        self,
        endpoint: str = DEFAULT_ENDPOINT,
        model: str = DEFAULT_MODEL,
        language: str = DEFAULT_LANGUAGE,
        sample_rate: int = SAMPLE_RATE,
    ) -> None:
        self._endpoint = endpoint
        self._model = model
        self._language = language
        self._sample_rate = sample_rate

    def probe(self, api_key: str, timeout_s: float) -> DiagnosticResult:
        query = urlencode(
            {
                "token": api_key,
                "model": self._model,
                "language": self._language,
                "encoding": "linear16",
                "sample_rate": str(self._sample_rate),
            }
        )
        logger.info("Direct probe: connecting to %s (timeout %.1fs)", self._endpoint, timeout_s)
        try:
            ws = connect(
                f"{self._endpoint}?{query}",
                open_timeout=timeout_s,
                proxy=None,
                ssl=ssl.create_default_context(),
            )
        except TimeoutError:
            logger.info("Direct probe timed out after %.1fs", timeout_s)
            return DiagnosticResult(
                success=False,
                message=f"WebSocket probe timed out ({int(timeout_s * 1000)}ms)",
                code=ABNORMAL_CLOSURE,
                reason="Timeout",
            )
        except InvalidStatus as exc:
            status = exc.response.status_code
            logger.info("Direct probe rejected: HTTP %d", status)
            if status == 401:
                message = "Authentication failed (401 Unauthorized). Check your API key."
            elif status == 403:
                message = "Permission denied (403 Forbidden). Check your account and plan."
            else:
                message = f"WebSocket connection failed: {exc}"
            return DiagnosticResult(success=False, message=message)
        except (WebSocketException, OSError) as exc:
            logger.info("Direct probe failed: %s", exc)
            return DiagnosticResult(success=False, message=f"WebSocket connection failed: {exc}")

        ws.close()
        logger.info("Direct probe: WebSocket opened successfully")
        return DiagnosticResult(success=True, message="WebSocket connection established successfully")


class ConnectionDiagnostics:
    def __init__(
        self,
        config: StreamingConfig,
        transport_factory: Optional[TransportFactory] = None,
        alternate_prober: Optional[AlternateProber] = None,
    ) -> None:
        self._config = config
        self._transport_factory = transport_factory or websocket_transport_factory
        self._alternate_prober = alternate_prober

    def probe(self, timeout_s: float = 5.0) -> DiagnosticResult:
        """Open a throwaway connection and report how the attempt ended."""
        waiter = OpenWaiter()

        def on_event(event: TransportEvent) -> None:
            if event.kind == TransportEventKind.OPEN.value:
                waiter.succeed("WebSocket opened successfully")
            elif event.kind == TransportEventKind.ERROR.value:
                waiter.fail(f"Error: {event.message}")
            elif event.kind == TransportEventKind.CLOSE.value:
                waiter.fail(describe_close(event.code, event.reason), event.code, event.reason or None)

        try:
            transport = self._transport_factory(self._config, on_event)
        except Exception as exc:
            return DiagnosticResult(success=False, message=f"Probe failed: {exc}")

        try:
            transport.open()
            if not waiter.done.wait(timeout_s):
                waiter.fail("WebSocket probe timed out")
        except Exception as exc:
            waiter.fail(f"Probe failed: {exc}")
        finally:
            try:
                transport.close()
            except Exception as exc:
                logger.warning("Error closing probe connection: %s", exc)

        return DiagnosticResult(
            success=waiter.opened,
            message=waiter.message,
            code=waiter.code,
            reason=waiter.reason,
        )

    def probe_alternate(self, timeout_s: float = 5.0) -> DiagnosticResult:
        if self._alternate_prober is None:
            return DiagnosticResult(success=False, message="Native probe unavailable")
        try:
            return self._alternate_prober.probe(self._config.api_key, timeout_s)
        except Exception as exc:
            return DiagnosticResult(success=False, message=f"Native probe failed: {exc}")

    def validate_api_key(self, timeout_s: float = 4.0) -> None:
        """Raise a classified error unless one of the two probes connects."""
        primary = self.probe(timeout_s)
        if primary.success:
            return

        logger.warning("Primary probe failed (%s); attempting direct probe", primary.message)
        alternate = self.probe_alternate(timeout_s)
        if alternate.success:
            logger.info("Direct probe succeeded; credential accepted")
            return

        message = primary.message
        if self._alternate_prober is not None and alternate.message:
            message = alternate.message
        kind = classify_message(message)
        if kind in (ErrorKind.AUTH_FAILED, ErrorKind.ACCESS_FORBIDDEN):
            raise classify_error(message)
        if kind == ErrorKind.NETWORK_ERROR or primary.code == ABNORMAL_CLOSURE:
            raise NetworkFailureError(
                f"WebSocket connection failed (possible network/firewall/proxy issue): {message}",
                detail=message,
            )
        raise UnknownTranscriptionError(f"API key validation failed: {message}", detail=message)

    def run(self, timeout_s: float = 5.0) -> DiagnosticsReport:
        try:
            self.validate_api_key(timeout_s)
            api_key = DiagnosticResult(success=True, message="API key accepted")
        except VoiceToTextError as exc:
            api_key = DiagnosticResult(success=False, message=str(exc))
        return DiagnosticsReport(
            api_key=api_key,
            websocket=self.probe(timeout_s),
            native_websocket=self.probe_alternate(timeout_s),
        )
