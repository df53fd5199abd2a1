"""Tests for the WebSocket transport and inbound message parsing."""

from __future__ import annotations

import json
import threading
from unittest.mock import MagicMock, patch

import pytest
from websockets.datastructures import Headers
from websockets.exceptions import ConnectionClosed, InvalidStatus
from websockets.http11 import Response

from errors import NetworkFailureError, NotConnectedError
from models import StreamingConfig, TransportEvent, TransportEventKind
from transport import (
    FINISH_MESSAGE,
    WebSocketTransport,
    handshake_error_message,
    parse_message,
)

CONFIG = StreamingConfig(api_key="secret", endpoint="wss://example.test/v1/listen")


def _results(text: str, is_final: bool, confidence: float = 0.9) -> str:
    return json.dumps(
        {
            "type": "Results",
            "is_final": is_final,
            "channel": {"alternatives": [{"transcript": text, "confidence": confidence}]},
        }
    )


class _Recorder:
    """Collects transport events and signals when the close event arrives."""

    def __init__(self) -> None:
        self.events: list[TransportEvent] = []
        self.closed = threading.Event()

    def __call__(self, event: TransportEvent) -> None:
        self.events.append(event)
        if event.kind == TransportEventKind.CLOSE.value:
            self.closed.set()

    @property
    def kinds(self) -> list[str]:
        return [e.kind for e in self.events]


def _fake_ws(messages: list, close_code: int | None = 1000, close_reason: str = "") -> MagicMock:
    ws = MagicMock()
    ws.__iter__.return_value = iter(messages)
    ws.close_code = close_code
    ws.close_reason = close_reason
    return ws


def _run(ws_or_error) -> tuple[WebSocketTransport, _Recorder, MagicMock]:  # noqa: ANN001
    recorder = _Recorder()
    transport = WebSocketTransport(CONFIG, recorder, open_timeout_s=3.0)
    with patch("transport.connect") as mock_connect:
        if isinstance(ws_or_error, BaseException):
            mock_connect.side_effect = ws_or_error
        else:
            mock_connect.return_value = ws_or_error
        transport.open()
        assert recorder.closed.wait(2.0)
    return transport, recorder, mock_connect


# ---------------------------------------------------------------
# parse_message
# ---------------------------------------------------------------

def test_parse_results_message() -> None:
    event = parse_message(json.loads(_results("hello world", True, 0.98)))

    assert event.kind == TransportEventKind.TRANSCRIPT.value
    assert event.text == "hello world"
    assert event.is_final is True
    assert event.confidence == pytest.approx(0.98)


def test_parse_results_without_alternatives() -> None:
    event = parse_message({"type": "Results", "channel": {"alternatives": []}})

    assert event.kind == TransportEventKind.TRANSCRIPT.value
    assert event.text == ""
    assert event.is_final is False


def test_parse_error_message() -> None:
    event = parse_message({"type": "Error", "description": "Invalid model"})

    assert event.kind == TransportEventKind.ERROR.value
    assert event.message == "Invalid model"


def test_parse_other_messages_as_metadata() -> None:
    payload = {"type": "Metadata", "request_id": "abc"}

    event = parse_message(payload)

    assert event.kind == TransportEventKind.METADATA.value
    assert event.metadata == payload


# ---------------------------------------------------------------
# handshake_error_message
# ---------------------------------------------------------------

def test_handshake_error_message_for_rejected_status() -> None:
    exc = InvalidStatus(Response(401, "Unauthorized", Headers(), b""))

    assert handshake_error_message(exc) == "server rejected WebSocket connection: HTTP 401 (Status: 401)"


def test_handshake_error_message_for_timeout_and_socket_errors() -> None:
    assert handshake_error_message(TimeoutError("timed out")) == "Connection timeout: timed out"
    assert handshake_error_message(ConnectionRefusedError("refused")) == "Network error: refused"


# ---------------------------------------------------------------
# WebSocketTransport
# ---------------------------------------------------------------

def test_transport_delivers_events_in_order() -> None:
    ws = _fake_ws(
        [
            json.dumps({"type": "Metadata", "request_id": "abc"}),
            _results("hel", False),
            b"\x00\x01",
            _results("hello", True),
        ]
    )

    _, recorder, _ = _run(ws)

    assert recorder.kinds == ["open", "metadata", "transcript", "transcript", "close"]
    assert [e.text for e in recorder.events if e.kind == "transcript"] == ["hel", "hello"]
    assert recorder.events[-1].code == 1000


def test_transport_sends_credential_and_parameters() -> None:
    _, _, mock_connect = _run(_fake_ws([]))

    call = mock_connect.call_args
    assert call.args[0] == CONFIG.listen_url()
    assert "sample_rate=16000" in call.args[0]
    assert "interim_results=true" in call.args[0]
    assert call.kwargs["additional_headers"] == {"Authorization": "Token secret"}
    assert call.kwargs["open_timeout"] == 3.0


def test_transport_missing_close_code_is_abnormal() -> None:
    _, recorder, _ = _run(_fake_ws([], close_code=None))

    assert recorder.events[-1].code == 1006


def test_transport_rejected_handshake_reports_error_then_close() -> None:
    _, recorder, _ = _run(InvalidStatus(Response(401, "Unauthorized", Headers(), b"")))

    assert recorder.kinds == ["error", "close"]
    assert "Status: 401" in recorder.events[0].message
    assert recorder.events[1].code == 1006


def test_transport_network_failure_reports_error_then_close() -> None:
    _, recorder, _ = _run(ConnectionRefusedError("refused"))

    assert recorder.kinds == ["error", "close"]
    assert recorder.events[0].message == "Network error: refused"


def test_send_before_open_is_rejected() -> None:
    transport = WebSocketTransport(CONFIG, lambda event: None)

    with pytest.raises(NotConnectedError):
        transport.send(b"\x00\x00")


def test_send_finish_and_close_use_the_connection() -> None:
    ws = _fake_ws([])
    transport, _, _ = _run(ws)

    transport.send(b"\x01\x02")
    transport.finish()
    transport.close()

    assert ws.send.call_args_list[0].args == (b"\x01\x02",)
    assert ws.send.call_args_list[1].args == (FINISH_MESSAGE,)
    assert json.loads(FINISH_MESSAGE) == {"type": "CloseStream"}
    ws.close.assert_called_once_with(1000)
    with pytest.raises(NotConnectedError):
        transport.send(b"\x00\x00")


def test_send_errors_are_translated() -> None:
    ws = _fake_ws([])
    transport, _, _ = _run(ws)

    ws.send.side_effect = ConnectionClosed(None, None)
    with pytest.raises(NotConnectedError):
        transport.send(b"\x00\x00")

    ws.send.side_effect = BrokenPipeError("broken pipe")
    with pytest.raises(NetworkFailureError):
        transport.send(b"\x00\x00")
