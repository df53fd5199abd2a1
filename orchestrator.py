"""Voice-to-text controller: capture + streaming session behind one workflow."""

from __future__ import annotations

import dataclasses
import logging
import threading
from typing import Callable, Optional

from clipboard import PyperclipClipboard
from errors import VoiceToTextError, as_voice_error
from events import EventChannel, Subscription
from interfaces import AlternateProber, CaptureSource, ClipboardService
from models import (
    AudioFrame,
    DiagnosticResult,
    DiagnosticsReport,
    OrchestratorState,
    StreamingConfig,
    TranscriptEvent,
)
from pcm import encode_frame
from probe import ConnectionDiagnostics, WebSocketHandshakeProber
from session import StreamingSession

logger = logging.getLogger(__name__)

NOT_INITIALIZED = "Services not initialized"

SessionFactory = Callable[[StreamingConfig], StreamingSession]
DiagnosticsFactory = Callable[[StreamingConfig], ConnectionDiagnostics]


def _default_diagnostics(config: StreamingConfig) -> ConnectionDiagnostics:
    return ConnectionDiagnostics(
        config,
        alternate_prober=WebSocketHandshakeProber(
            model=config.model,
            language=config.language,
            sample_rate=config.sample_rate,
        ),
    )


def merge_transcript(state: OrchestratorState, event: TranscriptEvent) -> OrchestratorState:
    """Interim text replaces the interim slot; final text is appended once."""
    if not event.is_final:
        return dataclasses.replace(state, interim_transcript=event.text)
    text = event.text.strip()
    transcript = f"{state.transcript} {text}" if state.transcript and text else (state.transcript or text)
    return dataclasses.replace(state, transcript=transcript, interim_transcript="")


class VoiceToTextController:
    def __init__(
        self,
        config: StreamingConfig,
        capture: CaptureSource,
        session_factory: Optional[SessionFactory] = None,
        diagnostics_factory: Optional[DiagnosticsFactory] = None,
        clipboard: Optional[ClipboardService] = None,
        validate_timeout_s: float = 4.0,
    ) -> None:
        self._config = config
        self._capture = capture
        self._session_factory = session_factory or StreamingSession
        self._diagnostics_factory = diagnostics_factory or _default_diagnostics
        self._clipboard = clipboard or PyperclipClipboard()
        self._validate_timeout_s = validate_timeout_s

        self._op_lock = threading.Lock()
        self._state_lock = threading.RLock()
        self._state = OrchestratorState()
        self.changes: EventChannel[OrchestratorState] = EventChannel("state")

        self._access_granted = False
        self._session: Optional[StreamingSession] = None
        self._diagnostics: Optional[ConnectionDiagnostics] = None
        self._subscriptions: list[Subscription] = []
        self._closed = False

    @property
    def state(self) -> OrchestratorState:
        return self._state

    def subscribe(self, listener: Callable[[OrchestratorState], None]) -> Subscription:
        return self.changes.subscribe(listener)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def initialize(self) -> None:
        with self._op_lock:
            self._closed = False
            self._update(is_processing=True, error=None)
            try:
                if not self._access_granted:
                    self._capture.request_access()
                    self._access_granted = True
                if self._session is None:
                    self._session = self._session_factory(self._config)
                    self._diagnostics = self._diagnostics_factory(self._config)
                    self._bind_session()
                if not self._state.is_ready and self._diagnostics is not None:
                    self._diagnostics.validate_api_key(self._validate_timeout_s)
            except Exception as exc:
                error = as_voice_error(exc)
                logger.error("Initialization failed: %s", error)
                self._update(error=str(error), is_processing=False, is_ready=False)
                return
            self._update(is_processing=False, is_ready=True)
            logger.info("Voice-to-text ready (model=%s, language=%s)", self._config.model, self._config.language)

    def start_recording(self) -> None:
        with self._op_lock:
            session = self._session
            if session is None or not self._state.is_ready:
                self._update(error=NOT_INITIALIZED)
                return
            if self._state.is_recording:
                logger.warning("Recording already in progress")
                return
            self._update(is_processing=True, error=None, transcript="", interim_transcript="")
            try:
                self._bind_session()
                session.connect()
                self._capture.start(self._on_frame)
            except Exception as exc:
                error = as_voice_error(exc)
                logger.error("Failed to start recording: %s", error)
                session.disconnect()
                self._update(error=str(error), is_recording=False, is_processing=False)
                return
            self._update(is_recording=True, is_processing=False)

    def stop_recording(self) -> None:
        with self._op_lock:
            session = self._session
            if session is None:
                return
            self._update(is_processing=True)
            try:
                self._capture.stop()
            except Exception as exc:
                error = as_voice_error(exc)
                logger.error("Failed to stop capture: %s", error)
                self._update(error=str(error))
            session.finish()
            session.disconnect()
            self._update(is_recording=False, is_processing=False, interim_transcript="")

    def clear_transcript(self) -> None:
        self._update(transcript="", interim_transcript="", error=None)

    def copy_to_clipboard(self) -> bool:
        text = self._state.transcript.strip()
        if not text:
            return False
        try:
            self._clipboard.copy_text(text)
        except Exception as exc:
            logger.error("Failed to copy to clipboard: %s", exc)
            self._update(error="Failed to copy to clipboard")
            return False
        return True

    def close(self) -> None:
        """Tear everything down, whatever state the controller is in."""
        with self._op_lock:
            if self._closed:
                return
            self._closed = True
            session, self._session = self._session, None
            self._diagnostics = None
            self._access_granted = False
            try:
                self._capture.cleanup()
            except Exception as exc:
                logger.error("Capture cleanup failed: %s", exc)
            if session is not None:
                session.finish()
                session.disconnect()
            self._subscriptions = []
            self._update(is_recording=False, is_processing=False, is_ready=False, interim_transcript="")

    # ------------------------------------------------------------------
    # Diagnostics
    # ------------------------------------------------------------------

    def validate_api_key(self) -> DiagnosticResult:
        diagnostics = self._diagnostics
        if diagnostics is None:
            self._update(error=NOT_INITIALIZED)
            return DiagnosticResult(success=False, message=NOT_INITIALIZED)
        self._update(is_processing=True, error=None)
        try:
            diagnostics.validate_api_key(self._validate_timeout_s)
        except VoiceToTextError as exc:
            self._update(is_processing=False, error=str(exc))
            return DiagnosticResult(success=False, message=str(exc))
        self._update(is_processing=False)
        return DiagnosticResult(success=True, message="API key accepted")

    def run_diagnostics(self, timeout_s: float = 5.0) -> DiagnosticsReport:
        diagnostics = self._diagnostics
        if diagnostics is None:
            self._update(error=NOT_INITIALIZED)
            return DiagnosticsReport(api_key=DiagnosticResult(success=False, message=NOT_INITIALIZED))
        self._update(is_processing=True, error=None)
        report = diagnostics.run(timeout_s)
        self._update(is_processing=False)
        return report

    # ------------------------------------------------------------------
    # Callbacks
    # ------------------------------------------------------------------

    def _bind_session(self) -> None:
        # disconnect() drops every listener, so rebind before each connect.
        for subscription in self._subscriptions:
            subscription.cancel()
        session = self._session
        if session is None:
            self._subscriptions = []
            return
        self._subscriptions = [
            session.on_transcript(self._handle_transcript),
            session.on_error(self._handle_error),
            session.on_close(self._handle_close),
        ]

    def _on_frame(self, frame: AudioFrame) -> None:
        session = self._session
        if session is None:
            return
        try:
            session.send(encode_frame(frame.samples))
        except VoiceToTextError as exc:
            logger.warning("Dropped audio frame: %s", exc)

    def _handle_transcript(self, event: TranscriptEvent) -> None:
        with self._state_lock:
            self._set_state(merge_transcript(self._state, event))

    def _handle_error(self, error: VoiceToTextError) -> None:
        with self._state_lock:
            halt = self._end_recording()
            self._set_state(dataclasses.replace(self._state, error=str(error)))
        if halt:
            self._halt("session error")

    def _handle_close(self, code: int) -> None:
        with self._state_lock:
            halt = self._end_recording()
        if halt:
            logger.info("Connection closed (code %s) while recording", code)
            self._halt("connection closed")

    def _end_recording(self) -> bool:
        """Clear ``is_recording`` unless a start or stop is already in charge."""
        state = self._state
        if not state.is_recording or state.is_processing:
            return False
        self._set_state(dataclasses.replace(state, is_recording=False))
        return True

    def _halt(self, cause: str) -> None:
        try:
            self._capture.stop()
        except Exception as exc:
            logger.error("Failed to stop capture after %s: %s", cause, exc)
        session = self._session
        if session is not None:
            session.disconnect()

    def _update(self, **changes: object) -> None:
        with self._state_lock:
            self._set_state(dataclasses.replace(self._state, **changes))

    def _set_state(self, state: OrchestratorState) -> None:
        if state == self._state:
            return
        self._state = state
        self.changes.emit(state)
