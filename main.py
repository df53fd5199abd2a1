"""Application entrypoint."""

from __future__ import annotations

import logging
import sys
import threading
from typing import Callable

from capture import SoundDeviceCaptureSource
from config import JsonConfigStore, load_streaming_config, setup_logging
from hotkey import ToggleHotkey
from models import DiagnosticsReport, OrchestratorState
from orchestrator import VoiceToTextController
from overlay import TranscriptOverlay

try:
    from PySide6.QtCore import QObject, QSize, Qt, Signal
    from PySide6.QtGui import QAction, QColor, QIcon, QPainter, QPen, QPixmap
    from PySide6.QtWidgets import QApplication, QInputDialog, QMenu, QMessageBox, QSystemTrayIcon
except Exception as exc:  # pragma: no cover
    raise SystemExit(f"PySide6 is required to run the desktop app: {exc}")

logger = logging.getLogger(__name__)


def _status_icon(color: str, ring: bool = False, size: int = 22) -> QIcon:
    """Tray icon: a filled dot, with an outer ring while the microphone is live."""
    pixmap = QPixmap(QSize(size, size))
    pixmap.fill(Qt.transparent)
    painter = QPainter(pixmap)
    painter.setRenderHint(QPainter.Antialiasing, True)
    painter.setPen(Qt.NoPen)
    painter.setBrush(QColor(color))
    inset = 6 if ring else 3
    painter.drawEllipse(inset, inset, size - 2 * inset, size - 2 * inset)
    if ring:
        painter.setBrush(Qt.NoBrush)
        painter.setPen(QPen(QColor(color), 2))
        painter.drawEllipse(2, 2, size - 4, size - 4)
    painter.end()
    return QIcon(pixmap)


ICON_IDLE = "#888888"
ICON_READY = "#44AA66"
ICON_RECORDING = "#FF4444"
ICON_ERROR = "#FF8800"


class UIBridge(QObject):
    state_signal = Signal(object)
    report_signal = Signal(object)


class App:
    def __init__(self) -> None:
        self.app = QApplication(sys.argv)
        self.app.setQuitOnLastWindowClosed(False)
        self.config_store = JsonConfigStore()
        setup_logging(self.config_store.get_log_level())

        self.overlay = TranscriptOverlay()
        self.ui = UIBridge()
        self.ui.state_signal.connect(self._on_state_ui)
        self.ui.report_signal.connect(self._on_report_ui)

        self.controller = self._build_controller()
        self.hotkey = ToggleHotkey(hotkey_name=self.config_store.get_hotkey())

        self.tray = QSystemTrayIcon()
        self.tray.setIcon(_status_icon(ICON_IDLE))
        self.tray.setToolTip("Voice to Text: starting")
        self._setup_menu()
        self.tray.show()

    def _build_controller(self) -> VoiceToTextController:
        controller = VoiceToTextController(
            config=load_streaming_config(self.config_store),
            capture=SoundDeviceCaptureSource(),
        )
        controller.subscribe(self.ui.state_signal.emit)
        return controller

    def _setup_menu(self) -> None:
        menu = QMenu()
        entries: list[tuple[str, Callable[[], None]]] = [
            ("Start / Stop Recording", self.toggle_recording),
            ("Copy Transcript", self.copy_transcript),
            ("Clear Transcript", lambda: self.controller.clear_transcript()),
            ("Run Diagnostics", self._run_diagnostics),
            ("Set API Key", self._set_api_key),
            ("Set Language", self._set_language),
        ]
        for label, handler in entries:
            action = QAction(label, menu)
            action.triggered.connect(handler)
            menu.addAction(action)

        menu.addSeparator()
        quit_action = QAction("Quit", menu)
        quit_action.triggered.connect(self.quit)
        menu.addAction(quit_action)
        self.tray.setContextMenu(menu)

    # ------------------------------------------------------------------
    # Actions (blocking controller calls run on worker threads)
    # ------------------------------------------------------------------

    def _in_background(self, target: Callable[[], object]) -> None:
        threading.Thread(target=target, daemon=True).start()

    def toggle_recording(self) -> None:
        if self.controller.state.is_processing:
            return
        if self.controller.state.is_recording:
            self._in_background(self.controller.stop_recording)
        else:
            self._in_background(self.controller.start_recording)

    def copy_transcript(self) -> None:
        if self.controller.copy_to_clipboard():
            self.overlay.show_status("Transcript copied")

    def _run_diagnostics(self) -> None:
        self.overlay.show_status("Running diagnostics...")
        self._in_background(lambda: self.ui.report_signal.emit(self.controller.run_diagnostics()))

    def _set_api_key(self) -> None:
        value, ok = QInputDialog.getText(None, "API Key", "Speech service API key")
        if not ok or not value.strip():
            return
        self.config_store.set_api_key(value)
        self._replace_controller()

    def _set_language(self) -> None:
        value, ok = QInputDialog.getText(None, "Language", "Language tag, e.g. en-US")
        if not ok or not value.strip():
            return
        self.config_store.set_language(value)
        self._replace_controller()

    def _replace_controller(self) -> None:
        old = self.controller
        old.changes.clear()
        self.controller = self._build_controller()
        self._in_background(old.close)
        self._in_background(self.controller.initialize)

    # ------------------------------------------------------------------
    # UI thread handlers
    # ------------------------------------------------------------------

    def _on_state_ui(self, state: OrchestratorState) -> None:
        self.overlay.show_transcript(state.transcript, state.interim_transcript)
        if state.error:
            self.tray.setIcon(_status_icon(ICON_ERROR))
            self.tray.setToolTip(f"Voice to Text: {state.error}")
            self.overlay.show_error(state.error)
        elif state.is_recording:
            self.tray.setIcon(_status_icon(ICON_RECORDING, ring=True))
            self.tray.setToolTip("Voice to Text: recording")
            self.overlay.show_status("🎙️ Listening...")
        elif state.is_processing:
            self.tray.setToolTip("Voice to Text: processing")
            self.overlay.show_status("Processing...")
        elif state.is_ready:
            self.tray.setIcon(_status_icon(ICON_READY))
            self.tray.setToolTip("Voice to Text: ready")
            self.overlay.show_status("Ready")

    def _on_report_ui(self, report: DiagnosticsReport) -> None:
        lines = [f"API key: {'OK' if report.api_key.success else report.api_key.message}"]
        for label, result in (("WebSocket", report.websocket), ("Direct WebSocket", report.native_websocket)):
            if result is not None:
                lines.append(f"{label}: {'OK' if result.success else result.message}")
        QMessageBox.information(None, "Diagnostics", "\n".join(lines))

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def run(self) -> int:
        self._in_background(self.controller.initialize)
        try:
            self.hotkey.start(on_toggle=self.toggle_recording)
        except Exception as exc:
            logger.warning("Hotkey disabled: %s", exc)
            self.overlay.show_error(f"Hotkey disabled: {exc}")
        return self.app.exec()

    def quit(self) -> None:
        self.hotkey.stop()
        self.controller.close()
        self.app.quit()


def main() -> int:
    app = App()
    return app.run()


if __name__ == "__main__":
    raise SystemExit(main())
