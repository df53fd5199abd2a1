"""Floating window showing the running transcript."""

from __future__ import annotations

try:
    from PySide6.QtCore import Qt
    from PySide6.QtWidgets import QApplication, QLabel, QVBoxLayout, QWidget
except Exception:  # pragma: no cover
    Qt = None  # type: ignore
    QApplication = None  # type: ignore
    QLabel = object  # type: ignore
    QWidget = object  # type: ignore
    QVBoxLayout = object  # type: ignore

_PANEL = "background: rgba(0,0,0,190); border-radius: 12px; padding: 12px 16px;"
FINAL_STYLE = "color: white; font-size: 18px;" + _PANEL
INTERIM_STYLE = "color: #AAAAAA; font-size: 16px; font-style: italic; padding: 0 16px 12px 16px;"
STATUS_STYLE = "color: #8FD3FF; font-size: 13px; padding: 4px 16px;"
ERROR_STYLE = "color: #FF6B6B; font-size: 13px; padding: 4px 16px;"


class TranscriptOverlay(QWidget):
    def __init__(self, max_chars: int = 400) -> None:
        if Qt is None:
            raise RuntimeError("PySide6 is not installed")
        super().__init__()
        self.setWindowFlags(Qt.WindowStaysOnTopHint | Qt.FramelessWindowHint | Qt.Tool)
        self.setAttribute(Qt.WA_TranslucentBackground, True)
        self.setFixedWidth(640)
        self._max_chars = max_chars

        self._status = QLabel("")
        self._status.setStyleSheet(STATUS_STYLE)
        self._final = QLabel("")
        self._final.setWordWrap(True)
        self._final.setStyleSheet(FINAL_STYLE)
        self._interim = QLabel("")
        self._interim.setWordWrap(True)
        self._interim.setStyleSheet(INTERIM_STYLE)

        layout = QVBoxLayout()
        layout.setContentsMargins(0, 0, 0, 0)
        layout.addWidget(self._status)
        layout.addWidget(self._final)
        layout.addWidget(self._interim)
        self.setLayout(layout)

    def show_transcript(self, transcript: str, interim: str) -> None:
        # Only the tail of a long transcript fits on screen.
        tail = transcript[-self._max_chars :]
        if len(transcript) > self._max_chars:
            tail = "…" + tail.split(" ", 1)[-1]
        self._final.setText(tail)
        self._final.setVisible(bool(tail))
        self._interim.setText(interim)
        self._interim.setVisible(bool(interim))
        self._place()

    def show_status(self, text: str) -> None:
        self._status.setStyleSheet(STATUS_STYLE)
        self._status.setText(text)
        self._place()

    def show_error(self, text: str) -> None:
        self._status.setStyleSheet(ERROR_STYLE)
        self._status.setText(f"⚠️ {text}")
        self._place()

    def _place(self) -> None:
        if QApplication is not None:
            screen = QApplication.primaryScreen()
            if screen is not None:
                geom = screen.availableGeometry()
                self.adjustSize()
                self.move(geom.x() + (geom.width() - self.width()) // 2, geom.y() + 40)
        self.show()
