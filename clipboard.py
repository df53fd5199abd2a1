"""Clipboard copy for the finished transcript."""

from __future__ import annotations

try:
    import pyperclip
except Exception:  # pragma: no cover
    pyperclip = None  # type: ignore


class PyperclipClipboard:
    def copy_text(self, text: str) -> None:
        if pyperclip is None:
            raise RuntimeError("pyperclip is not installed")
        pyperclip.copy(text)
