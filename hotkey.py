"""Global record/stop toggle key based on pynput."""

from __future__ import annotations

import logging
import threading
from typing import Any, Callable, Optional

try:
    from pynput import keyboard
except Exception:  # pragma: no cover
    keyboard = None  # type: ignore

logger = logging.getLogger(__name__)


def resolve_key(name: str) -> Any:
    """Turn a stored name such as ``Key.f9`` or ``r`` into a pynput key."""
    if keyboard is None:
        raise RuntimeError("pynput is not installed")
    if name.startswith("Key."):
        try:
            return getattr(keyboard.Key, name[len("Key."):])
        except AttributeError:
            raise ValueError(f"Unknown hotkey: {name}") from None
    if len(name) != 1:
        raise ValueError(f"Unknown hotkey: {name}")
    return keyboard.KeyCode.from_char(name)


class ToggleHotkey:
    """Fires ``on_toggle`` once per physical press; auto-repeat is ignored."""

    def __init__(self, hotkey_name: str = "Key.f9") -> None:
        self.hotkey_name = hotkey_name
        self._listener: Optional[Any] = None
        self._down = threading.Event()

    def start(self, on_toggle: Callable[[], None]) -> None:
        target = resolve_key(self.hotkey_name)

        def handle_press(key: Any) -> None:
            if key != target or self._down.is_set():
                return
            self._down.set()
            try:
                on_toggle()
            except Exception:
                logger.exception("Hotkey handler failed")

        def handle_release(key: Any) -> None:
            if key == target:
                self._down.clear()

        self._listener = keyboard.Listener(on_press=handle_press, on_release=handle_release)
        self._listener.start()
        logger.info("Listening for %s", self.hotkey_name)

    def stop(self) -> None:
        listener, self._listener = self._listener, None
        if listener is not None:
            listener.stop()
