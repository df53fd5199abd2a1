from __future__ import annotations

from unittest.mock import MagicMock, patch

import pytest

from hotkey import ToggleHotkey, resolve_key


def _start(mock_keyboard: MagicMock, hotkey: ToggleHotkey) -> tuple[list[int], object, object]:
    toggles: list[int] = []
    hotkey.start(on_toggle=lambda: toggles.append(1))
    kwargs = mock_keyboard.Listener.call_args.kwargs
    return toggles, kwargs["on_press"], kwargs["on_release"]


@patch("hotkey.keyboard")
def test_resolve_named_and_character_keys(mock_keyboard: MagicMock) -> None:
    assert resolve_key("Key.f9") is mock_keyboard.Key.f9

    resolve_key("r")
    mock_keyboard.KeyCode.from_char.assert_called_once_with("r")


@patch("hotkey.keyboard")
def test_resolve_rejects_unknown_names(mock_keyboard: MagicMock) -> None:
    mock_keyboard.Key = object()

    with pytest.raises(ValueError, match="Unknown hotkey"):
        resolve_key("Key.nope")
    with pytest.raises(ValueError, match="Unknown hotkey"):
        resolve_key("ctrl+r")


@patch("hotkey.keyboard")
def test_toggle_fires_once_per_press(mock_keyboard: MagicMock) -> None:
    toggles, on_press, on_release = _start(mock_keyboard, ToggleHotkey("Key.f9"))
    f9 = mock_keyboard.Key.f9

    on_press(f9)
    on_press(f9)  # auto-repeat
    on_release(f9)
    on_press(f9)

    assert len(toggles) == 2
    mock_keyboard.Listener.return_value.start.assert_called_once()


@patch("hotkey.keyboard")
def test_other_keys_are_ignored(mock_keyboard: MagicMock) -> None:
    toggles, on_press, on_release = _start(mock_keyboard, ToggleHotkey("Key.f9"))

    on_press(mock_keyboard.Key.f8)
    on_release(mock_keyboard.Key.f8)

    assert toggles == []


@patch("hotkey.keyboard")
def test_failing_handler_does_not_break_listener(mock_keyboard: MagicMock) -> None:
    hotkey = ToggleHotkey("Key.f9")

    def boom() -> None:
        raise RuntimeError("handler bug")

    hotkey.start(on_toggle=boom)
    on_press = mock_keyboard.Listener.call_args.kwargs["on_press"]

    on_press(mock_keyboard.Key.f9)


@patch("hotkey.keyboard")
def test_stop_stops_listener_once(mock_keyboard: MagicMock) -> None:
    hotkey = ToggleHotkey()
    _start(mock_keyboard, hotkey)

    hotkey.stop()
    hotkey.stop()

    mock_keyboard.Listener.return_value.stop.assert_called_once()


@patch("hotkey.keyboard", None)
def test_start_without_pynput() -> None:
    with pytest.raises(RuntimeError, match="pynput is not installed"):
        ToggleHotkey().start(on_toggle=lambda: None)
