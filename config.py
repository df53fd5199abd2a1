"""Simple JSON-based config store and logging setup."""

from __future__ import annotations

import json
import logging
import os
import sys
from pathlib import Path
from typing import Any

from models import DEFAULT_LANGUAGE, DEFAULT_MODEL, StreamingConfig

API_KEY_ENV = "DEEPGRAM_API_KEY"
LOG_LEVEL_ENV = "VOICE_TO_TEXT_LOG_LEVEL"
LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


class JsonConfigStore:
    def __init__(self, path: Path | None = None) -> None:
        self._path = path or Path.home() / ".config" / "voice_to_text" / "config.json"
        self._path.parent.mkdir(parents=True, exist_ok=True)

    def get_api_key(self) -> str:
        key = str(self._read_all().get("api_key", ""))
        return key or os.getenv(API_KEY_ENV, "")

    def set_api_key(self, key: str) -> None:
        self._set("api_key", key.strip())

    def get_language(self) -> str:
        return str(self._read_all().get("language", DEFAULT_LANGUAGE))

    def set_language(self, language: str) -> None:
        self._set("language", language.strip())

    def get_model(self) -> str:
        return str(self._read_all().get("model", DEFAULT_MODEL))

    def get_hotkey(self) -> str:
        return str(self._read_all().get("hotkey", "Key.f9"))

    def set_hotkey(self, hotkey: str) -> None:
        self._set("hotkey", hotkey)

    def get_log_level(self) -> str:
        return str(self._read_all().get("log_level", os.getenv(LOG_LEVEL_ENV, "INFO")))

    def _set(self, key: str, value: Any) -> None:
        data = self._read_all()
        data[key] = value
        self._write_all(data)

    def _read_all(self) -> dict:
        if not self._path.exists():
            return {}
        try:
            data = json.loads(self._path.read_text(encoding="utf-8"))
        except (json.JSONDecodeError, OSError):
            return {}
        return data if isinstance(data, dict) else {}

    def _write_all(self, data: dict) -> None:
        self._path.write_text(json.dumps(data, ensure_ascii=False, indent=2), encoding="utf-8")


def load_streaming_config(store: JsonConfigStore) -> StreamingConfig:
    return StreamingConfig(
        api_key=store.get_api_key(),
        language=store.get_language() or DEFAULT_LANGUAGE,
        model=store.get_model() or DEFAULT_MODEL,
    )


def setup_logging(level: str | int = "INFO") -> None:
    """Install one stream handler on the root logger (idempotent)."""
    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
        if not isinstance(level, int):
            level = logging.INFO
    root = logging.getLogger()
    root.setLevel(level)
    for handler in root.handlers:
        if getattr(handler, "_voice_to_text", False):
            handler.setLevel(level)
            return
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt="%Y-%m-%d %H:%M:%S"))
    handler.setLevel(level)
    handler._voice_to_text = True  # type: ignore[attr-defined]
    root.addHandler(handler)
    logging.getLogger("websockets").setLevel(max(level, logging.WARNING))
