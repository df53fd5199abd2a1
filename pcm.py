"""Float sample <-> linear16 conversion."""

from __future__ import annotations

import numpy as np


def encode_frame(samples: np.ndarray) -> bytes:
    """Encode normalized float samples as signed 16-bit little-endian PCM.

    Negative samples scale by 32768 and the rest by 32767, so -1.0 and 1.0
    land exactly on the int16 limits.
    """
    clipped = np.clip(np.asarray(samples, dtype=np.float64), -1.0, 1.0)
    scaled = np.where(clipped < 0, clipped * 32768.0, clipped * 32767.0)
    return np.trunc(scaled).astype("<i2").tobytes()


def decode_frame(data: bytes) -> np.ndarray:
    pcm = np.frombuffer(data, dtype="<i2").astype(np.float32)
    return np.where(pcm < 0, pcm / 32768.0, pcm / 32767.0).astype(np.float32)
