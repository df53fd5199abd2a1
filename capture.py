"""Microphone capture source.

The device is opened at its native rate. Each PortAudio block is resampled
to 16 kHz mono, cut into fixed 4096-sample frames and queued. A dispatch
thread hands frames to the consumer so the audio callback never waits on
network I/O.
"""

from __future__ import annotations

import logging
import threading
import time
from queue import Full, Queue
from typing import Any, Optional

import numpy as np

from errors import CaptureStateError, PermissionDeniedError
from interfaces import FrameCallback
from models import FRAME_SIZE, SAMPLE_RATE, AudioFrame

try:
    import sounddevice as sd
except Exception:  # pragma: no cover
    sd = None  # type: ignore

logger = logging.getLogger(__name__)


class LinearResampler:
    """Streaming linear-interpolation resampler.

    The last input sample of each block is carried into the next one, so
    chunked input produces the same output as one long block.
    """

    def __init__(self, source_rate: float, target_rate: float) -> None:
        self.source_rate = float(source_rate)
        self.target_rate = float(target_rate)
        self._step = self.source_rate / self.target_rate
        self._position = 0.0
        self._last: Optional[float] = None

    @property
    def passthrough(self) -> bool:
        return self.source_rate == self.target_rate

    def process(self, block: np.ndarray) -> np.ndarray:
        block = np.asarray(block, dtype=np.float32).reshape(-1)
        if self.passthrough:
            return block.copy()
        if block.size == 0:
            return block
        if self._last is None:
            data = block
            start = self._position
        else:
            data = np.concatenate((np.array([self._last], dtype=np.float32), block))
            start = self._position + 1.0

        last_index = data.size - 1
        count = int(np.floor((last_index - start) / self._step)) + 1 if start <= last_index else 0
        positions = start + self._step * np.arange(count)
        out = np.interp(positions, np.arange(data.size), data).astype(np.float32)

        # Position of the next output sample relative to the next block.
        self._position = start + self._step * count - data.size
        self._last = float(data[-1])
        return out


class SoundDeviceCaptureSource:
    def __init__(
        self,
        sample_rate: int = SAMPLE_RATE,
        frame_size: int = FRAME_SIZE,
        device: Optional[Any] = None,
        block_ms: int = 50,
        queue_maxsize: int = 32,
    ) -> None:
        self.sample_rate = sample_rate
        self.frame_size = frame_size
        self.device = device
        self.block_ms = block_ms
        self.queue_maxsize = queue_maxsize
        self.device_rate: Optional[float] = None
        self.dropped_frames = 0

        self._lock = threading.Lock()
        self._access_granted = False
        self._running = False
        self._stream: Any = None
        self._resampler: Optional[LinearResampler] = None
        self._pending = np.zeros(0, dtype=np.float32)
        self._queue: Queue[Optional[AudioFrame]] = Queue(maxsize=queue_maxsize)
        self._dispatcher: Optional[threading.Thread] = None
        self._on_frame: Optional[FrameCallback] = None

    @property
    def is_running(self) -> bool:
        return self._running

    def request_access(self) -> bool:
        if sd is None:
            raise RuntimeError("sounddevice is not installed")
        try:
            info = sd.query_devices(self.device, kind="input")
            device_rate = float(info["default_samplerate"])
            sd.check_input_settings(device=self.device, channels=1, dtype="float32", samplerate=device_rate)
        except (sd.PortAudioError, ValueError) as exc:
            logger.error("Microphone access denied: %s", exc)
            raise PermissionDeniedError(detail=str(exc)) from exc
        with self._lock:
            self.device_rate = device_rate
            self._access_granted = True
        logger.info("Microphone ready (%s, native rate %.0f Hz)", info.get("name", "default"), device_rate)
        return True

    def start(self, on_frame: FrameCallback) -> None:
        with self._lock:
            if not self._access_granted or self.device_rate is None:
                raise CaptureStateError()
            if self._running:
                logger.warning("Recording already in progress")
                return
            if sd is None:
                raise RuntimeError("sounddevice is not installed")
            self._on_frame = on_frame
            self._resampler = LinearResampler(self.device_rate, self.sample_rate)
            self._pending = np.zeros(0, dtype=np.float32)
            self._queue = Queue(maxsize=self.queue_maxsize)
            stream = sd.InputStream(
                device=self.device,
                samplerate=self.device_rate,
                channels=1,
                dtype="float32",
                blocksize=int(self.device_rate * self.block_ms / 1000),
                callback=self._on_audio,
            )
            try:
                stream.start()
            except Exception:
                logger.error("Failed to start input stream", exc_info=True)
                try:
                    stream.close()
                except Exception as exc:
                    logger.warning("Error closing input stream: %s", exc)
                self._on_frame = None
                self._resampler = None
                raise
            self._stream = stream
            self._dispatcher = threading.Thread(target=self._dispatch, name="audio-frame-dispatch", daemon=True)
            self._running = True
            self._dispatcher.start()
        logger.info(
            "Audio recording started (%.0f Hz -> %d Hz, %d samples per frame)",
            self.device_rate,
            self.sample_rate,
            self.frame_size,
        )

    def stop(self) -> None:
        with self._lock:
            if not self._running:
                logger.warning("No active recording to stop")
                return
            self._running = False
            stream, self._stream = self._stream, None
            dispatcher = self._dispatcher
            queue = self._queue
        if stream is not None:
            stream.stop()
            stream.close()
        try:
            queue.put(None, timeout=1.0)
        except Full:
            logger.warning("Frame queue still full on stop; dispatcher may lag")
        if dispatcher is not None and dispatcher is not threading.current_thread():
            dispatcher.join(timeout=1.0)
        logger.info("Audio recording stopped (%d frames dropped)", self.dropped_frames)

    def cleanup(self) -> None:
        if self._running:
            self.stop()
        with self._lock:
            self._access_granted = False
            self._on_frame = None
            self._resampler = None
            self._pending = np.zeros(0, dtype=np.float32)

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _on_audio(self, indata: Any, frames: int, time_info: Any, status: Any) -> None:
        if not self._running or self._resampler is None:
            return
        if status:
            logger.debug("Input stream status: %s", status)
        mono = np.asarray(indata, dtype=np.float32)
        if mono.ndim > 1:
            mono = mono[:, 0]
        self._pending = np.concatenate((self._pending, self._resampler.process(mono)))
        while self._pending.size >= self.frame_size:
            samples, self._pending = self._pending[: self.frame_size], self._pending[self.frame_size :]
            frame = AudioFrame(
                samples=samples.copy(),
                sample_rate=self.sample_rate,
                timestamp_ms=int(time.time() * 1000),
            )
            try:
                self._queue.put_nowait(frame)
            except Full:
                self.dropped_frames += 1

    def _dispatch(self) -> None:
        queue = self._queue
        while True:
            frame = queue.get()
            if frame is None:
                return
            callback = self._on_frame
            if callback is None:
                continue
            try:
                callback(frame)
            except Exception:
                logger.exception("Frame callback failed")
