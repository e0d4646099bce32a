"""Microphone recorder adapter and the process-wide microphone lease."""

from __future__ import annotations

import logging
import threading
from typing import Any, Optional

from errors import CAPTURE_FAILED, PERMISSION_DENIED, CaptureError
from models import AudioBuffer

try:
    import numpy as np
except Exception:  # pragma: no cover
    np = None  # type: ignore

try:
    import sounddevice as sd
except Exception:  # pragma: no cover
    sd = None  # type: ignore

logger = logging.getLogger(__name__)


class MicrophoneSession:
    """Exclusive lease on the input device, shared by every recorder."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._holder: Optional[object] = None

    @property
    def holder(self) -> Optional[object]:
        return self._holder

    def acquire(self, owner: object) -> None:
        with self._lock:
            if self._holder is not None and self._holder is not owner:
                raise CaptureError("microphone is in use by another field")
            self._holder = owner

    def release(self, owner: object) -> None:
        with self._lock:
            if self._holder is owner:
                self._holder = None


MICROPHONE = MicrophoneSession()


class SoundDeviceRecorder:
    def __init__(
        self,
        sample_rate: int = 16000,
        channels: int = 1,
        chunk_ms: int = 100,
        max_seconds: Optional[float] = 30.0,
        microphone: MicrophoneSession = MICROPHONE,
    ) -> None:
        self.sample_rate = sample_rate
        self.channels = channels
        self.chunk_ms = chunk_ms
        self.max_seconds = max_seconds
        self._microphone = microphone
        self._stream: Any = None
        self._running = False
        self._permission_granted = False
        self._lock = threading.Lock()
        self._pcm = bytearray()
        self.level = 0.0
        self.truncated = False

    @property
    def is_active(self) -> bool:
        return self._running

    def request_permission(self) -> bool:
        if sd is None:
            self._permission_granted = False
            return False
        try:
            sd.check_input_settings(
                samplerate=self.sample_rate,
                channels=self.channels,
                dtype="int16",
            )
        except Exception as exc:
            logger.warning("microphone check failed: %s", exc)
            self._permission_granted = False
            return False
        self._permission_granted = True
        return True

    def start(self) -> None:
        with self._lock:
            if self._running:
                raise CaptureError("recording already in progress")
            if not self._permission_granted:
                raise CaptureError(code=PERMISSION_DENIED)
            if sd is None:
                raise CaptureError("sounddevice is not installed")
            self._microphone.acquire(self)
            self._pcm = bytearray()
            self.level = 0.0
            self.truncated = False
            blocksize = int(self.sample_rate * (self.chunk_ms / 1000.0))
            try:
                self._stream = sd.InputStream(
                    samplerate=self.sample_rate,
                    channels=self.channels,
                    dtype="int16",
                    blocksize=blocksize,
                    callback=self._on_audio,
                )
                self._stream.start()
            except Exception as exc:
                try:
                    self._close_stream()
                except Exception:
                    logger.debug("ignoring close error after failed open", exc_info=True)
                finally:
                    self._microphone.release(self)
                raise CaptureError(f"could not open input device: {exc}", code=CAPTURE_FAILED) from exc
            self._running = True
            logger.debug("recording started (%d Hz, %d ch)", self.sample_rate, self.channels)

    def stop(self) -> AudioBuffer:
        with self._lock:
            if not self._running:
                raise CaptureError("no active recording")
            self._running = False
            try:
                self._close_stream()
            except Exception as exc:
                raise CaptureError(f"could not close input device: {exc}") from exc
            finally:
                self._microphone.release(self)
            buffer = AudioBuffer(
                pcm16_bytes=bytes(self._pcm),
                sample_rate=self.sample_rate,
                channels=self.channels,
            )
            self._pcm = bytearray()
            self.level = 0.0
        logger.debug("recording stopped, %d bytes (%.2fs)", buffer.byte_length, buffer.duration_s)
        return buffer

    def _close_stream(self) -> None:
        stream = self._stream
        self._stream = None
        if stream is None:
            return
        try:
            stream.stop()
        finally:
            stream.close()

    def _max_bytes(self) -> Optional[int]:
        if not self.max_seconds:
            return None
        return int(self.max_seconds * self.sample_rate) * self.channels * 2

    def _on_audio(self, indata: Any, frames: int, time_info: Any, status: Any) -> None:
        if not self._running or np is None:
            return
        samples = np.asarray(indata, dtype=np.int16)
        if samples.size:
            rms = float(np.sqrt(np.mean(np.square(samples.astype(np.float32)))))
            self.level = min(rms / 32768.0, 1.0)
        payload = samples.tobytes()
        limit = self._max_bytes()
        if limit is not None:
            room = limit - len(self._pcm)
            if room <= 0:
                self.truncated = True
                return
            if len(payload) > room:
                payload = payload[:room]
                self.truncated = True
        self._pcm.extend(payload)
