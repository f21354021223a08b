from __future__ import annotations

import io
import logging
import threading
import wave
from typing import Callable, Optional

import numpy as np

from common.config import CaptureSettings
from transcriber.models import AudioSegment

logger = logging.getLogger(__name__)


def float_to_pcm16(samples: np.ndarray) -> np.ndarray:
    """Convert float audio in [-1, 1] to int16 PCM, clipping out-of-range samples."""
    scaled = np.asarray(samples, dtype=np.float32) * 32768.0
    return np.clip(scaled, -32768, 32767).astype(np.int16)


def encode_wav(pcm: np.ndarray | bytes, sample_rate: int = 16000, channels: int = 1) -> bytes:
    """Wrap 16-bit PCM in a WAV container."""
    if isinstance(pcm, np.ndarray):
        pcm = pcm.astype(np.int16).tobytes()
    buffer = io.BytesIO()
    with wave.open(buffer, "wb") as wf:
        wf.setnchannels(channels)
        wf.setsampwidth(2)
        wf.setframerate(sample_rate)
        wf.writeframes(pcm)
    return buffer.getvalue()


def silent_wav(duration_s: float = 1.0, sample_rate: int = 16000) -> bytes:
    return encode_wav(np.zeros(int(duration_s * sample_rate), dtype=np.int16), sample_rate)


def _default_stream_factory(**kwargs):
    # Imported here so the package works on hosts without PortAudio.
    import sounddevice as sd

    return sd.InputStream(**kwargs)


class AudioRecorder:
    """Records microphone audio between start() and stop() into one segment."""

    def __init__(
        self,
        settings: CaptureSettings | None = None,
        stream_factory: Optional[Callable[..., object]] = None,
    ) -> None:
        self.settings = settings or CaptureSettings()
        self._stream_factory = stream_factory or _default_stream_factory
        self._stream = None
        self._frames: list[np.ndarray] = []
        self._lock = threading.Lock()

    @property
    def is_recording(self) -> bool:
        return self._stream is not None

    @property
    def duration_s(self) -> float:
        with self._lock:
            samples = sum(len(f) for f in self._frames)
        return samples / self.settings.sample_rate

    def start(self) -> None:
        if self._stream is not None:
            raise RuntimeError("Recording already in progress")
        with self._lock:
            self._frames = []
        stream = self._stream_factory(
            samplerate=self.settings.sample_rate,
            channels=self.settings.channels,
            dtype="float32",
            device=self.settings.device,
            callback=self._on_audio,
        )
        stream.start()
        self._stream = stream
        logger.info("Recording started (%d Hz, %d ch)", self.settings.sample_rate, self.settings.channels)

    def stop(self, context_hint: Optional[str] = None) -> AudioSegment:
        if self._stream is None:
            raise RuntimeError("Recording not started")
        stream, self._stream = self._stream, None
        stream.stop()
        stream.close()

        with self._lock:
            frames, self._frames = self._frames, []
        if frames:
            samples = np.concatenate(frames)
        else:
            samples = np.zeros((0, self.settings.channels), dtype=np.float32)
        pcm = float_to_pcm16(samples)
        logger.info("Recording stopped: %.2fs captured", len(pcm) / self.settings.sample_rate)
        return AudioSegment(
            audio=encode_wav(pcm, self.settings.sample_rate, self.settings.channels),
            context_hint=context_hint,
        )

    def _on_audio(self, indata, _frames, _time_info, status) -> None:
        if status:
            logger.debug("Input stream status: %s", status)
        with self._lock:
            self._frames.append(np.array(indata, dtype=np.float32, copy=True))
