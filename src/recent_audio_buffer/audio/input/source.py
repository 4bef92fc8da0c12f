"""Audio sources the capture loop reads from."""

from __future__ import annotations

import logging
import queue
import threading
from typing import Optional, Protocol

import sounddevice as sd

from ...core.errors import (
    DeviceReadError,
    DeviceStoppedError,
    PermissionDeniedError,
    SourceUnavailableError,
)
from ..types import AudioConfig

logger = logging.getLogger(__name__)


class AudioSource(Protocol):
    """
    Blocking PCM source.

    `read` returns up to `max_bytes` of mono PCM in the session format. It
    raises DeviceReadError for failures the loop may ride out and
    DeviceStoppedError once the source can never produce data again.
    """

    def open(self, config: AudioConfig) -> None: ...

    def read(self, max_bytes: int) -> bytes: ...

    def close(self) -> None: ...


class SoundDeviceSource:
    """Microphone input through a blocking PortAudio raw stream."""

    def __init__(self, device: Optional[int] = None, frame_ms: int = 20):
        self._device = device
        self._frame_ms = frame_ms
        self._stream: Optional[sd.RawInputStream] = None
        self._bytes_per_sample = 2

    def open(self, config: AudioConfig) -> None:
        dtype = "int16" if config.bits_per_sample == 16 else "uint8"
        blocksize = int(config.sample_rate_hz * self._frame_ms / 1000)
        self._bytes_per_sample = config.bytes_per_sample
        try:
            sd.check_input_settings(
                device=self._device,
                channels=1,
                dtype=dtype,
                samplerate=config.sample_rate_hz,
            )
            self._stream = sd.RawInputStream(
                samplerate=config.sample_rate_hz,
                channels=1,
                dtype=dtype,
                blocksize=blocksize,
                device=self._device,
            )
            self._stream.start()
        except PermissionError as e:
            raise PermissionDeniedError(f"Microphone access denied: {e}") from e
        except (sd.PortAudioError, ValueError) as e:
            raise SourceUnavailableError(f"Input device unavailable: {e}") from e
        logger.info(
            "Opened input device %s at %d Hz, %s, blocksize=%d",
            self._device, config.sample_rate_hz, dtype, blocksize,
        )

    def read(self, max_bytes: int) -> bytes:
        stream = self._stream
        if stream is None or stream.closed:
            raise DeviceStoppedError("Input stream is closed")
        if not stream.active:
            raise DeviceStoppedError("Input stream stopped unexpectedly")
        frames = max(1, max_bytes // self._bytes_per_sample)
        try:
            data, overflowed = stream.read(frames)
        except sd.PortAudioError as e:
            raise DeviceReadError(str(e)) from e
        if overflowed:
            logger.warning("Input overflow: audio was dropped by the device")
        return bytes(data)

    def close(self) -> None:
        stream = self._stream
        self._stream = None
        if stream is None:
            return
        try:
            if stream.active:
                stream.stop()
            stream.close()
        except sd.PortAudioError as e:
            logger.warning("Error closing input stream: %s", e)


class QueueAudioSource:
    """
    An AudioSource that consumes PCM pushed from another thread.
    Useful for audio arriving over the network, and for tests.
    """

    def __init__(self, maxsize: int = 0, poll_interval_s: float = 0.05):
        self._chunks: queue.Queue[bytes] = queue.Queue(maxsize=maxsize)
        self._poll_interval_s = poll_interval_s
        self._closed = threading.Event()
        self._pending = b""

    def open(self, config: AudioConfig) -> None:
        self._closed.clear()
        logger.info("QueueAudioSource opened (%d Hz, %d-bit)", config.sample_rate_hz, config.bits_per_sample)

    def push(self, data: bytes) -> None:
        """External API to push PCM into this source."""
        try:
            self._chunks.put_nowait(bytes(data))
        except queue.Full:
            logger.warning("QueueAudioSource: internal queue full, dropping %d bytes", len(data))

    def read(self, max_bytes: int) -> bytes:
        if self._closed.is_set() and not self._pending and self._chunks.empty():
            raise DeviceStoppedError("QueueAudioSource closed")
        if not self._pending:
            try:
                self._pending = self._chunks.get(timeout=self._poll_interval_s)
            except queue.Empty:
                return b""
        data, self._pending = self._pending[:max_bytes], self._pending[max_bytes:]
        return data

    def close(self) -> None:
        self._closed.set()
