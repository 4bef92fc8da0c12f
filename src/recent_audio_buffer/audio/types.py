"""Audio format value types and PCM conversion helpers."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

import numpy as np

DEFAULT_SAMPLE_RATE = 16000
DEFAULT_BITS_PER_SAMPLE = 16
DEFAULT_BUFFER_DURATION_S = 300

# Rates offered to users; anything positive is accepted.
SUPPORTED_SAMPLE_RATES = (8000, 11025, 16000, 22050, 44100, 48000, 88200, 96000, 192000)


class Encoding(Enum):
    """Sample encoding tag."""
    PCM_8BIT = "pcm_u8"
    PCM_16BIT = "pcm_s16le"
    PCM_FLOAT = "float"  # 24/32-bit capture; not handled by the buffer or VAD

    @classmethod
    def for_bits(cls, bits: int) -> "Encoding":
        if bits == 8:
            return cls.PCM_8BIT
        if bits == 16:
            return cls.PCM_16BIT
        if bits in (24, 32):
            return cls.PCM_FLOAT
        raise ValueError(f"Invalid bit depth: {bits}")


@dataclass(frozen=True)
class AudioConfig:
    """Immutable audio format for one recording session."""
    sample_rate_hz: int = DEFAULT_SAMPLE_RATE
    bits_per_sample: int = DEFAULT_BITS_PER_SAMPLE
    buffer_duration_s: int = DEFAULT_BUFFER_DURATION_S

    def __post_init__(self) -> None:
        if self.bits_per_sample not in (8, 16):
            raise ValueError(f"Only 8-bit and 16-bit PCM supported, got {self.bits_per_sample}")
        if self.sample_rate_hz <= 0:
            raise ValueError(f"Sample rate must be positive, got {self.sample_rate_hz}")
        if self.buffer_duration_s < 0:
            raise ValueError(f"Buffer duration must not be negative, got {self.buffer_duration_s}")

    @property
    def encoding(self) -> Encoding:
        return Encoding.for_bits(self.bits_per_sample)

    @property
    def bytes_per_sample(self) -> int:
        return self.bits_per_sample // 8

    @property
    def byte_rate(self) -> int:
        return self.sample_rate_hz * self.bytes_per_sample

    @property
    def requested_capacity_bytes(self) -> int:
        return self.byte_rate * self.buffer_duration_s

    @property
    def numpy_dtype(self) -> np.dtype:
        return np.dtype("<i2") if self.bits_per_sample == 16 else np.dtype(np.uint8)

    def duration_of(self, n_bytes: int) -> float:
        """Seconds of audio held in `n_bytes` of PCM."""
        return n_bytes / self.byte_rate


def pcm_to_float(data: bytes | memoryview, bits_per_sample: int) -> np.ndarray:
    """
    Decode little-endian PCM into float32 samples in [-1, 1).

    A trailing partial sample is ignored.
    """
    if bits_per_sample == 16:
        usable = len(data) - (len(data) % 2)
        samples = np.frombuffer(data[:usable], dtype="<i2")
        return samples.astype(np.float32) / 32768.0
    if bits_per_sample == 8:
        samples = np.frombuffer(data, dtype=np.uint8)
        return (samples.astype(np.float32) - 128.0) / 128.0
    raise ValueError(f"Unsupported bit depth: {bits_per_sample}")


def pcm_to_int(data: bytes | memoryview, bits_per_sample: int) -> np.ndarray:
    """Decode PCM into integer samples centered on zero (int32)."""
    if bits_per_sample == 16:
        usable = len(data) - (len(data) % 2)
        return np.frombuffer(data[:usable], dtype="<i2").astype(np.int32)
    if bits_per_sample == 8:
        return np.frombuffer(data, dtype=np.uint8).astype(np.int32) - 128
    raise ValueError(f"Unsupported bit depth: {bits_per_sample}")


def int_to_pcm(samples: np.ndarray, bits_per_sample: int) -> bytes:
    """Encode zero-centered integer samples back to PCM, clipping to range."""
    if bits_per_sample == 16:
        return np.clip(samples, -32768, 32767).astype("<i2").tobytes()
    if bits_per_sample == 8:
        return (np.clip(samples, -128, 127) + 128).astype(np.uint8).tobytes()
    raise ValueError(f"Unsupported bit depth: {bits_per_sample}")
