import numpy as np
import pytest

from recent_audio_buffer.audio.types import AudioConfig
from recent_audio_buffer.core.errors import InferenceError
from recent_audio_buffer.vad.engine import InferenceOutput, SILERO_STATE_SHAPE


class EnergyEngine:
    """Deterministic stand-in for the speech model: speech when RMS exceeds a level."""

    state_shape = SILERO_STATE_SHAPE

    def __init__(self, level=0.01, fail_after=None, state_shape_out=None):
        self.level = level
        self.fail_after = fail_after
        self.state_shape_out = state_shape_out
        self.calls = []

    def infer(self, audio, sample_rate, state):
        if self.fail_after is not None and len(self.calls) >= self.fail_after:
            raise InferenceError("model crashed")
        self.calls.append((np.array(audio, copy=True), sample_rate, np.array(state, copy=True)))
        rms = float(np.sqrt(np.mean(np.square(audio, dtype=np.float64))))
        shape = self.state_shape_out or self.state_shape
        new_state = np.full(shape, len(self.calls), dtype=np.float32)
        return InferenceOutput(probability=1.0 if rms > self.level else 0.0, state=new_state)


def square_wave(n_samples, sample_rate=16000, frequency=200, amplitude=0.3):
    """Square wave in [-amplitude, amplitude] that is never zero."""
    half_period = max(1, int(sample_rate / frequency / 2))
    phase = (np.arange(n_samples) // half_period) % 2
    return np.where(phase == 0, amplitude, -amplitude).astype(np.float32)


def silence(n_samples):
    return np.zeros(n_samples, dtype=np.float32)


def to_pcm16(samples):
    return (np.asarray(samples) * 32767.0).astype("<i2").tobytes()


def to_pcm8(samples):
    return (np.asarray(samples) * 127.0 + 128.0).astype(np.uint8).tobytes()


@pytest.fixture
def energy_engine():
    return EnergyEngine()


@pytest.fixture
def config_16k():
    return AudioConfig(sample_rate_hz=16000, bits_per_sample=16, buffer_duration_s=10)


@pytest.fixture
def speech_silence_speech():
    """2 s tone, 3 s silence, 2 s tone at 16 kHz, as 16-bit PCM."""
    signal = np.concatenate([square_wave(32000), silence(48000), square_wave(32000)])
    return to_pcm16(signal)
