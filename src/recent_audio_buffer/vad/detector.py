"""Windowed speech detection with carried recurrent state."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

import numpy as np

from ..core.errors import ShapeMismatchError, UnsupportedRateError
from .engine import InferenceEngine

logger = logging.getLogger(__name__)

DEFAULT_SPEECH_THRESHOLD = 0.4

# processing rate -> (window samples, context samples)
WINDOW_SIZES = {
    16000: (512, 64),
    8000: (256, 32),
}


@dataclass(frozen=True)
class SpeechTimestamp:
    """Speech run in processing-rate samples, start <= end."""
    start: int
    end: int

    def __post_init__(self) -> None:
        if self.start > self.end:
            raise ValueError(f"start {self.start} after end {self.end}")

    @property
    def length(self) -> int:
        return self.end - self.start


class RecurrentState:
    """
    Model memory between windows: the engine's state tensor plus the
    trailing context samples of the previous window.

    Owned by exactly one SpeechDetector.
    """

    def __init__(self, state_shape: tuple, context_size: int):
        self.state_shape = tuple(state_shape)
        self.tensor = np.zeros(self.state_shape, dtype=np.float32)
        self.context = np.zeros(context_size, dtype=np.float32)

    def reset(self) -> None:
        self.tensor = np.zeros(self.state_shape, dtype=np.float32)
        self.context[:] = 0.0


class SpeechDetector:
    """
    Feeds fixed-size windows to the inference engine and turns the
    probabilities into speech runs with a threshold state machine.

    Samples are buffered across `feed()` calls so windows may span chunk
    boundaries; only the final partial window of the stream is dropped.
    Offsets are global sample indices since the last `reset()`.
    """

    def __init__(
        self,
        engine: InferenceEngine,
        sample_rate: int = 16000,
        threshold: float = DEFAULT_SPEECH_THRESHOLD,
    ):
        if sample_rate not in WINDOW_SIZES:
            raise UnsupportedRateError(
                f"VAD processing rate must be one of {sorted(WINDOW_SIZES)}, got {sample_rate}"
            )
        self._engine = engine
        self.sample_rate = sample_rate
        self.threshold = threshold
        self.window_size, self.context_size = WINDOW_SIZES[sample_rate]
        self._state = RecurrentState(engine.state_shape, self.context_size)
        self._input = np.zeros(self.context_size + self.window_size, dtype=np.float32)
        self.reset()

    @property
    def state(self) -> RecurrentState:
        return self._state

    @property
    def total_samples(self) -> int:
        """Samples fed so far, including any not yet scored."""
        return self._total_samples

    @property
    def in_speech(self) -> bool:
        return self._speech_start is not None

    def reset(self) -> None:
        self._state.reset()
        self._pending = np.zeros(0, dtype=np.float32)
        self._consumed = 0      # samples already scored
        self._total_samples = 0
        self._speech_start: Optional[int] = None

    def process_window(self, window: np.ndarray) -> float:
        """
        Score one window of exactly `window_size` samples.

        The stored context is prepended, the returned state is accepted only
        if its shape matches, and the window's tail becomes the next context.
        Raises InferenceError when the engine fails.
        """
        if len(window) != self.window_size:
            raise ValueError(f"window must have {self.window_size} samples, got {len(window)}")
        self._input[: self.context_size] = self._state.context
        self._input[self.context_size:] = window

        output = self._engine.infer(self._input, self.sample_rate, self._state.tensor)
        try:
            output.check_state_shape(self._state.state_shape)
        except ShapeMismatchError as e:
            logger.error("Inference returned unexpected state shape; keeping previous state: %s", e)
        else:
            self._state.tensor = output.state

        self._state.context[:] = window[-self.context_size:]
        return output.probability

    def feed(self, samples: np.ndarray) -> list[SpeechTimestamp]:
        """Score every complete window available; returns runs closed by this call."""
        closed: list[SpeechTimestamp] = []
        self._total_samples += len(samples)
        if len(self._pending):
            buffered = np.concatenate([self._pending, samples])
        else:
            buffered = np.asarray(samples, dtype=np.float32)

        pos = 0
        try:
            while pos + self.window_size <= len(buffered):
                window = buffered[pos: pos + self.window_size]
                offset = self._consumed
                probability = self.process_window(window)
                pos += self.window_size
                self._consumed += self.window_size

                if probability >= self.threshold and self._speech_start is None:
                    self._speech_start = offset
                elif probability < self.threshold and self._speech_start is not None:
                    closed.append(SpeechTimestamp(self._speech_start, offset))
                    self._speech_start = None
        finally:
            self._pending = buffered[pos:].copy()
        return closed

    def finish(self) -> list[SpeechTimestamp]:
        """Close a run still open at end of stream at the final sample index."""
        self._pending = np.zeros(0, dtype=np.float32)
        if self._speech_start is None:
            return []
        run = SpeechTimestamp(self._speech_start, max(self._total_samples, self._speech_start))
        self._speech_start = None
        return [run]

    def finish_partial(self) -> list[SpeechTimestamp]:
        """Close an open run at the last scored sample (after an aborted run)."""
        self._pending = np.zeros(0, dtype=np.float32)
        self._total_samples = self._consumed
        return self.finish()
