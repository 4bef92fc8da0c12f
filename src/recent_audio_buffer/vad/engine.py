"""Speech classifier inference engines."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Optional, Protocol

import numpy as np

from ..core.errors import InferenceError, ShapeMismatchError

logger = logging.getLogger(__name__)

# Silero VAD v5 keeps its LSTM hidden and cell state stacked in one tensor.
SILERO_STATE_SHAPE = (2, 1, 128)


@dataclass(frozen=True)
class InferenceOutput:
    """Result of scoring one window."""
    probability: float
    state: np.ndarray

    def check_state_shape(self, expected: tuple) -> None:
        if tuple(self.state.shape) != tuple(expected):
            raise ShapeMismatchError(tuple(expected), tuple(self.state.shape))


class InferenceEngine(Protocol):
    """
    Scores context + window audio, carrying a recurrent state.

    `infer` must not keep state of its own between calls; everything that
    depends on earlier windows travels in `state`.
    """

    state_shape: tuple

    def infer(self, audio: np.ndarray, sample_rate: int, state: np.ndarray) -> InferenceOutput: ...


class SileroInferenceEngine:
    """
    Runs the Silero VAD ONNX model shipped with the `silero-vad` package.

    The model session is created on first use; pass `session` to reuse an
    existing onnxruntime session.
    """

    state_shape = SILERO_STATE_SHAPE

    def __init__(self, session: Optional[Any] = None):
        self._session = session

    @property
    def session(self) -> Any:
        if self._session is None:
            # Lazy: the model loads on first inference
            from silero_vad import load_silero_vad

            model = load_silero_vad(onnx=True, opset_version=16)
            self._session = model.session
            logger.info("Loaded Silero VAD ONNX model")
        return self._session

    def infer(self, audio: np.ndarray, sample_rate: int, state: np.ndarray) -> InferenceOutput:
        ort_inputs = {
            "input": np.asarray(audio, dtype=np.float32).reshape(1, -1),
            "state": np.asarray(state, dtype=np.float32),
            "sr": np.array(sample_rate, dtype=np.int64),
        }
        try:
            out, new_state = self.session.run(None, ort_inputs)
        except Exception as e:
            raise InferenceError(f"Silero VAD inference failed: {e}") from e
        probability = float(np.asarray(out).reshape(-1)[0])
        return InferenceOutput(probability=probability, state=np.asarray(new_state, dtype=np.float32))
