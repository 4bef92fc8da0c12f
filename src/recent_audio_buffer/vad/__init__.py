"""Voice activity detection pass that trims silence out of a captured clip."""

from .detector import DEFAULT_SPEECH_THRESHOLD, SpeechDetector, SpeechTimestamp, RecurrentState
from .engine import InferenceEngine, InferenceOutput, SileroInferenceEngine, SILERO_STATE_SHAPE
from .merger import Segment, merge_segments, ms_to_samples
from .pipeline import (
    DEFAULT_CHUNK_SIZE_B,
    DEFAULT_STITCH_MS,
    PipelineResult,
    VadPipeline,
    default_pool_size,
    processing_rate_for,
)
from .resampler import AdaptiveResampler, PositionMap, resample_linear, resample_sinc
from .stitcher import AudioStitcher, StitchPiece, crossfade, trim_silence

__all__ = [
    "DEFAULT_SPEECH_THRESHOLD",
    "SpeechDetector",
    "SpeechTimestamp",
    "RecurrentState",
    "InferenceEngine",
    "InferenceOutput",
    "SileroInferenceEngine",
    "SILERO_STATE_SHAPE",
    "Segment",
    "merge_segments",
    "ms_to_samples",
    "DEFAULT_CHUNK_SIZE_B",
    "DEFAULT_STITCH_MS",
    "PipelineResult",
    "VadPipeline",
    "default_pool_size",
    "processing_rate_for",
    "AdaptiveResampler",
    "PositionMap",
    "resample_linear",
    "resample_sinc",
    "AudioStitcher",
    "StitchPiece",
    "crossfade",
    "trim_silence",
]
