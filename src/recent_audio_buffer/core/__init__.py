"""Threading primitives, status events and error kinds shared by capture and VAD."""

from .errors import (
    RecentAudioBufferError,
    CaptureStartError,
    PermissionDeniedError,
    SourceUnavailableError,
    AllocationFailureError,
    DeviceReadError,
    DeviceStoppedError,
    InferenceError,
    ShapeMismatchError,
    UnsupportedRateError,
    PipelineCancelledError,
)
from .events import RecorderState, EventKind, RecorderEvent, BenchmarkResult
from .shutdown import StopSignal, GracefulShutdown
from .worker import QueueWorker, END_OF_STREAM

__all__ = [
    "RecentAudioBufferError",
    "CaptureStartError",
    "PermissionDeniedError",
    "SourceUnavailableError",
    "AllocationFailureError",
    "DeviceReadError",
    "DeviceStoppedError",
    "InferenceError",
    "ShapeMismatchError",
    "UnsupportedRateError",
    "PipelineCancelledError",
    "RecorderState",
    "EventKind",
    "RecorderEvent",
    "BenchmarkResult",
    "StopSignal",
    "GracefulShutdown",
    "QueueWorker",
    "END_OF_STREAM",
]
