"""Error kinds raised by the capture engine and the VAD pipeline."""


class RecentAudioBufferError(Exception):
    """Base class for all errors raised by this package."""


class CaptureStartError(RecentAudioBufferError):
    """Recording could not be started; the capture loop never ran."""


class PermissionDeniedError(CaptureStartError):
    """Microphone access was refused by the operating system."""


class SourceUnavailableError(CaptureStartError):
    """The audio device does not exist or rejects the requested format."""


class AllocationFailureError(RecentAudioBufferError):
    """The ring buffer storage could not be allocated, even after degrading."""


class DeviceReadError(RecentAudioBufferError):
    """A single read from the audio source failed; capture may continue."""


class DeviceStoppedError(RecentAudioBufferError):
    """The audio source reports a terminal stopped state."""


class InferenceError(RecentAudioBufferError):
    """The speech classifier failed to score a window."""


class ShapeMismatchError(InferenceError):
    """The classifier returned a recurrent state of an unexpected shape."""

    def __init__(self, expected: tuple, actual: tuple):
        super().__init__(f"Expected recurrent state of shape {expected}, got {actual}")
        self.expected = expected
        self.actual = actual


class UnsupportedRateError(RecentAudioBufferError, ValueError):
    """The audio format cannot be processed by the VAD pipeline."""


class PipelineCancelledError(RecentAudioBufferError):
    """A pipeline run was stopped through its stop signal."""
