"""Always-on recent-audio buffer with silence trimming."""

from .audio.types import AudioConfig
from .audio.input.recorder import RingBufferRecorder
from .vad.pipeline import VadPipeline, PipelineResult
from .service import BufferService, Clip

__all__ = [
    "AudioConfig",
    "RingBufferRecorder",
    "VadPipeline",
    "PipelineResult",
    "BufferService",
    "Clip",
]
