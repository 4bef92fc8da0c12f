"""Audio input subsystem - captures microphone audio into a ring buffer."""

from __future__ import annotations

from .memory import MAX_BUFFER_SIZE_B, CapacityPlan, plan_capacity, allocate_ring
from .recorder import RingBufferRecorder, CaptureThread
from .ring_buffer import RingBuffer
from .source import AudioSource, SoundDeviceSource, QueueAudioSource

__all__ = [
    "MAX_BUFFER_SIZE_B",
    "CapacityPlan",
    "plan_capacity",
    "allocate_ring",
    "RingBufferRecorder",
    "CaptureThread",
    "RingBuffer",
    "AudioSource",
    "SoundDeviceSource",
    "QueueAudioSource",
]
