"""Audio subsystem: format types, WAV header contract and capture."""

from .types import AudioConfig, Encoding, pcm_to_float, pcm_to_int, int_to_pcm
from .wav import WAV_HEADER_SIZE, build_wav_header, read_wav_header

__all__ = [
    "AudioConfig",
    "Encoding",
    "pcm_to_float",
    "pcm_to_int",
    "int_to_pcm",
    "WAV_HEADER_SIZE",
    "build_wav_header",
    "read_wav_header",
]
