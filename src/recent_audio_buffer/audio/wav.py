"""Canonical 44-byte WAV header for mono linear PCM."""

from __future__ import annotations

import logging
import struct

from .types import AudioConfig

logger = logging.getLogger(__name__)

WAV_HEADER_SIZE = 44

# RIFF chunk, fmt subchunk (PCM, 16 bytes), data subchunk header; all little-endian.
_HEADER = struct.Struct("<4sI4s4sIHHIIHH4sI")


def build_wav_header(data_len: int, config: AudioConfig) -> bytes:
    """Header for `data_len` bytes of PCM in the given format."""
    if data_len < 0:
        raise ValueError("data_len must not be negative")
    channels = 1
    block_align = channels * config.bytes_per_sample
    return _HEADER.pack(
        b"RIFF",
        data_len + 36,
        b"WAVE",
        b"fmt ",
        16,  # subchunk1 size for PCM
        1,   # audio format: PCM
        channels,
        config.sample_rate_hz,
        config.sample_rate_hz * block_align,
        block_align,
        config.bits_per_sample,
        b"data",
        data_len,
    )


def read_wav_header(wav_bytes: bytes) -> tuple[AudioConfig, int]:
    """
    Parse a header written by `build_wav_header`.

    Returns the audio config (duration 0) and the data length in bytes.
    """
    if len(wav_bytes) < WAV_HEADER_SIZE:
        raise ValueError("Invalid WAV header: file is too small.")
    (riff, _chunk_size, wave_tag, fmt, _sub1, audio_format, channels, sample_rate,
     _byte_rate, _block_align, bits, data_tag, data_len) = _HEADER.unpack_from(wav_bytes)
    if riff != b"RIFF" or wave_tag != b"WAVE" or fmt != b"fmt " or data_tag != b"data":
        raise ValueError("Invalid WAV header: missing RIFF/WAVE markers.")
    if audio_format != 1 or channels != 1:
        raise ValueError(f"Unsupported WAV layout: format={audio_format}, channels={channels}")
    if bits not in (8, 16):
        raise ValueError(f"Unsupported bit depth found in WAV header: {bits}")
    logger.debug("Read from WAV: sampleRate: %d, bitDepth: %d", sample_rate, bits)
    return AudioConfig(sample_rate_hz=sample_rate, bits_per_sample=bits, buffer_duration_s=0), data_len
