"""Rebuild a continuous PCM stream from the kept speech segments."""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Optional, Sequence

import numpy as np

from ..audio.types import AudioConfig, int_to_pcm, pcm_to_int
from .merger import Segment, ms_to_samples
from .resampler import PositionMap

logger = logging.getLogger(__name__)

# Normalized magnitude below which a sample counts as silence at a segment edge.
SILENCE_THRESHOLD = 0.01


@dataclass(frozen=True)
class StitchPiece:
    """One kept segment after trimming, in original-rate samples."""
    start_sample: int
    end_sample: int
    overlap_samples: int  # crossfaded into the previous piece


def _full_scale(bits_per_sample: int) -> float:
    return 32768.0 if bits_per_sample == 16 else 128.0


def crossfade(prev_tail: np.ndarray, next_head: np.ndarray) -> np.ndarray:
    """Linear fade-out of `prev_tail` mixed with a fade-in of `next_head`."""
    n = len(prev_tail)
    if n == 0:
        return np.zeros(0, dtype=np.int32)
    denom = float(n - 1) if n > 1 else 1.0
    t = np.arange(n, dtype=np.float64) / denom
    mixed = prev_tail.astype(np.float64) * (1.0 - t) + next_head.astype(np.float64) * t
    # Truncate toward zero like an integer cast of the blended value.
    return np.trunc(mixed).astype(np.int32)


def trim_silence(samples: np.ndarray, threshold: int, max_trim: int) -> tuple[int, int]:
    """
    Leading and trailing counts of near-silent samples, each capped at
    `max_trim`. Returns (lead, trail).
    """
    n = len(samples)
    if n == 0:
        return 0, 0
    loud = np.flatnonzero(np.abs(samples) >= threshold)
    if len(loud) == 0:
        lead = min(n, max_trim)
        trail = min(n - lead, max_trim)
        return lead, trail
    lead = min(int(loud[0]), max_trim)
    trail = min(n - 1 - int(loud[-1]), max_trim)
    return lead, trail


class AudioStitcher:
    """
    Maps processing-rate segments back to original-rate bytes, trims
    near-silence at each segment's edges and crossfades the joins.
    """

    def __init__(self, silence_threshold: float = SILENCE_THRESHOLD):
        self.silence_threshold = silence_threshold

    def stitch(
        self,
        original: bytes,
        segments: Sequence[Segment],
        config: AudioConfig,
        processing_rate: int,
        stitch_ms: int,
        position_map: Optional[PositionMap] = None,
    ) -> bytes:
        audio, _pieces = self.stitch_with_layout(
            original, segments, config, processing_rate, stitch_ms, position_map
        )
        return audio

    def stitch_with_layout(
        self,
        original: bytes,
        segments: Sequence[Segment],
        config: AudioConfig,
        processing_rate: int,
        stitch_ms: int,
        position_map: Optional[PositionMap] = None,
    ) -> tuple[bytes, list[StitchPiece]]:
        """
        Like `stitch`, also returning where each kept piece came from.

        Without a `position_map` segment bounds are scaled by the constant
        rate ratio.
        """
        if not segments:
            return b"", []

        bits = config.bits_per_sample
        samples = pcm_to_int(original, bits)
        n_available = len(samples)
        if position_map is None:
            position_map = PositionMap(config.sample_rate_hz / float(processing_rate))
        stitch_samples = ms_to_samples(stitch_ms, config.sample_rate_hz)
        max_trim = stitch_samples // 2
        threshold = max(1, int(math.ceil(self.silence_threshold * _full_scale(bits))))

        output = np.zeros(0, dtype=np.int32)
        parts: list[np.ndarray] = []
        pieces: list[StitchPiece] = []
        out_len = 0

        for segment in segments:
            start = max(int(math.floor(position_map.to_source(segment.start))), 0)
            end = min(int(math.ceil(position_map.to_source(segment.end))), n_available)
            if end <= start:
                continue
            piece = samples[start:end]

            lead, trail = trim_silence(piece, threshold, max_trim)
            piece = piece[lead: len(piece) - trail]
            if len(piece) == 0 or int(np.max(np.abs(piece))) < threshold:
                logger.debug("Dropping silent segment %d-%d", segment.start, segment.end)
                continue

            overlap = min(stitch_samples, out_len, len(piece))
            if overlap > 0:
                if parts:
                    output = np.concatenate([output] + parts)
                    parts = []
                output[out_len - overlap:] = crossfade(output[out_len - overlap:], piece[:overlap])
                parts.append(piece[overlap:])
            else:
                parts.append(piece)
            out_len += len(piece) - overlap
            pieces.append(StitchPiece(start + lead, start + lead + len(piece), overlap))

        if parts:
            output = np.concatenate([output] + parts)
        logger.debug(
            "Stitched %d of %d segments into %d samples", len(pieces), len(segments), out_len
        )
        return int_to_pcm(output, bits), pieces
