"""Adaptive sample-rate conversion for the VAD input."""

from __future__ import annotations

import bisect
from typing import Optional

import numpy as np

# Linear is safe for upsampling and mild downsampling; steeper downsampling
# needs the windowed sinc to keep aliasing away from the VAD model.
LINEAR_VS_SINC_RATIO = 0.6
DEFAULT_SINC_TAPS = 24


def _output_length(n: int, ratio: float, capacity: Optional[int]) -> int:
    out_len = int(n * ratio)
    if capacity is not None:
        out_len = min(out_len, capacity)
    return max(out_len, 0)


def resample_linear(
    src: np.ndarray, ratio: float, capacity: Optional[int] = None
) -> np.ndarray:
    """Blend the two neighbouring source samples at each fractional position."""
    n = len(src)
    if n == 0 or ratio <= 0.0:
        return np.zeros(0, dtype=np.float32)
    out_len = _output_length(n, ratio, capacity)
    if out_len == 0:
        return np.zeros(0, dtype=np.float32)

    positions = np.arange(out_len, dtype=np.float64) / ratio
    # np.interp holds the last sample beyond the end, like clamping i+1 to n-1.
    return np.interp(positions, np.arange(n, dtype=np.float64), src).astype(np.float32)


def resample_sinc(
    src: np.ndarray,
    ratio: float,
    capacity: Optional[int] = None,
    taps: int = DEFAULT_SINC_TAPS,
) -> np.ndarray:
    """
    Hann-windowed sinc low-pass evaluated at each fractional source position.

    Each output is normalized by the sum of the filter weights actually used,
    so samples near the buffer edges keep their level.
    """
    n = len(src)
    if n == 0 or ratio <= 0.0:
        return np.zeros(0, dtype=np.float32)
    out_len = _output_length(n, ratio, capacity)
    if out_len == 0:
        return np.zeros(0, dtype=np.float32)

    cutoff = 0.5 * min(ratio, 1.0)
    half_taps = taps / 2.0
    centers = np.arange(out_len, dtype=np.float64) / ratio

    # Candidate source indices for every output: [center - half, center + half].
    first = np.floor(centers - half_taps).astype(np.int64)
    offsets = np.arange(taps + 2, dtype=np.int64)
    idx = first[:, None] + offsets[None, :]
    x = centers[:, None] - idx
    valid = (idx >= 0) & (idx < n) & (np.abs(x) <= half_taps)

    # 2fc * sinc(2fc x) == sin(2 pi fc x) / (pi x), with the proper limit at x == 0.
    kernel = 2.0 * cutoff * np.sinc(2.0 * cutoff * x)
    window = 0.5 + 0.5 * np.cos(np.pi * x / half_taps)
    weights = np.where(valid, kernel * window, 0.0)

    samples = src[np.clip(idx, 0, n - 1)].astype(np.float64)
    acc = np.sum(weights * samples, axis=1)
    weight_sum = np.sum(weights, axis=1)
    safe = np.where(weight_sum != 0.0, weight_sum, 1.0)
    return (acc / safe).astype(np.float32)


class AdaptiveResampler:
    """
    Stateless resampler choosing linear interpolation or windowed sinc by ratio.

    ratio = target_rate / source_rate. Output length is floor(len * ratio),
    bounded by `capacity` when given.
    """

    def __init__(self, threshold: float = LINEAR_VS_SINC_RATIO, taps: int = DEFAULT_SINC_TAPS):
        self.threshold = threshold
        self.taps = taps

    def uses_sinc(self, ratio: float) -> bool:
        return ratio < self.threshold

    def resample(self, src: np.ndarray, ratio: float, capacity: Optional[int] = None) -> np.ndarray:
        if ratio == 1.0:
            out_len = _output_length(len(src), ratio, capacity)
            return np.asarray(src[:out_len], dtype=np.float32).copy()
        if self.uses_sinc(ratio):
            return resample_sinc(src, ratio, capacity, taps=self.taps)
        return resample_linear(src, ratio, capacity)

    def resample_into(self, src: np.ndarray, ratio: float, dst: np.ndarray) -> int:
        """Resample into a preallocated buffer; returns the valid sample count."""
        out = self.resample(src, ratio, capacity=len(dst))
        dst[: len(out)] = out
        return len(out)


class PositionMap:
    """
    Maps processing-rate sample positions back to source-rate positions.

    Chunks are resampled one at a time and each output length is floored,
    so a constant rate ratio drifts over a long buffer. Recording the
    cumulative input and output counts of every chunk keeps the mapping
    exact at chunk boundaries; inside a chunk it is linear.
    """

    def __init__(self, scale: float):
        self.scale = scale  # source samples per processing sample
        self._in_ends = [0]
        self._out_ends = [0]

    def add_chunk(self, in_count: int, out_count: int) -> None:
        self._in_ends.append(self._in_ends[-1] + in_count)
        self._out_ends.append(self._out_ends[-1] + out_count)

    @property
    def total_in(self) -> int:
        return self._in_ends[-1]

    @property
    def total_out(self) -> int:
        return self._out_ends[-1]

    def to_source(self, position: float) -> float:
        position = max(position, 0.0)
        last_out = self._out_ends[-1]
        if position >= last_out:
            return self._in_ends[-1] + (position - last_out) * self.scale
        # out_ends[k] <= position < out_ends[k + 1]
        k = bisect.bisect_right(self._out_ends, position) - 1
        out0, out1 = self._out_ends[k], self._out_ends[k + 1]
        in0, in1 = self._in_ends[k], self._in_ends[k + 1]
        return in0 + (position - out0) * (in1 - in0) / float(out1 - out0)
