"""Merge and pad raw speech runs into non-overlapping segments."""

from __future__ import annotations

from typing import Iterable, Optional

from .detector import SpeechTimestamp

# Segments share the timestamp shape; after merging they are sorted and disjoint.
Segment = SpeechTimestamp


def ms_to_samples(ms: float, sample_rate: int) -> int:
    return int(max(ms, 0) / 1000.0 * sample_rate)


def merge_segments(
    timestamps: Iterable[SpeechTimestamp],
    stitch_ms: int,
    sample_rate: int,
    total_samples: int,
    *,
    merge_gap_ms: Optional[int] = None,
    padding_ms: Optional[int] = None,
) -> list[Segment]:
    """
    Two passes over the runs:

    1. Merge a run into the current one when the gap between them is
       strictly smaller than the merge gap.
    2. Pad every merged run on both sides, clamp to [0, total_samples], then
       merge runs that now touch or overlap.

    Merge gap and padding both default to `stitch_ms`.
    """
    runs = sorted(timestamps, key=lambda t: (t.start, t.end))
    if not runs:
        return []

    gap_samples = ms_to_samples(stitch_ms if merge_gap_ms is None else merge_gap_ms, sample_rate)
    padding_samples = ms_to_samples(stitch_ms if padding_ms is None else padding_ms, sample_rate)
    total_samples = max(total_samples, 0)

    merged: list[tuple[int, int]] = []
    cur_start, cur_end = runs[0].start, runs[0].end
    for run in runs[1:]:
        if run.start - cur_end < gap_samples:
            cur_end = max(cur_end, run.end)
        else:
            merged.append((cur_start, cur_end))
            cur_start, cur_end = run.start, run.end
    merged.append((cur_start, cur_end))

    padded = sorted(
        (
            min(max(start - padding_samples, 0), total_samples),
            min(max(end + padding_samples, 0), total_samples),
        )
        for start, end in merged
    )

    segments: list[Segment] = []
    cur_start, cur_end = padded[0]
    for start, end in padded[1:]:
        if start <= cur_end:
            cur_end = max(cur_end, end)
        else:
            segments.append(Segment(cur_start, cur_end))
            cur_start, cur_end = start, end
    segments.append(Segment(cur_start, cur_end))
    return segments
