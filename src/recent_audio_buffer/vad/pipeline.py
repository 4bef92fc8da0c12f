"""
VAD post-processing of a captured snapshot.

snapshot bytes -> float PCM -> AdaptiveResampler -> SpeechDetector
-> merge_segments -> AudioStitcher -> trimmed PCM bytes.

In parallel mode a producer thread decodes and resamples into pooled float
buffers while a single consumer thread runs inference. Pool slots travel
producer -> ready queue -> consumer -> free queue, so each slot has exactly
one owner at a time, and the ready queue is FIFO, which keeps windows in
order for the recurrent state.
"""

from __future__ import annotations

import gc
import logging
import math
import os
import queue
import threading
import time
import tracemalloc
from dataclasses import dataclass
from typing import Callable, Optional

import numpy as np

from ..audio.types import AudioConfig, pcm_to_float
from ..core.errors import (
    InferenceError,
    PipelineCancelledError,
    RecentAudioBufferError,
    UnsupportedRateError,
)
from ..core.events import BenchmarkResult
from ..core.shutdown import GracefulShutdown, StopSignal
from ..core.worker import END_OF_STREAM, QueueWorker
from .detector import DEFAULT_SPEECH_THRESHOLD, SpeechDetector, SpeechTimestamp
from .engine import InferenceEngine
from .merger import Segment, merge_segments
from .resampler import AdaptiveResampler, PositionMap
from .stitcher import AudioStitcher

logger = logging.getLogger(__name__)

VAD_MAX_SAMPLE_RATE = 16000
VAD_MIN_SAMPLE_RATE = 8000
DEFAULT_CHUNK_SIZE_B = 4096
DEFAULT_STITCH_MS = 1600

ProgressCallback = Callable[[float], None]


def processing_rate_for(sample_rate_hz: int) -> int:
    if sample_rate_hz <= 0:
        raise UnsupportedRateError(f"Sample rate must be positive, got {sample_rate_hz}")
    return VAD_MAX_SAMPLE_RATE if sample_rate_hz >= VAD_MAX_SAMPLE_RATE else VAD_MIN_SAMPLE_RATE


def default_pool_size(cores: Optional[int] = None) -> int:
    cores = cores or os.cpu_count() or 1
    if cores <= 2:
        return 2
    if cores <= 4:
        return 4
    return min(cores - 1, 8)


@dataclass(frozen=True)
class PipelineResult:
    """Outcome of one pipeline run, handed to whoever writes the file."""
    audio: bytes
    segments: list[Segment]
    timestamps: list[SpeechTimestamp]
    processing_rate: int
    total_samples: int
    aborted: bool = False
    elapsed_s: float = 0.0
    position_map: Optional[PositionMap] = None


class ProgressReporter:
    """Forwards non-decreasing progress in [0, 1], once per whole percent."""

    def __init__(self, callback: Optional[ProgressCallback]):
        self._callback = callback
        self._last_percent = -1
        self._last_fraction = 0.0
        self._lock = threading.Lock()

    def report(self, fraction: float, force: bool = False) -> None:
        if self._callback is None:
            return
        with self._lock:
            fraction = min(max(fraction, self._last_fraction, 0.0), 1.0)
            percent = int(fraction * 100)
            if not force and percent <= self._last_percent:
                return
            self._last_fraction = fraction
            self._last_percent = max(percent, self._last_percent)
        self._callback(fraction)


@dataclass(frozen=True)
class ReadySlot:
    """A filled pool slot: which buffer, how many valid samples, input position."""
    slot: int
    count: int
    in_count: int
    end_byte: int


@dataclass
class _StopEither:
    """Stop when either signal is set."""
    first: StopSignal
    second: StopSignal

    def is_set(self) -> bool:
        return self.first.is_set() or self.second.is_set()


class ResampleProducer(threading.Thread):
    """Decodes snapshot chunks and resamples them into free pool slots."""

    def __init__(
        self,
        *,
        stop_signal: StopSignal,
        snapshot: bytes,
        config: AudioConfig,
        ratio: float,
        resampler: AdaptiveResampler,
        pool: list[np.ndarray],
        free_slots: "queue.Queue[int]",
        ready: "queue.Queue",
        chunk_bytes: int,
        poll_interval_s: float = 0.05,
    ):
        super().__init__(name="ResampleProducerThread", daemon=True)
        self._stop_signal = stop_signal
        self._snapshot = snapshot
        self._config = config
        self._ratio = ratio
        self._resampler = resampler
        self._pool = pool
        self._free_slots = free_slots
        self._ready = ready
        self._chunk_bytes = chunk_bytes
        self._poll_interval_s = poll_interval_s
        self.error: Optional[BaseException] = None

    def run(self) -> None:
        view = memoryview(self._snapshot)
        try:
            for offset in range(0, len(view), self._chunk_bytes):
                end = min(offset + self._chunk_bytes, len(view))
                floats = pcm_to_float(view[offset:end], self._config.bits_per_sample)
                slot = self._acquire_slot()
                if slot is None:
                    break
                count = self._resampler.resample_into(floats, self._ratio, self._pool[slot])
                self._ready.put(ReadySlot(slot=slot, count=count, in_count=len(floats), end_byte=end))
        except Exception as e:
            logger.error("Producer failed: %s", e, exc_info=True)
            self.error = e
        finally:
            try:
                self._ready.put_nowait(END_OF_STREAM)
            except queue.Full:
                logger.error("Ready queue full; consumer will exit on its stop signal")

    def _acquire_slot(self) -> Optional[int]:
        while not self._stop_signal.is_set():
            try:
                return self._free_slots.get(timeout=self._poll_interval_s)
            except queue.Empty:
                continue
        return None


class InferenceConsumer(QueueWorker[ReadySlot]):
    """Runs the detector over filled slots in FIFO order and recycles them."""

    def __init__(
        self,
        *,
        stop_signal: StopSignal,
        detector: SpeechDetector,
        position_map: PositionMap,
        pool: list[np.ndarray],
        free_slots: "queue.Queue[int]",
        ready: "queue.Queue",
        on_chunk_done: Callable[[int], None],
        poll_interval_s: float = 0.05,
    ):
        super().__init__(
            name="InferenceConsumerThread",
            stop_signal=stop_signal,
            input_queue=ready,
            poll_interval_s=poll_interval_s,
        )
        self._detector = detector
        self._position_map = position_map
        self._pool = pool
        self._free_slots = free_slots
        self._on_chunk_done = on_chunk_done
        self.timestamps: list[SpeechTimestamp] = []
        self.done = threading.Event()

    def run(self) -> None:
        try:
            super().run()
        finally:
            self.done.set()

    def handle(self, item: ReadySlot) -> None:
        self._position_map.add_chunk(item.in_count, item.count)
        try:
            self.timestamps.extend(self._detector.feed(self._pool[item.slot][: item.count]))
        finally:
            self._free_slots.put_nowait(item.slot)
        self._on_chunk_done(item.end_byte)


class VadPipeline:
    """
    Removes non-speech from a captured snapshot.

    One detector (and so one recurrent state) is created per run and used by
    a single thread; concurrent runs on the same pipeline object are safe
    because they share only the stateless engine, resampler and stitcher.
    """

    def __init__(
        self,
        engine: InferenceEngine,
        threshold: float = DEFAULT_SPEECH_THRESHOLD,
        chunk_size_bytes: int = DEFAULT_CHUNK_SIZE_B,
        parallel: bool = True,
        pool_size: Optional[int] = None,
        resampler: Optional[AdaptiveResampler] = None,
        stitcher: Optional[AudioStitcher] = None,
    ):
        if chunk_size_bytes < 2:
            raise ValueError("chunk_size_bytes must be at least 2")
        self._engine = engine
        self.threshold = threshold
        self.chunk_size_bytes = chunk_size_bytes
        self.parallel = parallel
        self.pool_size = pool_size or default_pool_size()
        self._resampler = resampler or AdaptiveResampler()
        self._stitcher = stitcher or AudioStitcher()

    def run(
        self,
        snapshot: bytes,
        config: AudioConfig,
        stitch_ms: int = DEFAULT_STITCH_MS,
        on_progress: Optional[ProgressCallback] = None,
        stop_signal: Optional[StopSignal] = None,
    ) -> bytes:
        return self.analyze(snapshot, config, stitch_ms, on_progress, stop_signal).audio

    def analyze(
        self,
        snapshot: bytes,
        config: AudioConfig,
        stitch_ms: int = DEFAULT_STITCH_MS,
        on_progress: Optional[ProgressCallback] = None,
        stop_signal: Optional[StopSignal] = None,
    ) -> PipelineResult:
        if stitch_ms < 0:
            raise ValueError("stitch_ms must be non-negative")
        if config.bits_per_sample not in (8, 16):
            raise UnsupportedRateError(f"Only 8-bit and 16-bit audio supported, got {config.bits_per_sample}")
        processing_rate = processing_rate_for(config.sample_rate_hz)
        stop_signal = stop_signal or GracefulShutdown()
        progress = ProgressReporter(on_progress)
        started = time.perf_counter()

        detector = SpeechDetector(self._engine, sample_rate=processing_rate, threshold=self.threshold)
        position_map = PositionMap(config.sample_rate_hz / float(processing_rate))
        progress.report(0.0, force=True)

        ratio = processing_rate / float(config.sample_rate_hz)
        chunk_bytes = self.chunk_size_bytes - (self.chunk_size_bytes % config.bytes_per_sample)
        if self.parallel and len(snapshot) > chunk_bytes:
            timestamps, aborted = self._detect_parallel(
                snapshot, config, ratio, chunk_bytes, detector, position_map, progress, stop_signal
            )
        else:
            timestamps, aborted = self._detect_sequential(
                snapshot, config, ratio, chunk_bytes, detector, position_map, progress, stop_signal
            )

        if stop_signal.is_set():
            raise PipelineCancelledError("VAD pipeline cancelled")

        timestamps.extend(detector.finish_partial() if aborted else detector.finish())
        total_samples = detector.total_samples
        segments = merge_segments(timestamps, stitch_ms, processing_rate, total_samples)
        audio = self._stitcher.stitch(
            snapshot, segments, config, processing_rate, stitch_ms, position_map
        )
        elapsed = time.perf_counter() - started
        progress.report(1.0, force=True)

        logger.info(
            "VAD kept %d segment(s): %d -> %d bytes in %.2f s%s",
            len(segments), len(snapshot), len(audio), elapsed,
            " (aborted, partial result)" if aborted else "",
        )
        return PipelineResult(
            audio=audio,
            segments=segments,
            timestamps=timestamps,
            processing_rate=processing_rate,
            total_samples=total_samples,
            aborted=aborted,
            elapsed_s=elapsed,
            position_map=position_map,
        )

    def _detect_sequential(
        self,
        snapshot: bytes,
        config: AudioConfig,
        ratio: float,
        chunk_bytes: int,
        detector: SpeechDetector,
        position_map: PositionMap,
        progress: ProgressReporter,
        stop_signal: StopSignal,
    ) -> tuple[list[SpeechTimestamp], bool]:
        timestamps: list[SpeechTimestamp] = []
        view = memoryview(snapshot)
        total = len(view)
        for offset in range(0, total, chunk_bytes):
            if stop_signal.is_set():
                break
            end = min(offset + chunk_bytes, total)
            floats = pcm_to_float(view[offset:end], config.bits_per_sample)
            resampled = self._resampler.resample(floats, ratio)
            position_map.add_chunk(len(floats), len(resampled))
            try:
                timestamps.extend(detector.feed(resampled))
            except InferenceError as e:
                logger.error("Inference failed at byte %d; keeping partial result: %s", offset, e)
                return timestamps, True
            progress.report(end / total)
        return timestamps, False

    def _detect_parallel(
        self,
        snapshot: bytes,
        config: AudioConfig,
        ratio: float,
        chunk_bytes: int,
        detector: SpeechDetector,
        position_map: PositionMap,
        progress: ProgressReporter,
        stop_signal: StopSignal,
    ) -> tuple[list[SpeechTimestamp], bool]:
        chunk_samples = chunk_bytes // config.bytes_per_sample
        slot_capacity = int(math.ceil(chunk_samples * ratio)) + 1
        pool = [np.zeros(slot_capacity, dtype=np.float32) for _ in range(self.pool_size)]
        free_slots: queue.Queue[int] = queue.Queue(maxsize=self.pool_size)
        for i in range(self.pool_size):
            free_slots.put_nowait(i)
        # One extra place for END_OF_STREAM; data items are bounded by the pool.
        ready: queue.Queue = queue.Queue(maxsize=self.pool_size + 1)
        total = len(snapshot)

        consumer = InferenceConsumer(
            stop_signal=stop_signal,
            detector=detector,
            position_map=position_map,
            pool=pool,
            free_slots=free_slots,
            ready=ready,
            on_chunk_done=lambda end_byte: progress.report(end_byte / total),
        )
        producer = ResampleProducer(
            stop_signal=_StopEither(stop_signal, consumer.done),
            snapshot=snapshot,
            config=config,
            ratio=ratio,
            resampler=self._resampler,
            pool=pool,
            free_slots=free_slots,
            ready=ready,
            chunk_bytes=chunk_bytes,
        )
        consumer.start()
        producer.start()
        producer.join()
        consumer.join()

        if producer.error is not None:
            raise producer.error
        if consumer.error is not None:
            if isinstance(consumer.error, InferenceError):
                logger.error("Inference failed; keeping partial result: %s", consumer.error)
                return consumer.timestamps, True
            raise consumer.error
        return consumer.timestamps, False

    def benchmark(
        self,
        snapshot: bytes,
        config: AudioConfig,
        runs: int = 3,
        warmup: int = 1,
        stitch_ms: int = DEFAULT_STITCH_MS,
    ) -> BenchmarkResult:
        """Average wall time and peak traced allocation of `analyze`."""
        if runs <= 0:
            raise ValueError("runs must be > 0")
        for _ in range(warmup):
            try:
                self.analyze(snapshot, config, stitch_ms)
            except RecentAudioBufferError as e:
                logger.warning("Benchmark warmup run failed: %s", e)

        gc.collect()
        times_ms: list[float] = []
        allocs: list[int] = []
        for _ in range(runs):
            tracemalloc.start()
            started = time.perf_counter()
            try:
                self.analyze(snapshot, config, stitch_ms)
            except RecentAudioBufferError as e:
                logger.warning("Benchmark run failed: %s", e)
            finally:
                times_ms.append((time.perf_counter() - started) * 1000.0)
                _current, peak = tracemalloc.get_traced_memory()
                tracemalloc.stop()
                allocs.append(peak)
            time.sleep(0.05)
        return BenchmarkResult(
            avg_ms=sum(times_ms) / len(times_ms),
            avg_alloc_bytes=int(sum(allocs) / len(allocs)),
        )
