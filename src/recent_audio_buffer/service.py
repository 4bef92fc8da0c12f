"""Facade tying the recorder and the VAD pipeline together for outer layers."""

from __future__ import annotations

import logging
import queue
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass
from typing import Optional

from .audio.input.recorder import RingBufferRecorder
from .audio.input.source import AudioSource, SoundDeviceSource
from .audio.types import AudioConfig
from .audio.wav import WAV_HEADER_SIZE, build_wav_header, read_wav_header
from .config.settings import BufferSettings
from .core.errors import UnsupportedRateError
from .core.events import RecorderEvent, RecorderState
from .core.shutdown import GracefulShutdown, StopSignal
from .vad.engine import InferenceEngine, SileroInferenceEngine
from .vad.pipeline import ProgressCallback, VadPipeline

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Clip:
    """Audio ready to be written out: raw PCM plus its format."""
    pcm: bytes
    config: AudioConfig
    trimmed: bool = False

    @property
    def duration_seconds(self) -> float:
        return self.config.duration_of(len(self.pcm))

    def wav_header(self) -> bytes:
        return build_wav_header(len(self.pcm), self.config)

    def to_wav_bytes(self) -> bytes:
        return self.wav_header() + self.pcm


@dataclass(frozen=True)
class ClipJob:
    """A clip being prepared in the background, with its cancellation token."""
    future: "Future[Clip]"
    stop_signal: GracefulShutdown

    def cancel(self) -> None:
        self.stop_signal.stop()
        self.future.cancel()

    def result(self, timeout: Optional[float] = None) -> Clip:
        return self.future.result(timeout)


class BufferService:
    """
    Always-on recent-audio buffer.

    Settings are read when recording starts; changing them takes effect on
    the next `start()`.
    """

    def __init__(
        self,
        settings: BufferSettings,
        source: Optional[AudioSource] = None,
        engine: Optional[InferenceEngine] = None,
    ):
        self.settings = settings
        self._source = source or SoundDeviceSource(device=settings.input_device, frame_ms=settings.frame_ms)
        self._engine = engine
        self._pipeline: Optional[VadPipeline] = None
        self._executor: Optional[ThreadPoolExecutor] = None
        self.recorder = RingBufferRecorder(self._source, frame_ms=settings.frame_ms)

    @property
    def is_recording(self) -> bool:
        return self.recorder.is_recording

    @property
    def state(self) -> RecorderState:
        return self.recorder.state

    @property
    def events(self) -> "queue.Queue[RecorderEvent]":
        return self.recorder.events

    @property
    def pipeline(self) -> VadPipeline:
        if self._pipeline is None:
            engine = self._engine or SileroInferenceEngine()
            self._pipeline = VadPipeline(
                engine,
                threshold=self.settings.speech_threshold,
                parallel=self.settings.parallel_pipeline,
                pool_size=self.settings.pipeline_pool_size,
            )
        return self._pipeline

    def start(self) -> None:
        problem = self.settings.buffer_size_error()
        if problem:
            logger.warning(problem)
        self.recorder.start(self.settings.to_audio_config())

    def stop(self) -> None:
        self.recorder.stop()

    def close(self) -> None:
        if self._executor is not None:
            self._executor.shutdown(wait=True)
            self._executor = None
        self.recorder.close()

    def reset(self) -> None:
        self.recorder.reset()

    def prepare_clip(
        self,
        on_progress: Optional[ProgressCallback] = None,
        stop_signal: Optional[StopSignal] = None,
    ) -> Clip:
        """
        Snapshot the buffer and, with auto-trim on, remove the non-speech.

        Falls back to the untrimmed snapshot when the format cannot be
        processed or trimming leaves nothing, so the user's audio is never
        lost. PipelineCancelledError propagates to the caller.
        """
        config = self.recorder.config or self.settings.to_audio_config()
        snapshot = self.recorder.snapshot()
        if not self.settings.auto_trim_enabled:
            return Clip(snapshot, config, trimmed=False)
        return self._trim(snapshot, config, on_progress, stop_signal)

    def trim_wav(
        self,
        wav_bytes: bytes,
        on_progress: Optional[ProgressCallback] = None,
        stop_signal: Optional[StopSignal] = None,
    ) -> Clip:
        """
        Remove the non-speech from an existing WAV file.

        Runs whatever the auto-trim setting is. Raises ValueError for a
        header this package cannot read.
        """
        config, _data_len = read_wav_header(wav_bytes)
        data = wav_bytes[WAV_HEADER_SIZE:]
        data = data[: len(data) - len(data) % config.bytes_per_sample]
        return self._trim(data, config, on_progress, stop_signal)

    def _trim(
        self,
        snapshot: bytes,
        config: AudioConfig,
        on_progress: Optional[ProgressCallback],
        stop_signal: Optional[StopSignal],
    ) -> Clip:
        if not snapshot:
            return Clip(snapshot, config, trimmed=False)
        try:
            audio = self.pipeline.run(
                snapshot,
                config,
                stitch_ms=self.settings.stitch_ms,
                on_progress=on_progress,
                stop_signal=stop_signal,
            )
        except UnsupportedRateError as e:
            logger.warning("Cannot trim this format, keeping full clip: %s", e)
            return Clip(snapshot, config, trimmed=False)

        if not audio:
            logger.info("No speech found, keeping full clip")
            return Clip(snapshot, config, trimmed=False)
        return Clip(audio, config, trimmed=True)

    def submit_clip(self, on_progress: Optional[ProgressCallback] = None) -> ClipJob:
        """Run `prepare_clip` on a worker thread; one clip is prepared at a time."""
        if self._executor is None:
            self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="ClipWorker")
        stop_signal = GracefulShutdown()
        future = self._executor.submit(self.prepare_clip, on_progress, stop_signal)
        return ClipJob(future=future, stop_signal=stop_signal)
