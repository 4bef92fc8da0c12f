"""Tests for BufferService and Clip."""

import time
from concurrent.futures import CancelledError
from unittest.mock import MagicMock, patch

import numpy as np
import pytest

from recent_audio_buffer.audio.input.source import QueueAudioSource
from recent_audio_buffer.audio.types import AudioConfig
from recent_audio_buffer.audio.wav import build_wav_header, read_wav_header
from recent_audio_buffer.config.settings import BufferSettings
from recent_audio_buffer.core.errors import PipelineCancelledError, UnsupportedRateError
from recent_audio_buffer.core.events import RecorderState
from recent_audio_buffer.core.shutdown import GracefulShutdown
from recent_audio_buffer.service import BufferService, Clip

from .conftest import EnergyEngine, silence, square_wave, to_pcm16


def wait_for(predicate, timeout=3.0):
    deadline = time.time() + timeout
    while time.time() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return predicate()


@pytest.fixture(autouse=True)
def plenty_of_memory():
    with patch("recent_audio_buffer.audio.input.memory.available_memory_bytes", return_value=10**10):
        yield


@pytest.fixture
def settings():
    return BufferSettings(buffer_duration_s=20, stitch_ms=200, parallel_pipeline=False)


@pytest.fixture
def source():
    return QueueAudioSource()


def record(service, source, pcm):
    source.push(pcm)
    assert wait_for(lambda: len(service.recorder.snapshot()) == len(pcm))


class TestBufferService:

    def test_clip_trims_silence(self, settings, source):
        service = BufferService(settings, source=source, engine=EnergyEngine())
        service.start()
        try:
            assert service.is_recording
            pcm = to_pcm16(np.concatenate([square_wave(16000), silence(16000 * 4), square_wave(16000)]))
            record(service, source, pcm)
            clip = service.prepare_clip()
        finally:
            service.close()

        assert clip.trimmed
        assert 0 < len(clip.pcm) < len(pcm)
        assert clip.duration_seconds < 6.0

    def test_clip_without_auto_trim_is_raw_snapshot(self, source):
        settings = BufferSettings(buffer_duration_s=20, auto_trim_enabled=False)
        engine = MagicMock()
        service = BufferService(settings, source=source, engine=engine)
        service.start()
        pcm = to_pcm16(silence(8000))
        record(service, source, pcm)
        clip = service.prepare_clip()
        service.close()

        assert clip == Clip(pcm, settings.to_audio_config(), trimmed=False)
        engine.infer.assert_not_called()

    def test_all_silence_falls_back_to_snapshot(self, settings, source):
        service = BufferService(settings, source=source, engine=EnergyEngine())
        service.start()
        pcm = to_pcm16(silence(16000 * 2))
        record(service, source, pcm)
        clip = service.prepare_clip()
        service.close()

        assert not clip.trimmed
        assert clip.pcm == pcm

    def test_unsupported_rate_falls_back_to_snapshot(self, settings, source):
        service = BufferService(settings, source=source, engine=EnergyEngine())
        service.start()
        pcm = to_pcm16(square_wave(8000))
        record(service, source, pcm)
        with patch.object(type(service.pipeline), "run", side_effect=UnsupportedRateError("nope")):
            clip = service.prepare_clip()
        service.close()

        assert not clip.trimmed
        assert clip.pcm == pcm

    def test_cancellation_propagates(self, settings, source):
        service = BufferService(settings, source=source, engine=EnergyEngine())
        service.start()
        record(service, source, to_pcm16(square_wave(16000)))
        stop = GracefulShutdown()
        stop.stop()
        with pytest.raises(PipelineCancelledError):
            service.prepare_clip(stop_signal=stop)
        service.close()

    def test_stop_then_save(self, settings, source):
        service = BufferService(settings, source=source, engine=EnergyEngine())
        service.start()
        pcm = to_pcm16(square_wave(16000))
        record(service, source, pcm)
        service.stop()
        assert service.state == RecorderState.STOPPED
        clip = service.prepare_clip()
        assert clip.pcm == pcm

    def test_reset(self, settings, source):
        service = BufferService(settings, source=source, engine=EnergyEngine())
        service.start()
        record(service, source, to_pcm16(square_wave(1000)))
        service.reset()
        assert service.prepare_clip().pcm == b""
        service.close()

    def test_pipeline_uses_settings(self, source):
        settings = BufferSettings(speech_threshold=0.7, parallel_pipeline=True, pipeline_pool_size=3)
        service = BufferService(settings, source=source, engine=EnergyEngine())
        assert service.pipeline.threshold == 0.7
        assert service.pipeline.parallel is True
        assert service.pipeline.pool_size == 3
        assert service.pipeline is service.pipeline

    def test_submit_clip_matches_prepare_clip(self, settings, source):
        service = BufferService(settings, source=source, engine=EnergyEngine())
        service.start()
        try:
            pcm = to_pcm16(np.concatenate([square_wave(16000), silence(16000 * 4), square_wave(16000)]))
            record(service, source, pcm)
            progress = []
            job = service.submit_clip(on_progress=progress.append)
            clip = job.result(timeout=10)
            assert clip == service.prepare_clip()
        finally:
            service.close()

        assert clip.trimmed
        assert progress[0] == 0.0
        assert progress[-1] == 1.0

    def test_cancelled_job_never_returns_a_clip(self, settings, source):
        service = BufferService(settings, source=source, engine=EnergyEngine())
        service.start()
        record(service, source, to_pcm16(square_wave(16000 * 2)))
        job = service.submit_clip()
        job.cancel()
        assert job.stop_signal.is_set()
        with pytest.raises((PipelineCancelledError, CancelledError)):
            job.result(timeout=10)
        service.close()

    def test_close_shuts_down_clip_worker(self, settings, source):
        service = BufferService(settings, source=source, engine=EnergyEngine())
        service.start()
        record(service, source, to_pcm16(square_wave(1000)))
        service.submit_clip().result(timeout=10)
        service.close()
        assert service._executor is None

    def test_default_source_is_sounddevice(self):
        settings = BufferSettings(input_device=2, frame_ms=10)
        with patch("recent_audio_buffer.service.SoundDeviceSource") as MockSource:
            BufferService(settings)
        MockSource.assert_called_once_with(device=2, frame_ms=10)


class TestTrimWav:

    def test_speech_silence_speech_file_gets_shorter(self, settings, source):
        pcm = to_pcm16(np.concatenate([square_wave(16000), silence(16000 * 4), square_wave(16000)]))
        config = AudioConfig(sample_rate_hz=16000, bits_per_sample=16, buffer_duration_s=0)
        wav = build_wav_header(len(pcm), config) + pcm
        service = BufferService(settings, source=source, engine=EnergyEngine())

        clip = service.trim_wav(wav)

        assert clip.trimmed
        assert clip.config.sample_rate_hz == 16000
        assert 0 < len(clip.pcm) < len(pcm)
        assert len(clip.to_wav_bytes()) < len(wav)
        assert not service.is_recording

    def test_silent_file_is_returned_unchanged(self, settings, source):
        pcm = to_pcm16(silence(16000))
        config = AudioConfig(sample_rate_hz=16000, bits_per_sample=16, buffer_duration_s=0)
        clip = BufferService(settings, source=source, engine=EnergyEngine()).trim_wav(
            build_wav_header(len(pcm), config) + pcm
        )
        assert not clip.trimmed
        assert clip.pcm == pcm

    def test_header_only_file(self, settings, source):
        config = AudioConfig(sample_rate_hz=8000, bits_per_sample=8, buffer_duration_s=0)
        clip = BufferService(settings, source=source, engine=MagicMock()).trim_wav(build_wav_header(0, config))
        assert clip.pcm == b""
        assert not clip.trimmed

    def test_invalid_header_rejected(self, settings, source):
        with pytest.raises(ValueError):
            BufferService(settings, source=source, engine=EnergyEngine()).trim_wav(b"not a wav file")

    def test_clipped_file_written_next_to_input(self, settings, source, tmp_path):
        from main import clipped_path, trim_file

        pcm = to_pcm16(np.concatenate([square_wave(16000), silence(16000 * 4), square_wave(16000)]))
        config = AudioConfig(sample_rate_hz=16000, bits_per_sample=16, buffer_duration_s=0)
        path = tmp_path / "meeting.WAV"
        path.write_bytes(build_wav_header(len(pcm), config) + pcm)

        out_path = trim_file(BufferService(settings, source=source, engine=EnergyEngine()), path)

        assert out_path == clipped_path(path) == tmp_path / "meeting_clipped.wav"
        parsed, data_len = read_wav_header(out_path.read_bytes())
        assert parsed.sample_rate_hz == 16000
        assert 0 < data_len < len(pcm)


class TestClip:

    def test_wav_bytes(self):
        config = AudioConfig(sample_rate_hz=8000, bits_per_sample=8, buffer_duration_s=1)
        clip = Clip(b"\x80" * 4000, config)
        wav = clip.to_wav_bytes()
        assert len(wav) == 44 + 4000
        parsed, data_len = read_wav_header(wav)
        assert parsed.sample_rate_hz == 8000
        assert data_len == 4000
        assert clip.duration_seconds == 0.5
