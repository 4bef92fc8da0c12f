import pytest
from unittest.mock import patch
from pydantic import ValidationError
from recent_audio_buffer.config.settings import BufferSettings, load_config, create_example_env_file
from pathlib import Path
import tempfile
import os


class TestConfig:
    def test_default_config(self):
        settings = BufferSettings()
        assert settings.sample_rate_hz == 16000
        assert settings.bits_per_sample == 16
        assert settings.buffer_duration_s == 300
        assert settings.auto_trim_enabled is True
        assert settings.stitch_ms == 1600
        assert settings.speech_threshold == 0.4
        assert settings.pipeline_pool_size is None

    def test_to_audio_config(self):
        config = BufferSettings(sample_rate_hz=8000, bits_per_sample=8, buffer_duration_s=60).to_audio_config()
        assert config.sample_rate_hz == 8000
        assert config.bits_per_sample == 8
        assert config.buffer_duration_s == 60

    @pytest.mark.parametrize("kwargs", [
        {"bits_per_sample": 24},
        {"sample_rate_hz": 0},
        {"buffer_duration_s": 0},
        {"stitch_ms": -1},
        {"speech_threshold": 1.5},
    ])
    def test_invalid_values(self, kwargs):
        with pytest.raises(ValidationError):
            BufferSettings(**kwargs)

    @patch.dict(os.environ, {
        "SAMPLE_RATE_HZ": "48000",
        "BITS_PER_SAMPLE": "8",
        "AUTO_TRIM_ENABLED": "false",
        "PIPELINE_POOL_SIZE": "3",
        "INPUT_DEVICE": "",
    })
    def test_load_config_from_env(self):
        settings = load_config(Path("does-not-exist.env"))
        assert settings.sample_rate_hz == 48000
        assert settings.bits_per_sample == 8
        assert settings.auto_trim_enabled is False
        assert settings.pipeline_pool_size == 3
        assert settings.input_device is None

    @patch.dict(os.environ, {"BITS_PER_SAMPLE": "12"})
    def test_load_config_rejects_bad_env(self):
        with pytest.raises(ValidationError):
            load_config(Path("does-not-exist.env"))

    def test_config_from_temp_file(self):
        with tempfile.NamedTemporaryFile(mode='w', suffix='.env', delete=False) as f:
            f.write("STITCH_MS=800\n")
            f.write("SPEECH_THRESHOLD=0.6\n")
            temp_path = f.name

        try:
            with patch.dict(os.environ, {}, clear=False):
                settings = load_config(Path(temp_path))
                assert settings.stitch_ms == 800
                assert settings.speech_threshold == 0.6
        finally:
            os.unlink(temp_path)

    def test_create_example_env_file(self, tmp_path):
        path = tmp_path / ".env.example"
        create_example_env_file(path)
        content = path.read_text()
        assert "SAMPLE_RATE_HZ=16000" in content
        assert "AUTO_TRIM_ENABLED=true" in content


class TestBufferSizeCheck:
    def test_default_fits(self):
        assert BufferSettings().buffer_size_error() is None

    def test_too_large_without_trim(self):
        settings = BufferSettings(sample_rate_hz=48000, bits_per_sample=16, buffer_duration_s=1600, auto_trim_enabled=False)
        assert "150000000" in settings.buffer_size_error()

    def test_trim_lowers_the_limit(self):
        # 48 kHz 16-bit: 96000 B/s; 1200 s = 115.2 MB fits 150 MB but not 100 MB
        untrimmed = BufferSettings(sample_rate_hz=48000, buffer_duration_s=1200, auto_trim_enabled=False)
        trimmed = BufferSettings(sample_rate_hz=48000, buffer_duration_s=1200, auto_trim_enabled=True)
        assert untrimmed.buffer_size_error() is None
        message = trimmed.buffer_size_error()
        assert "auto-trim" in message
        assert "1041 s" in message
