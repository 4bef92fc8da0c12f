"""Tests for the 44-byte WAV header and PCM helpers."""

import struct

import numpy as np
import pytest

from recent_audio_buffer.audio.types import AudioConfig, Encoding, int_to_pcm, pcm_to_float, pcm_to_int
from recent_audio_buffer.audio.wav import WAV_HEADER_SIZE, build_wav_header, read_wav_header


class TestWavHeader:

    def test_layout_16bit(self):
        config = AudioConfig(sample_rate_hz=16000, bits_per_sample=16)
        header = build_wav_header(32000, config)

        assert len(header) == WAV_HEADER_SIZE == 44
        assert header[0:4] == b"RIFF"
        assert struct.unpack("<I", header[4:8])[0] == 32036
        assert header[8:12] == b"WAVE"
        assert header[12:16] == b"fmt "
        assert struct.unpack("<I", header[16:20])[0] == 16
        assert struct.unpack("<H", header[20:22])[0] == 1
        assert struct.unpack("<H", header[22:24])[0] == 1
        assert struct.unpack("<I", header[24:28])[0] == 16000
        assert struct.unpack("<I", header[28:32])[0] == 32000
        assert struct.unpack("<H", header[32:34])[0] == 2
        assert struct.unpack("<H", header[34:36])[0] == 16
        assert header[36:40] == b"data"
        assert struct.unpack("<I", header[40:44])[0] == 32000

    def test_layout_8bit(self):
        header = build_wav_header(100, AudioConfig(sample_rate_hz=8000, bits_per_sample=8))
        assert struct.unpack("<I", header[28:32])[0] == 8000
        assert struct.unpack("<H", header[32:34])[0] == 1
        assert struct.unpack("<H", header[34:36])[0] == 8

    def test_empty_data(self):
        header = build_wav_header(0, AudioConfig())
        assert struct.unpack("<I", header[4:8])[0] == 36

    def test_negative_length_rejected(self):
        with pytest.raises(ValueError):
            build_wav_header(-1, AudioConfig())

    def test_read_back(self):
        header = build_wav_header(1234, AudioConfig(sample_rate_hz=44100, bits_per_sample=16))
        config, data_len = read_wav_header(header + b"\x00" * 10)
        assert config.sample_rate_hz == 44100
        assert config.bits_per_sample == 16
        assert data_len == 1234

    def test_read_rejects_short_or_foreign_data(self):
        with pytest.raises(ValueError):
            read_wav_header(b"RIFF")
        with pytest.raises(ValueError):
            read_wav_header(b"X" * 44)


class TestAudioConfig:

    def test_derived_values(self):
        config = AudioConfig(sample_rate_hz=16000, bits_per_sample=16, buffer_duration_s=300)
        assert config.bytes_per_sample == 2
        assert config.byte_rate == 32000
        assert config.requested_capacity_bytes == 9_600_000
        assert config.encoding == Encoding.PCM_16BIT
        assert config.duration_of(16000) == 0.5

    @pytest.mark.parametrize("kwargs", [
        {"bits_per_sample": 24},
        {"sample_rate_hz": 0},
        {"buffer_duration_s": -1},
    ])
    def test_invalid(self, kwargs):
        with pytest.raises(ValueError):
            AudioConfig(**kwargs)


class TestPcmHelpers:

    def test_16bit_decoding(self):
        data = np.array([0, 16384, -32768, 32767], dtype="<i2").tobytes()
        np.testing.assert_allclose(pcm_to_float(data, 16), [0.0, 0.5, -1.0, 32767 / 32768])

    def test_16bit_ignores_trailing_byte(self):
        data = np.array([100, 200], dtype="<i2").tobytes() + b"\x01"
        assert len(pcm_to_float(data, 16)) == 2
        assert len(pcm_to_int(data, 16)) == 2

    def test_8bit_decoding(self):
        data = bytes([128, 0, 255, 192])
        np.testing.assert_allclose(pcm_to_float(data, 8), [0.0, -1.0, 127 / 128, 0.5])
        np.testing.assert_array_equal(pcm_to_int(data, 8), [0, -128, 127, 64])

    def test_encoding_clips(self):
        assert int_to_pcm(np.array([40000, -40000]), 16) == np.array([32767, -32768], dtype="<i2").tobytes()
        assert int_to_pcm(np.array([300, -300, 0]), 8) == bytes([255, 0, 128])
