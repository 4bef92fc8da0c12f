import os
from pathlib import Path
from typing import Optional
from pydantic import BaseModel, Field, ConfigDict, field_validator
from dotenv import load_dotenv
import logging

from ..audio.types import AudioConfig
from ..audio.input.memory import MAX_BUFFER_SIZE_B

logger = logging.getLogger(__name__)

# The VAD pass holds decoded copies of the clip, so auto-trim lowers the ceiling.
AUTO_TRIM_MEMORY_FACTOR = 1.5


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() in ("true", "1", "yes")


def _env_optional_int(name: str) -> Optional[int]:
    value = os.getenv(name, "").strip()
    return int(value) if value else None


class BufferSettings(BaseModel):
    sample_rate_hz: int = Field(default=16000, gt=0, description="Capture sample rate in Hz")
    bits_per_sample: int = Field(default=16, description="PCM bit depth (8 or 16)")
    buffer_duration_s: int = Field(default=300, gt=0, description="Seconds of audio kept in the ring buffer")
    auto_trim_enabled: bool = Field(default=True, description="Run the VAD pass before a clip is saved")
    stitch_ms: int = Field(default=1600, ge=0, description="Merge gap, padding and crossfade length in milliseconds")
    speech_threshold: float = Field(default=0.4, ge=0.0, le=1.0, description="Speech probability threshold")
    parallel_pipeline: bool = Field(default=True, description="Resample and infer on separate threads")
    pipeline_pool_size: Optional[int] = Field(default=None, gt=0, description="Pooled buffers for the parallel pipeline; derived from CPU count when unset")
    input_device: Optional[int] = Field(default=None, description="sounddevice input device index; system default when unset")
    frame_ms: int = Field(default=20, gt=0, description="Capture block length in milliseconds")
    log_level: str = Field(default="INFO", description="Logging level")

    model_config = ConfigDict(
        env_file=".env",
        env_file_encoding="utf-8"
    )

    @field_validator("bits_per_sample")
    @classmethod
    def _check_bits(cls, value: int) -> int:
        if value not in (8, 16):
            raise ValueError("bits_per_sample must be 8 or 16")
        return value

    def to_audio_config(self) -> AudioConfig:
        return AudioConfig(
            sample_rate_hz=self.sample_rate_hz,
            bits_per_sample=self.bits_per_sample,
            buffer_duration_s=self.buffer_duration_s,
        )

    def buffer_size_error(self) -> Optional[str]:
        """Why the requested buffer is too large for this device, or None if it fits."""
        requested = self.sample_rate_hz * (self.bits_per_sample // 8) * self.buffer_duration_s
        limit = MAX_BUFFER_SIZE_B / AUTO_TRIM_MEMORY_FACTOR if self.auto_trim_enabled else MAX_BUFFER_SIZE_B
        if requested > limit:
            bytes_per_second = self.sample_rate_hz * (self.bits_per_sample // 8)
            max_seconds = int(limit // bytes_per_second)
            reason = " with auto-trim enabled" if self.auto_trim_enabled else ""
            return (
                f"Buffer of {requested} bytes exceeds the {int(limit)} byte limit{reason}; "
                f"use at most {max_seconds} s at this sample rate and bit depth"
            )
        return None


def load_config(config_path: Optional[Path] = None) -> BufferSettings:
    if config_path is None:
        config_path = Path(".env")

    if config_path.exists():
        load_dotenv(config_path)
        logger.info(f"Loaded environment variables from {config_path}")
    else:
        logger.warning(f"Config file {config_path} not found, using environment variables only")

    try:
        settings = BufferSettings(
            sample_rate_hz=int(os.getenv("SAMPLE_RATE_HZ", "16000")),
            bits_per_sample=int(os.getenv("BITS_PER_SAMPLE", "16")),
            buffer_duration_s=int(os.getenv("BUFFER_DURATION_S", "300")),
            auto_trim_enabled=_env_bool("AUTO_TRIM_ENABLED", "true"),
            stitch_ms=int(os.getenv("STITCH_MS", "1600")),
            speech_threshold=float(os.getenv("SPEECH_THRESHOLD", "0.4")),
            parallel_pipeline=_env_bool("PARALLEL_PIPELINE", "true"),
            pipeline_pool_size=_env_optional_int("PIPELINE_POOL_SIZE"),
            input_device=_env_optional_int("INPUT_DEVICE"),
            frame_ms=int(os.getenv("FRAME_MS", "20")),
            log_level=os.getenv("LOG_LEVEL", "INFO"),
        )

        problem = settings.buffer_size_error()
        if problem:
            logger.warning(problem)

        return settings

    except Exception as e:
        logger.error(f"Failed to load configuration: {e}")
        raise


def create_example_env_file(path: Path = Path(".env.example")):
    example_content = """# Capture format
SAMPLE_RATE_HZ=16000
BITS_PER_SAMPLE=16

# Seconds of recent audio kept in memory
BUFFER_DURATION_S=300

# Trim silence with voice activity detection before saving (true/false)
AUTO_TRIM_ENABLED=true

# Merge gap, padding and crossfade length in milliseconds
STITCH_MS=1600

# Speech probability threshold (0.0 - 1.0)
SPEECH_THRESHOLD=0.4

# Resample and run inference on separate threads (true/false)
PARALLEL_PIPELINE=true

# Pooled buffers for the parallel pipeline (leave empty to derive from CPU count)
PIPELINE_POOL_SIZE=

# Input device index from --list-devices (leave empty for the system default)
INPUT_DEVICE=

# Capture block length in milliseconds
FRAME_MS=20

# Logging level
LOG_LEVEL=INFO
"""

    with open(path, "w") as f:
        f.write(example_content)

    logger.info(f"Created example environment file at {path}")


def setup_logging(log_level: str = "INFO"):
    logging.basicConfig(
        level=getattr(logging, log_level.upper()),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S"
    )
