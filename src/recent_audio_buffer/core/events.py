from dataclasses import dataclass, field
from enum import Enum, auto
from typing import Optional
import time


class RecorderState(Enum):
    IDLE = auto()
    RECORDING = auto()
    STOPPED = auto()
    ERROR = auto()


class EventKind(Enum):
    """Kinds of status updates published by the recorder."""
    STARTED = auto()
    STOPPED = auto()
    RESET = auto()
    CAPACITY_CLAMPED = auto()   # Requested capacity exceeded a limit
    ALLOCATION_DEGRADED = auto()  # First allocation failed, running with half capacity
    ALLOCATION_FAILED = auto()  # Recording effectively disabled
    READ_ERROR = auto()         # Transient; capture continues
    DEVICE_STOPPED = auto()     # Fatal; capture halted
    START_FAILED = auto()


@dataclass(frozen=True)
class RecorderEvent:
    """One status update from the capture side, safe to hand across threads."""
    kind: EventKind
    message: str = ""
    error: Optional[BaseException] = None
    timestamp: float = field(default_factory=time.time)

    @property
    def is_error(self) -> bool:
        return self.kind in (
            EventKind.ALLOCATION_FAILED,
            EventKind.DEVICE_STOPPED,
            EventKind.START_FAILED,
        )


@dataclass(frozen=True)
class BenchmarkResult:
    avg_ms: float
    avg_alloc_bytes: int
