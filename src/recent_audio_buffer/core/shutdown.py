import threading
from typing import Protocol


class StopSignal(Protocol):
    """Protocol for cancellation signals checked by capture and pipeline loops."""

    def is_set(self) -> bool: ...


class GracefulShutdown:
    """
    Settable stop flag shared by the owner of a thread and the thread itself.

    One instance per capture session or pipeline run; `wait()` lets a loop
    back off between retries and still wake up as soon as stop is requested.
    """

    def __init__(self):
        self._event = threading.Event()

    def stop(self):
        self._event.set()

    def clear(self):
        self._event.clear()

    def is_set(self) -> bool:
        return self._event.is_set()

    def wait(self, timeout: float) -> bool:
        """Sleep up to `timeout` seconds; True if stop was requested."""
        return self._event.wait(timeout)
