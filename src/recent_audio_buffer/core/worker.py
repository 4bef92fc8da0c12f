"""Queue-draining worker threads with end-of-stream handling."""

from __future__ import annotations

import logging
import threading
import queue
from typing import Generic, TypeVar, Optional

from .shutdown import StopSignal

T = TypeVar("T")

logger = logging.getLogger(__name__)

# Placed on an input queue by a producer to tell the worker no more items follow.
END_OF_STREAM = object()


class QueueWorker(threading.Thread, Generic[T]):
    """
    Base class for a queue-consuming worker thread.

    Items are handled strictly in the order they were put on the queue.
    The worker exits when the stop signal is set, when it receives
    END_OF_STREAM, or when `handle()` raises. Exceptions never escape the
    thread: the first one is kept in `error` for the owner to inspect after
    `join()`.

    Subclasses only implement `handle(item)` and optionally `finish()`.
    """

    def __init__(
        self,
        *,
        name: str,
        stop_signal: StopSignal,
        input_queue: "queue.Queue[T]",
        poll_interval_s: float = 0.1,
        daemon: bool = True,
    ):
        super().__init__(name=name, daemon=daemon)
        self._stop_signal = stop_signal
        self._input_queue = input_queue
        self._poll_interval_s = poll_interval_s
        self.error: Optional[BaseException] = None
        self.reached_end = False

    def run(self) -> None:
        try:
            while not self._stop_signal.is_set():
                try:
                    item = self._input_queue.get(timeout=self._poll_interval_s)
                except queue.Empty:
                    continue

                try:
                    if item is END_OF_STREAM:
                        self.reached_end = True
                        break
                    self.handle(item)
                finally:
                    self._input_queue.task_done()
            self.finish()
        except Exception as e:
            logger.error("%s failed: %s", self.name, e, exc_info=True)
            self.error = e

    def handle(self, item: T) -> None:
        raise NotImplementedError

    def finish(self) -> None:
        """Called once after the loop exits normally."""
