"""Continuous capture into a ring buffer."""

from __future__ import annotations

import logging
import queue
import threading
from typing import Callable, Optional

from ...core.errors import (
    AllocationFailureError,
    CaptureStartError,
    DeviceReadError,
    DeviceStoppedError,
)
from ...core.events import EventKind, RecorderEvent, RecorderState
from ...core.shutdown import GracefulShutdown
from ..types import AudioConfig
from .memory import MAX_BUFFER_SIZE_B, allocate_ring, plan_capacity
from .ring_buffer import RingBuffer
from .source import AudioSource

logger = logging.getLogger(__name__)


class CaptureThread(threading.Thread):
    """
    Reads fixed-size chunks from the source and writes them into the ring.

    Keep this loop lightweight; no VAD here. Transient read errors are
    logged and skipped, a stopped device ends the loop.
    """

    def __init__(
        self,
        stop_signal: GracefulShutdown,
        source: AudioSource,
        ring: RingBuffer,
        chunk_bytes: int,
        on_event: Callable[[RecorderEvent], None],
        retry_delay_s: float = 0.01,
    ):
        super().__init__(name="CaptureThread", daemon=True)
        self._stop_signal = stop_signal
        self._source = source
        self._ring = ring
        self._chunk_bytes = chunk_bytes
        self._on_event = on_event
        self._retry_delay_s = retry_delay_s
        self.fatal_error: Optional[BaseException] = None

    def run(self) -> None:
        logger.debug("Capture loop started (chunk=%d bytes)", self._chunk_bytes)
        try:
            while not self._stop_signal.is_set():
                try:
                    chunk = self._source.read(self._chunk_bytes)
                except DeviceStoppedError as e:
                    logger.error("Audio source stopped unexpectedly: %s", e)
                    self.fatal_error = e
                    self._on_event(RecorderEvent(EventKind.DEVICE_STOPPED, str(e), e))
                    break
                except DeviceReadError as e:
                    logger.warning("Audio read error: %s", e)
                    self._on_event(RecorderEvent(EventKind.READ_ERROR, str(e), e))
                    self._stop_signal.wait(self._retry_delay_s)
                    continue

                if chunk:
                    self._ring.write(chunk)
        except Exception as e:
            logger.error("Error in capture loop: %s", e, exc_info=True)
            self.fatal_error = e
            self._on_event(RecorderEvent(EventKind.DEVICE_STOPPED, str(e), e))
        finally:
            logger.info("Capture loop stopped")


class RingBufferRecorder:
    """
    Owns the ring buffer and the capture thread for one recording session.

    The ring is the only state shared with the capture thread; `snapshot()`
    and `reset()` take the same lock as the capture writes.
    """

    def __init__(
        self,
        source: AudioSource,
        frame_ms: int = 20,
        max_buffer_bytes: int = MAX_BUFFER_SIZE_B,
        max_events: int = 100,
        join_timeout_s: float = 2.0,
    ):
        self._source = source
        self._frame_ms = frame_ms
        self._max_buffer_bytes = max_buffer_bytes
        self._join_timeout_s = join_timeout_s
        self._lifecycle_lock = threading.RLock()
        self._ring = RingBuffer(0)
        self._config: Optional[AudioConfig] = None
        self._thread: Optional[CaptureThread] = None
        self._shutdown: Optional[GracefulShutdown] = None
        self._state = RecorderState.IDLE
        self._last_error: Optional[BaseException] = None
        self.events: queue.Queue[RecorderEvent] = queue.Queue(maxsize=max_events)

    @property
    def state(self) -> RecorderState:
        return self._state

    @property
    def is_recording(self) -> bool:
        thread = self._thread
        return self._state == RecorderState.RECORDING and thread is not None and thread.is_alive()

    @property
    def capacity(self) -> int:
        return self._ring.capacity

    @property
    def config(self) -> Optional[AudioConfig]:
        return self._config

    @property
    def last_error(self) -> Optional[BaseException]:
        return self._last_error

    def start(self, config: AudioConfig) -> None:
        """
        Allocate the buffer and begin capturing.

        Raises CaptureStartError (permission denied, device unavailable)
        without starting the loop. An allocation failure does not raise: the
        recorder ends up in the ERROR state with an ALLOCATION_FAILED event.
        """
        with self._lifecycle_lock:
            if self._state == RecorderState.RECORDING:
                logger.info("start() ignored: already recording")
                return
            if self._thread is not None:
                # Previous session ended on a device error; release it first.
                self.stop()

            plan = plan_capacity(config, max_bytes=self._max_buffer_bytes)
            for warning in plan.warnings:
                logger.warning(warning)
                self._publish(RecorderEvent(EventKind.CAPACITY_CLAMPED, warning))

            allocation = allocate_ring(plan.capacity, config.bytes_per_sample)
            if allocation.failed:
                error = AllocationFailureError(
                    f"Could not allocate a ring buffer of {plan.capacity} bytes"
                )
                error.__cause__ = allocation.error
                self._ring = allocation.ring
                self._config = config
                self._fail(EventKind.ALLOCATION_FAILED, error)
                return
            if allocation.degraded:
                self._publish(RecorderEvent(
                    EventKind.ALLOCATION_DEGRADED,
                    f"Ring buffer degraded to {allocation.ring.capacity} bytes",
                ))

            try:
                self._source.open(config)
            except CaptureStartError as e:
                logger.error("Failed to start recording: %s", e)
                self._fail(EventKind.START_FAILED, e)
                raise

            self._ring = allocation.ring
            self._config = config
            self._last_error = None
            self._shutdown = GracefulShutdown()
            chunk_bytes = max(
                config.bytes_per_sample,
                int(config.sample_rate_hz * self._frame_ms / 1000) * config.bytes_per_sample,
            )
            self._thread = CaptureThread(
                stop_signal=self._shutdown,
                source=self._source,
                ring=self._ring,
                chunk_bytes=chunk_bytes,
                on_event=self._on_capture_event,
            )
            self._state = RecorderState.RECORDING
            self._thread.start()
            logger.info(
                "Recording started: %d Hz, %d-bit, capacity=%d bytes (%.1f s)",
                config.sample_rate_hz, config.bits_per_sample,
                self._ring.capacity, config.duration_of(self._ring.capacity),
            )
            self._publish(RecorderEvent(EventKind.STARTED))

    def stop(self) -> None:
        """Stop capturing and release the source. Captured audio stays readable."""
        with self._lifecycle_lock:
            thread, shutdown = self._thread, self._shutdown
            if thread is None:
                return
            if shutdown is not None:
                shutdown.stop()
            thread.join(timeout=self._join_timeout_s)
            if thread.is_alive():
                logger.warning("Capture thread did not exit within %.1f s", self._join_timeout_s)
            self._thread = None
            self._shutdown = None
            self._source.close()
            if self._state == RecorderState.RECORDING:
                self._state = RecorderState.STOPPED
            logger.info("Recording stopped")
            self._publish(RecorderEvent(EventKind.STOPPED))

    def close(self) -> None:
        """Stop and free the buffer storage."""
        with self._lifecycle_lock:
            self.stop()
            self._ring = RingBuffer(0)

    def snapshot(self) -> bytes:
        """Chronological copy of the buffered audio (oldest first)."""
        return self._ring.snapshot()

    def reset(self) -> None:
        self._ring.reset()
        logger.info("Buffer reset")
        self._publish(RecorderEvent(EventKind.RESET))

    def buffered_seconds(self) -> float:
        config = self._config
        if config is None:
            return 0.0
        return config.duration_of(len(self._ring))

    def _on_capture_event(self, event: RecorderEvent) -> None:
        if event.kind == EventKind.DEVICE_STOPPED:
            self._state = RecorderState.ERROR
            self._last_error = event.error
        self._publish(event)

    def _fail(self, kind: EventKind, error: BaseException) -> None:
        self._state = RecorderState.ERROR
        self._last_error = error
        self._publish(RecorderEvent(kind, str(error), error))

    def _publish(self, event: RecorderEvent) -> None:
        # Drop the oldest event when nobody drains the queue.
        try:
            self.events.put_nowait(event)
        except queue.Full:
            try:
                self.events.get_nowait()
            except queue.Empty:
                pass
            try:
                self.events.put_nowait(event)
            except queue.Full:
                logger.debug("Event queue full, dropping %s", event.kind)
