"""Fixed-capacity circular byte store with oldest-first snapshots."""

from __future__ import annotations

import threading


class RingBuffer:
    """
    Circular byte store guarded by a single lock.

    Once the total number of bytes written reaches the capacity the buffer
    has overflowed: every byte is live and new writes overwrite the oldest
    data. `snapshot()` linearizes the contents oldest-first.
    """

    def __init__(self, capacity: int):
        if capacity < 0:
            raise ValueError("capacity must not be negative")
        self._storage = bytearray(capacity)
        self._capacity = capacity
        self._write_cursor = 0
        self._has_overflowed = False
        self._lock = threading.Lock()

    @property
    def capacity(self) -> int:
        return self._capacity

    @property
    def write_cursor(self) -> int:
        with self._lock:
            return self._write_cursor

    @property
    def has_overflowed(self) -> bool:
        with self._lock:
            return self._has_overflowed

    def __len__(self) -> int:
        """Number of live bytes."""
        with self._lock:
            return self._capacity if self._has_overflowed else self._write_cursor

    def write(self, chunk: bytes | bytearray | memoryview) -> None:
        n = len(chunk)
        if n == 0 or self._capacity == 0:
            return
        cap = self._capacity
        with self._lock:
            if n >= cap:
                # Only the newest `cap` bytes survive, laid out as if written one by one.
                tail = chunk[n - cap:]
                cursor = (self._write_cursor + n) % cap
                head = cap - cursor
                self._storage[cursor:] = tail[:head]
                self._storage[:cursor] = tail[head:]
                self._write_cursor = cursor
                self._has_overflowed = True
                return

            cursor = self._write_cursor
            end = cursor + n
            if end > cap:
                head = cap - cursor
                self._storage[cursor:] = chunk[:head]
                remainder = n - head
                self._storage[:remainder] = chunk[head:]
                self._write_cursor = remainder
                self._has_overflowed = True
            else:
                self._storage[cursor:end] = chunk
                if end == cap:
                    self._write_cursor = 0
                    self._has_overflowed = True
                else:
                    self._write_cursor = end

    def snapshot(self) -> bytes:
        with self._lock:
            cursor = self._write_cursor
            if not self._has_overflowed:
                return bytes(self._storage[:cursor])
            return bytes(self._storage[cursor:]) + bytes(self._storage[:cursor])

    def reset(self) -> None:
        """Logically clear the buffer; stored bytes are not wiped."""
        with self._lock:
            self._write_cursor = 0
            self._has_overflowed = False
