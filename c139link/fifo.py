"""Single-producer, single-consumer byte ring buffer."""

from __future__ import annotations

import threading

DEFAULT_CAPACITY = 0x80000


class FifoOverflowError(Exception):
    """Raised when a write does not fit in the free space of the buffer."""


class FifoUnderflowError(Exception):
    """Raised when a read asks for more bytes than the buffer holds."""


class RingBuffer:
    """A fixed-size circular byte buffer.

    One slot is always kept empty to tell a full buffer from an empty one,
    so at most ``capacity - 1`` bytes can be stored at a time.
    """

    def __init__(self, capacity: int = DEFAULT_CAPACITY) -> None:
        if capacity < 2:
            raise ValueError("capacity must be at least 2")
        self._capacity = capacity
        self._buffer = bytearray(capacity)
        self._wp = 0
        self._rp = 0
        self._lock = threading.Lock()

    @property
    def capacity(self) -> int:
        """Total size of the underlying storage."""
        return self._capacity

    def _used(self) -> int:
        return (self._wp - self._rp) % self._capacity

    def _free(self) -> int:
        return (self._rp - self._wp - 1) % self._capacity

    def __len__(self) -> int:
        with self._lock:
            return self._used()

    def free(self) -> int:
        """Number of bytes that can still be written."""
        with self._lock:
            return self._free()

    def write(self, data: bytes | bytearray | memoryview) -> int:
        """Append ``data`` and return the number of bytes written."""
        view = memoryview(bytes(data))
        size = len(view)
        with self._lock:
            if size > self._free():
                raise FifoOverflowError(
                    f"cannot write {size} bytes, only {self._free()} free"
                )
            if size == 0:
                return 0
            first = min(size, self._capacity - self._wp)
            self._buffer[self._wp : self._wp + first] = view[:first]
            rest = size - first
            if rest:
                self._buffer[:rest] = view[first:]
            self._wp = (self._wp + size) % self._capacity
            return size

    def read(self, size: int, peek: bool = False) -> bytes:
        """Return ``size`` bytes from the front; keep them in place if ``peek``."""
        if size < 0:
            raise ValueError("size must not be negative")
        with self._lock:
            available = self._used()
            if size > available:
                raise FifoUnderflowError(
                    f"cannot read {size} bytes, only {available} available"
                )
            if size == 0:
                return b""
            first = min(size, self._capacity - self._rp)
            chunk = bytes(self._buffer[self._rp : self._rp + first])
            rest = size - first
            if rest:
                chunk += bytes(self._buffer[:rest])
            if not peek:
                self._rp = (self._rp + size) % self._capacity
            return chunk

    def consume(self, size: int) -> None:
        """Drop up to ``size`` bytes from the front."""
        if size < 0:
            raise ValueError("size must not be negative")
        with self._lock:
            size = min(size, self._used())
            self._rp = (self._rp + size) % self._capacity

    def clear(self) -> None:
        """Discard everything held in the buffer."""
        with self._lock:
            self._wp = 0
            self._rp = 0