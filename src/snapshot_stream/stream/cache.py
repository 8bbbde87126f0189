"""
Camera Cache
============

Fixed-capacity ring buffer of frames for a single camera.

The fetcher writes into the ring at ``write_index``; stream servers read from
it through read cursors. This is deliberately not a FIFO queue:

    - When full, the oldest slot is overwritten (no backpressure)
    - When a reader has caught up with the writer it gets the latest frame
      again instead of blocking

Design Rules:
    - One lock per camera, held only for O(1) slot/cursor updates
    - Frames are immutable, so returning them after releasing the lock is safe
    - Safe to use from asyncio tasks and plain threads alike
"""

import logging
import threading
from typing import List, Optional

from snapshot_stream.stream.frame import Frame


logger = logging.getLogger(__name__)


DEFAULT_CAPACITY = 10


class ReadCursor:
    """
    Position of one reader in a CameraCache.

    Each stream server owns one cursor, so several clients on the same
    camera never consume frames from each other. Only mutated by the cache,
    under its lock.
    """

    __slots__ = ("index", "reads")

    def __init__(self, index: int = 0) -> None:
        self.index = index
        self.reads = 0

    def __repr__(self) -> str:
        return f"ReadCursor(index={self.index}, reads={self.reads})"


class CameraCache:
    """
    Ring buffer of the most recent frames for one camera.

    Attributes:
        capacity: Number of slots in the ring
        write_index: Slot the next write goes to
        read_index: Position of the built-in cursor used by read_next()

    Example:
        cache = CameraCache(capacity=10)

        # Fetcher
        cache.write(frame)

        # Stream server
        cursor = cache.open_cursor()
        frame = cache.read_next(cursor)
    """

    def __init__(self, capacity: int = DEFAULT_CAPACITY) -> None:
        """
        Initialize an empty cache.

        Args:
            capacity: Number of frames to keep. Must be >= 1.
        """
        if capacity < 1:
            raise ValueError("capacity must be >= 1")

        self._capacity = capacity
        self._slots: List[Optional[Frame]] = [None] * capacity
        self._write_index: int = 0
        self._cursor = ReadCursor()
        self._frames_written: int = 0
        self._lock = threading.Lock()

    @property
    def capacity(self) -> int:
        """Number of slots in the ring."""
        return self._capacity

    @property
    def write_index(self) -> int:
        """Slot the next write goes to."""
        with self._lock:
            return self._write_index

    @property
    def read_index(self) -> int:
        """Position of the built-in read cursor."""
        with self._lock:
            return self._cursor.index

    @property
    def frames_written(self) -> int:
        """Total frames ever written."""
        with self._lock:
            return self._frames_written

    def write(self, frame: Frame) -> None:
        """
        Store a frame in the next slot, overwriting whatever was there.

        Never blocks on readers and never fails.
        """
        with self._lock:
            self._slots[self._write_index] = frame
            self._write_index = (self._write_index + 1) % self._capacity
            self._frames_written += 1

    def read_latest(self) -> Optional[Frame]:
        """
        Get the most recently written frame.

        Returns:
            The latest frame, or None if nothing was ever written.
        """
        with self._lock:
            return self._latest()

    def read_next(self, cursor: Optional[ReadCursor] = None) -> Optional[Frame]:
        """
        Get the next unread frame for a cursor.

        If the cursor has caught up with the writer, the latest frame is
        returned again and the cursor stays put. If the writer lapped the
        cursor, the overwritten frames are silently skipped.

        Args:
            cursor: Reader position. Defaults to the cache's own cursor.

        Returns:
            A frame, or None if nothing was ever written.
        """
        with self._lock:
            if cursor is None:
                cursor = self._cursor

            if cursor.index == self._write_index:
                return self._latest()

            frame = self._slots[cursor.index]
            cursor.index = (cursor.index + 1) % self._capacity
            cursor.reads += 1
            return frame

    def open_cursor(self) -> ReadCursor:
        """
        Create a cursor for a new reader.

        The cursor starts at the current write position, so the first read
        returns the latest frame rather than replaying the whole ring.
        """
        with self._lock:
            return ReadCursor(self._write_index)

    def metrics(self) -> dict:
        """
        Get cache metrics for observability.

        Returns:
            Dict with capacity, write_index, read_index, frames_written,
            has_frame
        """
        with self._lock:
            return {
                "capacity": self._capacity,
                "write_index": self._write_index,
                "read_index": self._cursor.index,
                "frames_written": self._frames_written,
                "has_frame": self._latest() is not None,
            }

    def _latest(self) -> Optional[Frame]:
        # Caller holds the lock
        return self._slots[(self._write_index - 1) % self._capacity]
