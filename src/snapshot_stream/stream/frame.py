"""
Frame Data Model
=================

Internal frame representation for the snapshot pipeline.

Design Rules:
    - Frames are immutable once constructed
    - ``data`` is an owned copy of the response body, never a view into it
    - Does NOT decode image data
    - ``timestamp`` is monotonic so readers can order frames even if the
      wall clock steps; ``captured_at`` is the wall-clock time for display
"""

import time
from dataclasses import dataclass, field


@dataclass(frozen=True, slots=True)
class Frame:
    """
    A single validated JPEG snapshot.
    
    Attributes:
        timestamp: Monotonic clock reading when the frame was fetched
        data: Raw JPEG bytes
        captured_at: UNIX timestamp when the frame was fetched
    """
    
    timestamp: float
    data: bytes = field(repr=False)
    captured_at: float = 0.0
    
    @classmethod
    def from_body(cls, body: bytes) -> "Frame":
        """Build a frame from a response body, copying it."""
        return cls(
            timestamp=time.monotonic(),
            data=bytes(body),
            captured_at=time.time(),
        )
    
    @property
    def size(self) -> int:
        """Payload length in bytes."""
        return len(self.data)
    
    def __repr__(self) -> str:
        """Compact repr that doesn't dump the full image."""
        return f"Frame(timestamp={self.timestamp:.3f}, size={self.size})"
