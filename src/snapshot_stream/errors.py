"""
Errors
======

Exception types shared by the frame pipeline.

None of these are fatal to the process: fetch errors abandon one fetch
cycle, sink errors end one client stream.
"""


class SnapshotStreamError(Exception):
    """Base class for snapshot-stream errors."""
    pass


class FetchError(SnapshotStreamError):
    """Raised when a snapshot request fails at the transport level."""
    
    def __init__(self, url: str, reason: str) -> None:
        self.url = url
        self.reason = reason
        super().__init__(f"request to {url} failed: {reason}")


class SinkClosedError(SnapshotStreamError):
    """Raised when writing to a client that has gone away."""
    pass
