"""
Stream Module
=============

The frame pipeline: fetch snapshots, buffer them, serve them as MJPEG.

This module provides:
    - Frame: Immutable snapshot (timestamp + JPEG bytes)
    - is_valid_frame: Cheap JPEG sanity check
    - CameraCache: Per-camera ring buffer with read cursors
    - SnapshotClient: Pooled HTTP client for snapshot URLs
    - CameraFetcher: Background polling task for one camera
    - FrameManager: Registry of caches and fetchers
    - StreamServer: Per-client MJPEG serve loop

Example:
    from snapshot_stream.stream import FrameManager, SnapshotClient

    manager = FrameManager({"hall": url}, SnapshotClient())
    manager.start_fetchers(fetch_fps=30)

    server = manager.create_stream("hall", serve_fps=10)
    return MJPEGResponse(server, request)
"""

from snapshot_stream.stream.frame import Frame
from snapshot_stream.stream.validation import is_valid_frame
from snapshot_stream.stream.cache import CameraCache, ReadCursor
from snapshot_stream.stream.client import (
    SnapshotClient,
    SnapshotResponse,
    SnapshotSource,
)
from snapshot_stream.stream.fetcher import CameraFetcher, FetcherMetrics, fetch_frame
from snapshot_stream.stream.manager import FrameManager
from snapshot_stream.stream.server import (
    ClientWatcher,
    FrameSink,
    MJPEGResponse,
    RequestWatcher,
    StreamServer,
    StreamStats,
)


__all__ = [
    "Frame",
    "is_valid_frame",
    "CameraCache",
    "ReadCursor",
    "SnapshotClient",
    "SnapshotResponse",
    "SnapshotSource",
    "CameraFetcher",
    "FetcherMetrics",
    "fetch_frame",
    "FrameManager",
    "ClientWatcher",
    "FrameSink",
    "MJPEGResponse",
    "RequestWatcher",
    "StreamServer",
    "StreamStats",
]
