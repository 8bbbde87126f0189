"""
Snapshot Fetcher
================

Background polling of one camera's snapshot URL into its CameraCache.

This module provides:
    - fetch_frame: one fetch + validate cycle, shared by the fetcher and by
      uncached (direct) streaming
    - CameraFetcher: recurring task that calls fetch_frame at the fetch rate
      and writes good frames into the cache

Design Rules:
    - Every tick is independent: no backoff, no circuit breaking
    - Failures are logged and the tick is abandoned
    - The stop event always wins over a pending tick
    - The blocking HTTP call runs in a worker thread
"""

import asyncio
import logging
from typing import Optional

from snapshot_stream.errors import FetchError
from snapshot_stream.stream.cache import CameraCache
from snapshot_stream.stream.client import SnapshotSource
from snapshot_stream.stream.frame import Frame
from snapshot_stream.stream.validation import is_valid_frame


logger = logging.getLogger(__name__)


class FetcherMetrics:
    """Counters for one camera's fetch loop."""

    __slots__ = (
        "fetches",
        "frames_written",
        "request_errors",
        "bad_status",
        "empty_bodies",
        "invalid_frames",
        "last_frame_time",
    )

    def __init__(self) -> None:
        self.fetches: int = 0
        self.frames_written: int = 0
        self.request_errors: int = 0
        self.bad_status: int = 0
        self.empty_bodies: int = 0
        self.invalid_frames: int = 0
        self.last_frame_time: float = 0.0

    def to_dict(self) -> dict:
        """Export metrics as dict."""
        return {
            "fetches": self.fetches,
            "frames_written": self.frames_written,
            "request_errors": self.request_errors,
            "bad_status": self.bad_status,
            "empty_bodies": self.empty_bodies,
            "invalid_frames": self.invalid_frames,
            "last_frame_time": self.last_frame_time,
        }


async def fetch_frame(
    source: SnapshotSource,
    camera: str,
    url: str,
    metrics: Optional[FetcherMetrics] = None,
) -> Optional[Frame]:
    """
    Fetch and validate one snapshot.

    Args:
        source: Snapshot source to call
        camera: Camera name, for logging
        url: Snapshot URL
        metrics: Counters to update, if any

    Returns:
        A new Frame, or None if the request failed, the status was not 200,
        the body was empty or the payload is not a valid JPEG.
    """
    if metrics is not None:
        metrics.fetches += 1

    try:
        response = await asyncio.to_thread(source.get_image, url)
    except FetchError as e:
        if metrics is not None:
            metrics.request_errors += 1
        logger.warning(f"[{camera}] request error: {e.reason}")
        return None

    if not response.ok:
        if metrics is not None:
            metrics.bad_status += 1
        logger.warning(f"[{camera}] bad status: {response.status}")
        return None

    if not response.data:
        if metrics is not None:
            metrics.empty_bodies += 1
        logger.debug(f"[{camera}] empty body")
        return None

    if not is_valid_frame(response.data):
        if metrics is not None:
            metrics.invalid_frames += 1
        logger.warning(
            f"[{camera}] invalid JPEG frame ({len(response.data)} bytes), skipping"
        )
        return None

    return Frame.from_body(response.data)


class CameraFetcher:
    """
    Polls one camera at a fixed rate and fills its cache.

    Attributes:
        camera: Camera name
        url: Snapshot URL
        cache: CameraCache to write into
        interval: Seconds between ticks
        metrics: Operational counters

    Example:
        stop = asyncio.Event()
        fetcher = CameraFetcher("hall", url, cache, source, fetch_fps=30)
        task = asyncio.create_task(fetcher.run(stop))

        # Later
        stop.set()
        await task
    """

    def __init__(
        self,
        camera: str,
        url: str,
        cache: CameraCache,
        source: SnapshotSource,
        fetch_fps: float = 30.0,
    ) -> None:
        """
        Initialize fetcher.

        Args:
            camera: Camera name
            url: Snapshot URL
            cache: CameraCache to write into
            source: Snapshot source to poll
            fetch_fps: Ticks per second. Must be > 0.
        """
        if fetch_fps <= 0:
            raise ValueError("fetch_fps must be > 0")

        self.camera = camera
        self.url = url
        self.cache = cache
        self.source = source
        self.interval = 1.0 / fetch_fps
        self.metrics = FetcherMetrics()
        self._running: bool = False

    @property
    def running(self) -> bool:
        """Whether the run loop is active."""
        return self._running

    async def tick(self) -> bool:
        """
        Run one fetch cycle.

        Returns:
            True if a frame was written into the cache.
        """
        frame = await fetch_frame(self.source, self.camera, self.url, self.metrics)
        if frame is None:
            return False

        self.cache.write(frame)
        self.metrics.frames_written += 1
        self.metrics.last_frame_time = frame.captured_at
        return True

    async def run(self, stop_event: asyncio.Event) -> None:
        """
        Tick until stop_event is set.

        Ticks are scheduled on a fixed grid. A fetch that overruns its
        interval makes the loop skip the missed ticks instead of firing
        them back to back.
        """
        self._running = True
        logger.info(
            f"[{self.camera}] fetcher started "
            f"(interval {self.interval * 1000:.0f}ms)"
        )

        loop = asyncio.get_running_loop()
        next_tick = loop.time() + self.interval

        try:
            while not stop_event.is_set():
                delay = next_tick - loop.time()
                if delay > 0:
                    try:
                        await asyncio.wait_for(stop_event.wait(), timeout=delay)
                        # Stop event was set, exit
                        break
                    except asyncio.TimeoutError:
                        pass

                if stop_event.is_set():
                    break

                try:
                    await self.tick()
                except Exception as e:
                    logger.error(f"[{self.camera}] fetch cycle failed: {e}")

                next_tick += self.interval
                now = loop.time()
                if next_tick < now:
                    missed = int((now - next_tick) / self.interval) + 1
                    next_tick += missed * self.interval
        finally:
            self._running = False
            logger.info(f"[{self.camera}] fetcher stopped")
