"""
Frame Manager
=============

Registry of per-camera caches and their fetchers.

The manager is built once at startup from the configured cameras and is
never structurally changed afterwards. It is passed to the route handlers
(through ``app.state``) rather than living in a module global.

Design Rules:
    - One CameraCache per camera, created up front
    - One CameraFetcher task per camera when caching is enabled
    - All fetchers share one stop event
    - Unknown camera names read as "no frame", never raise
"""

import asyncio
import logging
from typing import Dict, List, Optional

from snapshot_stream.stream.cache import DEFAULT_CAPACITY, CameraCache, ReadCursor
from snapshot_stream.stream.client import SnapshotSource
from snapshot_stream.stream.fetcher import CameraFetcher, fetch_frame
from snapshot_stream.stream.frame import Frame
from snapshot_stream.stream.server import (
    NO_FRAME_BACKOFF_SECONDS,
    StreamServer,
    StreamStats,
)


logger = logging.getLogger(__name__)


class FrameManager:
    """
    Owns the camera → cache map and the snapshot source.

    Attributes:
        source: Snapshot source shared by all cameras
        use_cache: Whether streams read from caches or fetch directly

    Example:
        manager = FrameManager(
            cameras={"hall": "http://cam/hall.jpg"},
            source=SnapshotClient(),
        )
        manager.start_fetchers(fetch_fps=30)

        frame = manager.get_latest_frame("hall")

        await manager.stop()
    """

    def __init__(
        self,
        cameras: Dict[str, str],
        source: SnapshotSource,
        capacity: int = DEFAULT_CAPACITY,
        use_cache: bool = True,
    ) -> None:
        """
        Initialize manager.

        Args:
            cameras: Camera name -> snapshot URL
            source: Snapshot source used by fetchers and direct streams
            capacity: Ring buffer size per camera
            use_cache: Serve from caches (True) or fetch per client (False)
        """
        self.source = source
        self.use_cache = use_cache

        self._urls: Dict[str, str] = dict(cameras)
        self._caches: Dict[str, CameraCache] = {
            name: CameraCache(capacity) for name in self._urls
        }
        self._stream_stats: Dict[str, StreamStats] = {
            name: StreamStats() for name in self._urls
        }
        self._fetchers: Dict[str, CameraFetcher] = {}
        self._tasks: List[asyncio.Task] = []
        self._stop_event = asyncio.Event()

    @property
    def cameras(self) -> List[str]:
        """Configured camera names."""
        return list(self._urls)

    @property
    def fetchers(self) -> Dict[str, CameraFetcher]:
        """Running fetchers by camera name."""
        return dict(self._fetchers)

    def get_latest_frame(self, camera: str) -> Optional[Frame]:
        """Most recent cached frame for a camera, or None."""
        cache = self._caches.get(camera)
        if cache is None:
            return None
        return cache.read_latest()

    def get_next_frame(
        self,
        camera: str,
        cursor: Optional[ReadCursor] = None,
    ) -> Optional[Frame]:
        """Next cached frame for a reader, or None."""
        cache = self._caches.get(camera)
        if cache is None:
            return None
        return cache.read_next(cursor)

    async def fetch_direct(self, camera: str) -> Optional[Frame]:
        """Fetch a live frame for a camera, bypassing the cache."""
        url = self._urls.get(camera)
        if url is None:
            return None
        return await fetch_frame(self.source, camera, url)

    def start_fetchers(self, fetch_fps: float) -> List[asyncio.Task]:
        """
        Start one fetcher task per camera.

        Must be called from a running event loop.

        Returns:
            The created tasks.
        """
        self._stop_event.clear()

        for camera, url in self._urls.items():
            fetcher = CameraFetcher(
                camera=camera,
                url=url,
                cache=self._caches[camera],
                source=self.source,
                fetch_fps=fetch_fps,
            )
            self._fetchers[camera] = fetcher
            self._tasks.append(
                asyncio.create_task(
                    fetcher.run(self._stop_event),
                    name=f"fetcher:{camera}",
                )
            )

        logger.info(f"Started {len(self._tasks)} fetcher(s) at {fetch_fps} fps")
        return list(self._tasks)

    async def stop(self, timeout: float = 5.0) -> None:
        """
        Signal all fetchers to stop and wait for them.

        Tasks that do not finish within ``timeout`` seconds are cancelled.
        """
        self._stop_event.set()
        if not self._tasks:
            return

        done, pending = await asyncio.wait(self._tasks, timeout=timeout)
        for task in pending:
            task.cancel()
        if pending:
            logger.warning(f"Cancelled {len(pending)} fetcher(s) after {timeout}s")
            await asyncio.gather(*pending, return_exceptions=True)

        self._tasks.clear()
        logger.info("All fetchers stopped")

    def create_stream(
        self,
        camera: str,
        serve_fps: float,
        no_frame_backoff: float = NO_FRAME_BACKOFF_SECONDS,
    ) -> StreamServer:
        """
        Build the serve loop for a new client of ``camera``.

        In cached mode the client gets its own read cursor on the camera's
        cache. In direct mode every iteration fetches a live snapshot and
        failures are retried after one serve interval.

        Raises:
            KeyError: If the camera is not configured
        """
        if camera not in self._urls:
            raise KeyError(camera)

        stats = self._stream_stats[camera]

        if self.use_cache:
            cache = self._caches[camera]
            cursor = cache.open_cursor()

            async def next_cached_frame() -> Optional[Frame]:
                return self.get_next_frame(camera, cursor)

            return StreamServer(
                camera,
                next_cached_frame,
                serve_fps=serve_fps,
                retry_delay=no_frame_backoff,
                stats=stats,
            )

        async def next_live_frame() -> Optional[Frame]:
            return await self.fetch_direct(camera)

        return StreamServer(
            camera,
            next_live_frame,
            serve_fps=serve_fps,
            retry_delay=1.0 / serve_fps,
            stats=stats,
        )

    def metrics(self) -> dict:
        """
        Per-camera metrics for observability.

        Returns:
            Dict keyed by camera with cache, fetcher and stream stats
        """
        result = {}
        for camera in self._urls:
            fetcher = self._fetchers.get(camera)
            latest = self.get_latest_frame(camera)
            result[camera] = {
                "cache": self._caches[camera].metrics(),
                "latest_frame": {
                    "size": latest.size,
                    "captured_at": latest.captured_at,
                } if latest else None,
                "fetcher": fetcher.metrics.to_dict() if fetcher else None,
                "streams": self._stream_stats[camera].to_dict(),
            }
        return result
