"""
MJPEG Stream Server
===================

Per-client loop that turns a frame source into a multipart MJPEG response.

This module provides:
    - StreamServer: the serve loop (pull frame, emit part, wait)
    - FrameSink: protocol for a push-style client, served by ``serve()``
    - MJPEGResponse: StreamingResponse fed by ``StreamServer.iter_parts()``

Wire format of one part:

    --frame\\r\\n
    Content-Type: image/jpeg\\r\\n
    Content-Length: <len>\\r\\n
    \\r\\n
    <jpeg bytes>\\r\\n

Design Rules:
    - Serve rate is independent of fetch rate
    - Disconnect is checked every iteration
    - A write failure ends this client's stream only
    - Nothing is written before the first real frame is available
"""

import asyncio
import logging
from typing import AsyncIterator, Awaitable, Callable, Dict, Optional, Protocol

from fastapi import Request
from fastapi.responses import StreamingResponse
from starlette.requests import ClientDisconnect
from starlette.types import Receive, Scope, Send

from snapshot_stream.errors import SinkClosedError
from snapshot_stream.stream.frame import Frame


logger = logging.getLogger(__name__)


MJPEG_BOUNDARY = "frame"
MJPEG_CONTENT_TYPE = f"multipart/x-mixed-replace; boundary={MJPEG_BOUNDARY}"

NO_CACHE_HEADERS = {
    "Cache-Control": "no-cache, no-store, must-revalidate",
    "Pragma": "no-cache",
    "Expires": "0",
}

# Wait before re-polling a cache that was never written
NO_FRAME_BACKOFF_SECONDS = 0.05

PART_TRAILER = b"\r\n"


FrameProvider = Callable[[], Awaitable[Optional[Frame]]]


def stream_headers() -> Dict[str, str]:
    """Response headers for an MJPEG stream."""
    return {"Content-Type": MJPEG_CONTENT_TYPE, **NO_CACHE_HEADERS}


def part_header(length: int) -> bytes:
    """Boundary line and part headers for a JPEG of ``length`` bytes."""
    return (
        f"--{MJPEG_BOUNDARY}\r\n"
        f"Content-Type: image/jpeg\r\n"
        f"Content-Length: {length}\r\n"
        f"\r\n"
    ).encode("ascii")


def encode_part(frame: Frame) -> bytes:
    """One complete multipart part for ``frame``."""
    return part_header(len(frame.data)) + frame.data + PART_TRAILER


class ClientWatcher(Protocol):
    """Disconnect state of one connected client."""

    def is_disconnected(self) -> bool:
        ...

    async def wait_disconnected(self, timeout: float) -> bool:
        """Wait up to ``timeout`` seconds; True if the client went away."""
        ...


class FrameSink(ClientWatcher, Protocol):
    """
    A push-style client, as driven by ``StreamServer.serve``.

    Implementations raise SinkClosedError (or OSError) from write/flush
    once the client is gone.
    """

    @property
    def can_flush(self) -> bool:
        """Whether the transport can deliver a part before the response ends."""
        ...

    async def start(self, status_code: int, headers: Dict[str, str]) -> None:
        ...

    async def write(self, chunk: bytes) -> None:
        ...

    async def flush(self) -> None:
        ...

    async def send_error(self, status_code: int, message: str) -> None:
        """Send a complete plain-text error response."""
        ...

    async def close(self) -> None:
        ...


class StreamStats:
    """Stream counters for one camera."""

    __slots__ = ("active", "total", "frames_sent")

    def __init__(self) -> None:
        self.active: int = 0
        self.total: int = 0
        self.frames_sent: int = 0

    def to_dict(self) -> dict:
        """Export stats as dict."""
        return {
            "active": self.active,
            "total": self.total,
            "frames_sent": self.frames_sent,
        }


class StreamServer:
    """
    Serve loop for one client of one camera.

    Pulls frames from ``next_frame`` at the serve rate and emits each one
    as a multipart part. The same loop serves cached mode (``next_frame``
    reads the camera's ring buffer) and direct mode (``next_frame`` fetches
    a live snapshot); only the retry delay differs.

    Attributes:
        camera: Camera name, for logging
        interval: Seconds between emitted frames
        retry_delay: Seconds to wait when no frame is available
        frames_sent: Frames delivered to this client

    Example:
        cursor = cache.open_cursor()

        async def next_frame():
            return cache.read_next(cursor)

        server = StreamServer("hall", next_frame, serve_fps=10)
        return MJPEGResponse(server, request)
    """

    def __init__(
        self,
        camera: str,
        next_frame: FrameProvider,
        serve_fps: float = 10.0,
        retry_delay: float = NO_FRAME_BACKOFF_SECONDS,
        stats: Optional[StreamStats] = None,
    ) -> None:
        """
        Initialize stream server.

        Args:
            camera: Camera name
            next_frame: Coroutine function returning the next frame or None
            serve_fps: Frames emitted per second. Must be > 0.
            retry_delay: Wait before retrying after ``next_frame`` gave None
            stats: Per-camera counters to update, if any
        """
        if serve_fps <= 0:
            raise ValueError("serve_fps must be > 0")

        self.camera = camera
        self.interval = 1.0 / serve_fps
        self.retry_delay = retry_delay
        self.frames_sent: int = 0
        self._next_frame = next_frame
        self._stats = stats

    async def iter_parts(self, client: ClientWatcher) -> AsyncIterator[bytes]:
        """
        Yield encoded parts at the serve rate until ``client`` disconnects.

        A part counts as sent once the consumer asks for the next one, so a
        part whose delivery failed is not counted.
        """
        if self._stats is not None:
            self._stats.active += 1
            self._stats.total += 1
        logger.info(f"[{self.camera}] client connected")

        try:
            while not client.is_disconnected():
                frame = await self._next_frame()
                if frame is None:
                    await client.wait_disconnected(self.retry_delay)
                    continue

                yield encode_part(frame)

                self.frames_sent += 1
                if self._stats is not None:
                    self._stats.frames_sent += 1

                await client.wait_disconnected(self.interval)
        finally:
            if self._stats is not None:
                self._stats.active -= 1
            logger.info(
                f"[{self.camera}] stream closed after {self.frames_sent} frame(s)"
            )

    async def serve(self, sink: FrameSink) -> int:
        """
        Stream frames to ``sink`` until the client disconnects or a write fails.

        Returns:
            Number of frames sent.
        """
        if not sink.can_flush:
            logger.error(f"[{self.camera}] streaming unsupported by transport")
            await sink.send_error(500, "Streaming unsupported")
            return 0

        await sink.start(200, stream_headers())

        parts = self.iter_parts(sink)
        try:
            async for part in parts:
                try:
                    await sink.write(part)
                    await sink.flush()
                except (SinkClosedError, OSError) as e:
                    if sink.is_disconnected():
                        logger.info(f"[{self.camera}] client disconnected")
                    else:
                        logger.warning(f"[{self.camera}] write error: {e}")
                    break
        finally:
            await parts.aclose()

        return self.frames_sent


class RequestWatcher:
    """ClientWatcher backed by ``Request.is_disconnected()``."""

    def __init__(self, request: Request) -> None:
        self._request = request
        self._disconnected = False

    def is_disconnected(self) -> bool:
        return self._disconnected

    async def wait_disconnected(self, timeout: float) -> bool:
        await asyncio.sleep(timeout)
        self._disconnected = await self._request.is_disconnected()
        return self._disconnected


class MJPEGResponse(StreamingResponse):
    """
    StreamingResponse that runs a StreamServer for one request.

    The part generator is always closed when the response ends, so stream
    counters are released even when sending to the client fails.
    """

    def __init__(self, server: StreamServer, request: Request) -> None:
        self.server = server
        super().__init__(
            server.iter_parts(RequestWatcher(request)),
            media_type=MJPEG_CONTENT_TYPE,
            headers=NO_CACHE_HEADERS,
        )

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        try:
            await super().__call__(scope, receive, send)
        except ClientDisconnect:
            logger.info(f"[{self.server.camera}] client disconnected")
        except OSError as e:
            logger.warning(f"[{self.server.camera}] write error: {e}")
        finally:
            await self.body_iterator.aclose()
