"""
Test Configuration
==================

Pytest fixtures and test doubles for snapshot-stream.
"""

import asyncio
import threading
from typing import Callable, Dict, List, Optional, Union

import pytest

from snapshot_stream.errors import FetchError, SinkClosedError
from snapshot_stream.stream.client import SnapshotResponse


def make_jpeg(size: int = 2000, fill: int = 0x42) -> bytes:
    """JPEG-looking payload: SOI marker, filler, EOI marker."""
    return b"\xff\xd8" + bytes([fill]) * (size - 4) + b"\xff\xd9"


class FakeSource:
    """
    Scripted SnapshotSource.

    Each call pops the next scripted item; once the script is exhausted the
    default is used. An item is a SnapshotResponse, a FetchError to raise,
    or bytes (served as a 200 response).
    """

    def __init__(
        self,
        script: Optional[List[Union[SnapshotResponse, FetchError, bytes]]] = None,
        default: Union[SnapshotResponse, FetchError, bytes, None] = None,
    ) -> None:
        self._script = list(script or [])
        self._default = default if default is not None else make_jpeg()
        self._lock = threading.Lock()
        self.calls: List[str] = []

    def get_image(self, url: str) -> SnapshotResponse:
        with self._lock:
            self.calls.append(url)
            item = self._script.pop(0) if self._script else self._default

        if isinstance(item, FetchError):
            raise item
        if isinstance(item, bytes):
            return SnapshotResponse(status_code=200, data=item, reason="OK")
        return item


class FakeSink:
    """
    In-memory FrameSink.

    Records every write and flush. ``disconnect()`` simulates the client
    going away; ``fail_on_flush`` makes the n-th flush raise.
    """

    def __init__(self, can_flush: bool = True, fail_on_flush: Optional[int] = None) -> None:
        self.can_flush = can_flush
        self.fail_on_flush = fail_on_flush
        self.status_code: Optional[int] = None
        self.headers: Dict[str, str] = {}
        self.writes: List[bytes] = []
        self.flushed: List[bytes] = []
        self.error: Optional[str] = None
        self._pending = bytearray()
        self._disconnected = asyncio.Event()

    def disconnect(self) -> None:
        self._disconnected.set()

    def is_disconnected(self) -> bool:
        return self._disconnected.is_set()

    async def wait_disconnected(self, timeout: float) -> bool:
        try:
            await asyncio.wait_for(self._disconnected.wait(), timeout=timeout)
        except asyncio.TimeoutError:
            pass
        return self._disconnected.is_set()

    async def start(self, status_code: int, headers: Dict[str, str]) -> None:
        self.status_code = status_code
        self.headers = dict(headers)

    async def write(self, chunk: bytes) -> None:
        if self._disconnected.is_set():
            raise SinkClosedError("client disconnected")
        self.writes.append(chunk)
        self._pending.extend(chunk)

    async def flush(self) -> None:
        if self.fail_on_flush is not None and len(self.flushed) + 1 >= self.fail_on_flush:
            raise OSError("broken pipe")
        self.flushed.append(bytes(self._pending))
        self._pending.clear()

    async def send_error(self, status_code: int, message: str) -> None:
        self.status_code = status_code
        self.error = message

    async def close(self) -> None:
        pass


async def wait_until(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
    """Poll ``predicate`` on the running loop until true or fail."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.005)


@pytest.fixture
def jpeg():
    """A valid 2000-byte JPEG-looking payload."""
    return make_jpeg()


@pytest.fixture
def jpeg_factory():
    """Factory for JPEG-looking payloads of a given size/filler."""
    return make_jpeg


@pytest.fixture
def fake_source():
    """FakeSource that always serves a valid frame."""
    return FakeSource()
