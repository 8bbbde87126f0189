"""
Stream Server Tests
===================

Multipart framing, pacing, disconnects and write failures.
"""

import asyncio
import time

import pytest

from conftest import FakeSink, make_jpeg, wait_until

from snapshot_stream.stream.cache import CameraCache
from snapshot_stream.stream.frame import Frame
from snapshot_stream.stream.server import (
    MJPEG_CONTENT_TYPE,
    StreamServer,
    StreamStats,
    part_header,
    stream_headers,
)


def cached_provider(cache, cursor=None):
    cursor = cursor or cache.open_cursor()

    async def next_frame():
        return cache.read_next(cursor)

    return next_frame


class TestWireFormat:
    """Headers and part framing."""

    def test_part_header(self):
        assert part_header(1234) == (
            b"--frame\r\nContent-Type: image/jpeg\r\nContent-Length: 1234\r\n\r\n"
        )

    def test_stream_headers(self):
        assert stream_headers() == {
            "Content-Type": "multipart/x-mixed-replace; boundary=frame",
            "Cache-Control": "no-cache, no-store, must-revalidate",
            "Pragma": "no-cache",
            "Expires": "0",
        }
        assert MJPEG_CONTENT_TYPE.endswith("boundary=frame")


class TestStreamServer:
    """Serve loop against an in-memory sink."""

    def test_rejects_non_positive_fps(self):
        with pytest.raises(ValueError):
            StreamServer("cam", cached_provider(CameraCache()), serve_fps=0)

    def test_emits_one_part_per_flush(self):
        cache = CameraCache()
        data = make_jpeg(1500)
        cache.write(Frame(timestamp=1.0, data=data))
        sink = FakeSink()
        server = StreamServer("cam", cached_provider(cache), serve_fps=100)

        async def scenario():
            task = asyncio.create_task(server.serve(sink))
            await wait_until(lambda: len(sink.flushed) >= 3)
            sink.disconnect()
            return await asyncio.wait_for(task, timeout=1.0)

        sent = asyncio.run(scenario())

        assert sink.status_code == 200
        assert sink.headers["Content-Type"] == MJPEG_CONTENT_TYPE
        assert sent == len(sink.flushed) >= 3
        expected = part_header(len(data)) + data + b"\r\n"
        assert all(chunk == expected for chunk in sink.flushed)
        assert sink.writes[0] == expected

    def test_waits_for_first_frame(self):
        """Nothing but headers goes out until the cache gets its first frame."""
        cache = CameraCache()
        sink = FakeSink()
        server = StreamServer("cam", cached_provider(cache), serve_fps=50)

        async def scenario():
            task = asyncio.create_task(server.serve(sink))
            await asyncio.sleep(0.2)
            assert sink.status_code == 200
            assert sink.writes == []

            cache.write(Frame(timestamp=time.time(), data=make_jpeg()))
            await wait_until(lambda: len(sink.flushed) >= 1)
            sink.disconnect()
            await asyncio.wait_for(task, timeout=1.0)

        asyncio.run(scenario())
        assert sink.flushed[0].startswith(b"--frame\r\n")

    def test_serve_rate(self):
        cache = CameraCache()
        cache.write(Frame(timestamp=1.0, data=make_jpeg()))
        sink = FakeSink()
        server = StreamServer("cam", cached_provider(cache), serve_fps=20)

        async def scenario():
            task = asyncio.create_task(server.serve(sink))
            await asyncio.sleep(1.0)
            sink.disconnect()
            await asyncio.wait_for(task, timeout=1.0)

        asyncio.run(scenario())
        assert 12 <= len(sink.flushed) <= 22

    def test_streaming_unsupported(self):
        sink = FakeSink(can_flush=False)
        server = StreamServer("cam", cached_provider(CameraCache()))

        assert asyncio.run(server.serve(sink)) == 0
        assert sink.status_code == 500
        assert sink.error == "Streaming unsupported"
        assert sink.writes == []

    def test_write_failure_ends_stream(self):
        cache = CameraCache()
        cache.write(Frame(timestamp=1.0, data=make_jpeg()))
        sink = FakeSink(fail_on_flush=3)
        server = StreamServer("cam", cached_provider(cache), serve_fps=100)

        sent = asyncio.run(asyncio.wait_for(server.serve(sink), timeout=1.0))

        assert sent == 2
        assert len(sink.flushed) == 2

    def test_stats(self):
        cache = CameraCache()
        cache.write(Frame(timestamp=1.0, data=make_jpeg()))
        stats = StreamStats()
        sink = FakeSink()
        server = StreamServer("cam", cached_provider(cache), serve_fps=100, stats=stats)

        async def scenario():
            task = asyncio.create_task(server.serve(sink))
            await wait_until(lambda: len(sink.flushed) >= 2)
            assert stats.active == 1
            sink.disconnect()
            await asyncio.wait_for(task, timeout=1.0)

        asyncio.run(scenario())
        assert stats.active == 0
        assert stats.total == 1
        assert stats.frames_sent == server.frames_sent

    def test_direct_mode_retries_after_failed_fetch(self):
        results = [None, None, Frame(timestamp=1.0, data=make_jpeg())]
        calls = []

        async def next_frame():
            calls.append(time.monotonic())
            return results.pop(0) if results else Frame(timestamp=2.0, data=make_jpeg())

        sink = FakeSink()
        server = StreamServer("cam", next_frame, serve_fps=20, retry_delay=0.05)

        async def scenario():
            task = asyncio.create_task(server.serve(sink))
            await wait_until(lambda: len(sink.flushed) >= 1)
            sink.disconnect()
            await asyncio.wait_for(task, timeout=1.0)

        asyncio.run(scenario())
        assert calls[1] - calls[0] >= 0.04
        assert calls[2] - calls[1] >= 0.04


class TestDisconnect:
    """Client disconnects only affect their own stream."""

    def test_disconnect_exits_within_one_interval(self):
        cache = CameraCache()
        cache.write(Frame(timestamp=1.0, data=make_jpeg()))
        interval = 0.5
        first, second = FakeSink(), FakeSink()
        server_a = StreamServer("cam", cached_provider(cache), serve_fps=1 / interval)
        server_b = StreamServer("cam", cached_provider(cache), serve_fps=1 / interval)

        async def scenario():
            task_a = asyncio.create_task(server_a.serve(first))
            task_b = asyncio.create_task(server_b.serve(second))
            await wait_until(lambda: len(first.flushed) >= 1 and len(second.flushed) >= 1)

            start = time.monotonic()
            first.disconnect()
            await asyncio.wait_for(task_a, timeout=interval)
            elapsed = time.monotonic() - start

            before = len(second.flushed)
            await asyncio.sleep(interval * 2.5)
            assert not task_b.done()
            assert len(second.flushed) > before

            second.disconnect()
            await asyncio.wait_for(task_b, timeout=interval)
            return elapsed

        assert asyncio.run(scenario()) < 0.5

    def test_readers_on_same_cache_progress_independently(self):
        cache = CameraCache()
        fast, slow = FakeSink(), FakeSink()

        async def writer(stop):
            n = 0
            while not stop.is_set():
                n += 1
                cache.write(Frame(timestamp=float(n), data=make_jpeg(1000 + n)))
                await asyncio.sleep(1 / 60)

        async def scenario():
            stop = asyncio.Event()
            writer_task = asyncio.create_task(writer(stop))
            fast_task = asyncio.create_task(
                StreamServer("cam", cached_provider(cache), serve_fps=40).serve(fast)
            )
            slow_task = asyncio.create_task(
                StreamServer("cam", cached_provider(cache), serve_fps=10).serve(slow)
            )
            await asyncio.sleep(1.0)
            fast.disconnect()
            slow.disconnect()
            stop.set()
            await asyncio.gather(writer_task, fast_task, slow_task)

        asyncio.run(scenario())

        def lengths(sink):
            # Content-Length encodes the frame number
            return [
                int(chunk.split(b"Content-Length: ")[1].split(b"\r\n")[0])
                for chunk in sink.flushed
            ]

        for sink in (fast, slow):
            seq = lengths(sink)
            assert seq
            assert seq == sorted(seq)
        assert len(fast.flushed) > len(slow.flushed)
