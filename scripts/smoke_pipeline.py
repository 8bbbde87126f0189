#!/usr/bin/env python3
"""
Pipeline Smoke Test Script
==========================

Standalone script to exercise the frame pipeline against a real camera.

This script:
    1. Polls a snapshot URL with a CameraFetcher into a CameraCache
    2. Runs a StreamServer against a counting sink (no HTTP server)
    3. Logs fetch and serve stats every few seconds
    4. Reports a final summary

Usage:
    python scripts/smoke_pipeline.py --url http://camera.local/snapshot.jpg
    python scripts/smoke_pipeline.py --url $CAMERA_HALL --duration 60 --fetch-fps 5
"""

import argparse
import asyncio
import logging
import os
import sys
import time
from typing import Dict

# Add src to path for imports
sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "src"))

from snapshot_stream.stream import CameraCache, CameraFetcher, SnapshotClient, StreamServer


# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    datefmt="%Y-%m-%dT%H:%M:%S",
)
logger = logging.getLogger(__name__)


class CountingSink:
    """FrameSink that discards output and counts bytes, until told to stop."""

    can_flush = True

    def __init__(self) -> None:
        self.bytes_written = 0
        self.flushes = 0
        self._stop = asyncio.Event()

    def stop(self) -> None:
        self._stop.set()

    def is_disconnected(self) -> bool:
        return self._stop.is_set()

    async def wait_disconnected(self, timeout: float) -> bool:
        try:
            await asyncio.wait_for(self._stop.wait(), timeout=timeout)
        except asyncio.TimeoutError:
            pass
        return self._stop.is_set()

    async def start(self, status_code: int, headers: Dict[str, str]) -> None:
        logger.info(f"Stream started: {status_code} {headers['Content-Type']}")

    async def write(self, chunk: bytes) -> None:
        self.bytes_written += len(chunk)

    async def flush(self) -> None:
        self.flushes += 1

    async def send_error(self, status_code: int, message: str) -> None:
        logger.error(f"Stream rejected: {status_code} {message}")

    async def close(self) -> None:
        pass


async def run_smoke(
    url: str,
    duration: int,
    fetch_fps: float,
    serve_fps: float,
    report_interval: int,
) -> dict:
    """
    Run the smoke test.

    Returns:
        Final metrics dict
    """
    logger.info("=" * 60)
    logger.info("Pipeline Smoke Test")
    logger.info("=" * 60)
    logger.info(f"Snapshot URL: {url}")
    logger.info(f"Duration: {duration} seconds")
    logger.info(f"Fetch FPS: {fetch_fps}, Serve FPS: {serve_fps}")
    logger.info("=" * 60)

    client = SnapshotClient(
        token=os.environ.get("TOKEN", ""),
        cookie=os.environ.get("COOKIE", ""),
    )
    cache = CameraCache()
    fetcher = CameraFetcher("smoke", url, cache, client, fetch_fps=fetch_fps)
    cursor = cache.open_cursor()

    async def next_frame():
        return cache.read_next(cursor)

    server = StreamServer("smoke", next_frame, serve_fps=serve_fps)
    sink = CountingSink()

    stop_event = asyncio.Event()
    fetch_task = asyncio.create_task(fetcher.run(stop_event))
    serve_task = asyncio.create_task(server.serve(sink))

    start_time = time.time()
    try:
        while time.time() - start_time < duration:
            await asyncio.sleep(report_interval)
            metrics = fetcher.metrics
            logger.info("-" * 40)
            logger.info(f"Progress Report (elapsed: {time.time() - start_time:.0f}s)")
            logger.info(f"  Fetches: {metrics.fetches}")
            logger.info(f"  Frames cached: {metrics.frames_written}")
            logger.info(f"  Request errors: {metrics.request_errors}")
            logger.info(f"  Bad status: {metrics.bad_status}")
            logger.info(f"  Invalid frames: {metrics.invalid_frames}")
            logger.info(f"  Frames served: {server.frames_sent}")
    except KeyboardInterrupt:
        logger.info("Smoke test interrupted by user")
    finally:
        sink.stop()
        stop_event.set()
        await asyncio.gather(fetch_task, serve_task)
        client.close()

    total_time = time.time() - start_time
    metrics = fetcher.metrics

    logger.info("=" * 60)
    logger.info("FINAL SUMMARY")
    logger.info("=" * 60)
    logger.info(f"Total runtime: {total_time:.1f} seconds")
    logger.info(f"Frames cached: {metrics.frames_written}")
    logger.info(f"Frames served: {server.frames_sent}")
    logger.info(f"Bytes served: {sink.bytes_written}")
    logger.info("=" * 60)

    return {
        "duration": total_time,
        "frames_cached": metrics.frames_written,
        "frames_served": server.frames_sent,
        "request_errors": metrics.request_errors,
    }


def main():
    parser = argparse.ArgumentParser(
        description="Smoke test for the snapshot frame pipeline"
    )
    parser.add_argument(
        "--url",
        type=str,
        default=os.environ.get("SNAPSHOT_URL", ""),
        help="Snapshot URL of the camera",
    )
    parser.add_argument("--duration", type=int, default=30, help="Seconds to run (default: 30)")
    parser.add_argument("--fetch-fps", type=float, default=30, help="Fetch rate (default: 30)")
    parser.add_argument("--serve-fps", type=float, default=10, help="Serve rate (default: 10)")
    parser.add_argument(
        "--report-interval",
        type=int,
        default=5,
        help="Seconds between progress reports (default: 5)",
    )

    args = parser.parse_args()
    if not args.url:
        parser.error("--url (or SNAPSHOT_URL) is required")

    result = asyncio.run(run_smoke(
        url=args.url,
        duration=args.duration,
        fetch_fps=args.fetch_fps,
        serve_fps=args.serve_fps,
        report_interval=args.report_interval,
    ))

    sys.exit(0 if result["frames_served"] > 0 else 1)


if __name__ == "__main__":
    main()
