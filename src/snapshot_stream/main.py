"""
snapshot-stream Main Application
================================

FastAPI entry point for the snapshot-to-MJPEG streamer.

Endpoints:
    GET  /          - Service information
    GET  /health    - Liveness probe
    GET  /metrics   - Per-camera fetch, cache and stream counters
    GET  /<camera>  - MJPEG stream for each configured camera
"""

import argparse
import logging
import time
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from snapshot_stream.config import Settings, get_settings, load_config, setup_logging
from snapshot_stream.stream import FrameManager, MJPEGResponse, SnapshotClient, SnapshotSource


logger = logging.getLogger(__name__)


# =============================================================================
# Component Factories
# =============================================================================

def create_snapshot_client(settings: Settings) -> SnapshotClient:
    """Build the HTTP snapshot client from settings."""
    return SnapshotClient(
        timeout=settings.client.timeout_seconds,
        token=settings.authorization.token,
        cookie=settings.authorization.cookie,
        retry_count=settings.client.retry_count,
        retry_wait_ms=settings.client.retry_wait_ms,
        user_agent=settings.client.user_agent,
        pool_maxsize=settings.client.pool_maxsize,
    )


def _register_camera_route(app: FastAPI, camera: str) -> None:
    """Add ``GET /<camera>`` serving that camera's MJPEG stream."""

    async def stream_camera(request: Request) -> MJPEGResponse:
        settings: Settings = request.app.state.settings
        manager: FrameManager = request.app.state.frame_manager
        server = manager.create_stream(
            camera,
            serve_fps=settings.server.serve_fps,
            no_frame_backoff=settings.server.no_frame_backoff_ms / 1000.0,
        )
        return MJPEGResponse(server, request)

    app.add_api_route(
        f"/{camera}",
        stream_camera,
        methods=["GET"],
        name=f"stream_{camera}",
    )


# =============================================================================
# Application Factory
# =============================================================================

def create_app(
    settings: Optional[Settings] = None,
    source: Optional[SnapshotSource] = None,
) -> FastAPI:
    """
    Build the FastAPI application.

    Args:
        settings: Configuration. Defaults to the shared settings.
        source: Snapshot source. Defaults to a SnapshotClient built from
            settings; tests pass a fake.

    Returns:
        The configured application. Fetchers start in its lifespan.
    """
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        """Application lifespan manager with graceful shutdown."""
        app.state.startup_time = time.time()
        logger.info(f"Starting {settings.service.name} {settings.service.version}")

        snapshot_source = source
        owned_client: Optional[SnapshotClient] = None
        if snapshot_source is None:
            owned_client = create_snapshot_client(settings)
            snapshot_source = owned_client

        manager = FrameManager(
            cameras=settings.cameras,
            source=snapshot_source,
            capacity=settings.server.cache_size,
            use_cache=settings.server.use_cache,
        )
        app.state.frame_manager = manager

        if settings.server.use_cache:
            manager.start_fetchers(settings.server.fetch_fps)

        for camera in settings.cameras:
            logger.info(
                f"Camera endpoint ready: "
                f"http://localhost:{settings.server.port}/{camera}"
            )
        logger.info(
            f"MJPEG server listening on :{settings.server.port} "
            f"(Serve FPS: {settings.server.serve_fps}, "
            f"Fetch FPS: {settings.server.fetch_fps}, "
            f"Cache: {'enabled' if settings.server.use_cache else 'disabled'})"
        )

        yield

        # Shutdown
        logger.info("Shutting down gracefully...")
        await manager.stop()
        if owned_client is not None:
            owned_client.close()
        logger.info("Shutdown complete")

    app = FastAPI(
        title="snapshot-stream",
        description="Serves camera snapshot URLs as MJPEG streams",
        version=settings.service.version,
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.startup_time = time.time()

    # =========================================================================
    # HTTP Endpoints
    # =========================================================================

    @app.get("/")
    async def root() -> JSONResponse:
        """Service information endpoint."""
        return JSONResponse({
            "service": settings.service.name,
            "version": settings.service.version,
            "status": "running",
            "cameras": list(settings.cameras),
            "cache_enabled": settings.server.use_cache,
            "serve_fps": settings.server.serve_fps,
            "fetch_fps": settings.server.fetch_fps,
        })

    @app.get("/health")
    async def health() -> JSONResponse:
        """
        Liveness probe - is the process alive?

        Always returns 200 if the service is running.
        """
        return JSONResponse({
            "status": "healthy",
            "uptime_seconds": round(time.time() - app.state.startup_time, 1),
        })

    @app.get("/metrics")
    async def metrics(request: Request) -> JSONResponse:
        """Per-camera counters for observability."""
        manager: Optional[FrameManager] = getattr(
            request.app.state, "frame_manager", None
        )
        cameras = manager.metrics() if manager else {}
        return JSONResponse({
            "uptime_seconds": round(time.time() - app.state.startup_time, 1),
            "cache_enabled": settings.server.use_cache,
            "active_streams": sum(c["streams"]["active"] for c in cameras.values()),
            "cameras": cameras,
        })

    for camera in settings.cameras:
        _register_camera_route(app, camera)

    return app


# =============================================================================
# Main Entry Point
# =============================================================================

def run(argv: Optional[list] = None) -> None:
    """Command line entry point: load config and serve with uvicorn."""
    import uvicorn

    parser = argparse.ArgumentParser(
        description="Serve camera snapshot URLs as MJPEG streams"
    )
    parser.add_argument("--config", default=None, help="Path to config.yaml")
    parser.add_argument("--host", default=None, help="Bind host")
    parser.add_argument("--port", type=int, default=None, help="Bind port")
    parser.add_argument("--log-level", default=None, help="Log level")
    args = parser.parse_args(argv)

    settings = load_config(args.config)
    if args.host:
        settings.server.host = args.host
    if args.port:
        settings.server.port = args.port
    if args.log_level:
        settings.logging.level = args.log_level
    setup_logging(settings)

    if not settings.cameras:
        logger.warning("No cameras configured; only /, /health and /metrics are served")

    uvicorn.run(
        create_app(settings),
        host=settings.server.host,
        port=settings.server.port,
        log_level=settings.logging.level.lower(),
    )


if __name__ == "__main__":
    run()
