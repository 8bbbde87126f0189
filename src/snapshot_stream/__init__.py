"""
snapshot-stream
===============

Turns periodically polled camera snapshot URLs into continuous MJPEG streams.

Each configured camera gets a background fetcher that polls its snapshot URL
and keeps the most recent frames in a small ring buffer. Every HTTP client
that opens ``GET /<camera>`` gets its own stream loop which reads from that
buffer at the configured serve rate and writes a
``multipart/x-mixed-replace`` response.

Components:
    - stream: frame model, validation, ring buffer, fetcher, stream server
    - config: YAML + environment configuration
    - main: FastAPI application and CLI entry point

Example:
    from snapshot_stream.config import load_config
    from snapshot_stream.main import create_app

    app = create_app(load_config())
"""

__version__ = "0.1.0"

__all__ = [
    "__version__",
]
