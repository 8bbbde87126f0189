"""
snapshot-stream Configuration
=============================

This module handles configuration loading for the snapshot streamer.

Configuration Sources (in order of precedence):
    1. Environment variables (highest priority)
    2. config.yaml file
    3. Default values (lowest priority)

Environment Variable Mapping:
    PORT             -> server.port
    SNAPSHOT_HOST    -> server.host
    FPS              -> server.serve_fps
    FETCH_FPS        -> server.fetch_fps
    USE_CACHE        -> server.use_cache
    CACHE_SIZE       -> server.cache_size
    FETCH_TIMEOUT    -> client.timeout_seconds
    RETRY_COUNT      -> client.retry_count
    TOKEN / token    -> authorization.token
    COOKIE / cookie  -> authorization.cookie
    LOG_LEVEL        -> logging.level
    LOG_FORMAT       -> logging.format
    CAMERA_<NAME>    -> cameras.<name>
    CAMERA1..CAMERA6 -> cameras.camera1..camera6

Example:
    from snapshot_stream.config import get_settings

    settings = get_settings()
    print(settings.server.serve_fps)
    for name, url in settings.cameras.items():
        print(name, url)
"""

import os
import re
import logging
from functools import lru_cache
from pathlib import Path
from typing import Dict, Optional

import yaml
from pydantic import BaseModel, Field, field_validator


logger = logging.getLogger(__name__)


CAMERA_NAME_PATTERN = re.compile(r"^[A-Za-z0-9_-]+$")

# Paths served by the application itself
RESERVED_CAMERA_NAMES = frozenset({"health", "metrics", "docs", "redoc", "openapi.json"})

_TRUE_VALUES = {"1", "true", "yes", "on"}
_FALSE_VALUES = {"0", "false", "no", "off"}


# =============================================================================
# Configuration Models
# =============================================================================

class ServiceConfig(BaseModel):
    """Service identification configuration."""

    name: str = Field(default="snapshot-stream", description="Service name")
    version: str = Field(default="v0.1.0", description="Service version")


class ServerConfig(BaseModel):
    """HTTP server and frame pipeline configuration."""

    host: str = Field(default="0.0.0.0", description="Bind host")
    port: int = Field(default=8081, ge=1, le=65535, description="Bind port")
    serve_fps: float = Field(
        default=10,
        gt=0,
        description="Frames per second emitted to each client",
    )
    fetch_fps: float = Field(
        default=30,
        gt=0,
        description="Snapshot polls per second per camera",
    )
    use_cache: bool = Field(
        default=True,
        description="Serve from per-camera ring buffers (False = fetch per client)",
    )
    cache_size: int = Field(
        default=10,
        ge=1,
        description="Ring buffer capacity per camera",
    )
    no_frame_backoff_ms: int = Field(
        default=50,
        ge=1,
        description="Wait before re-polling a cache that has no frame yet",
    )


class ClientConfig(BaseModel):
    """Snapshot HTTP client configuration."""

    timeout_seconds: float = Field(default=5.0, gt=0, description="Request timeout")
    retry_count: int = Field(default=2, ge=0, description="Retries on transport errors")
    retry_wait_ms: int = Field(default=50, ge=0, description="Backoff between retries")
    user_agent: str = Field(default="snapshot-stream/0.1", description="User-Agent header")
    pool_maxsize: int = Field(default=20, ge=1, description="Pooled connections per host")


class AuthorizationConfig(BaseModel):
    """Credentials sent with every snapshot request."""

    token: str = Field(default="", description="Authorization header value")
    cookie: str = Field(default="", description="Cookie as name=value or bare session id")


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: str = Field(default="INFO", description="Log level")
    format: str = Field(default="json", description="Log format: json or text")


class Settings(BaseModel):
    """
    Main settings class for snapshot-stream.

    Loads configuration from YAML file and environment variables.
    Environment variables take precedence over file values.
    """

    service: ServiceConfig = Field(default_factory=ServiceConfig)
    server: ServerConfig = Field(default_factory=ServerConfig)
    client: ClientConfig = Field(default_factory=ClientConfig)
    authorization: AuthorizationConfig = Field(default_factory=AuthorizationConfig)
    cameras: Dict[str, str] = Field(
        default_factory=dict,
        description="Camera name -> snapshot URL",
    )
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @field_validator("cameras")
    @classmethod
    def _check_cameras(cls, cameras: Dict[str, str]) -> Dict[str, str]:
        result = {}
        for name, url in cameras.items():
            if not CAMERA_NAME_PATTERN.match(name):
                raise ValueError(
                    f"camera name {name!r} must only contain letters, digits, '-' or '_'"
                )
            if name in RESERVED_CAMERA_NAMES:
                raise ValueError(f"camera name {name!r} is reserved")
            if not url:
                logger.warning(f"Camera {name!r} has no URL, skipping")
                continue
            result[name] = url
        return result


# =============================================================================
# Configuration Loading
# =============================================================================

def load_config(config_path: Optional[str] = None) -> Settings:
    """
    Load configuration from YAML file and environment variables.

    Priority (highest to lowest):
        1. Environment variables
        2. YAML config file
        3. Default values

    Args:
        config_path: Path to config.yaml. If None, searches common locations.

    Returns:
        Settings: Loaded configuration
    """
    # Find config file
    if config_path is None:
        search_paths = [
            Path("config.yaml"),
            Path("config.yml"),
            Path("/app/config.yaml"),
            Path(__file__).parent.parent.parent / "config.yaml",
        ]
        for path in search_paths:
            if path.exists():
                config_path = str(path)
                break

    # Load from YAML if exists
    config_data = {}
    if config_path and Path(config_path).exists():
        logger.info(f"Loading config from: {config_path}")
        with open(config_path, "r") as f:
            config_data = yaml.safe_load(f) or {}
    else:
        logger.warning("No config file found, using defaults and environment variables")

    # Apply environment variable overrides
    _apply_env_overrides(config_data, os.environ)

    return Settings.model_validate(config_data)


def _parse_bool(raw: str) -> bool:
    value = raw.strip().lower()
    if value in _TRUE_VALUES:
        return True
    if value in _FALSE_VALUES:
        return False
    raise ValueError(f"Invalid boolean value: {raw!r}")


def _get_env(environ, name: str) -> Optional[str]:
    """Look up ``name`` exactly, then case-insensitively (``token``, ``cookie``)."""
    if name in environ:
        return environ[name]
    for key, value in environ.items():
        if key.upper() == name:
            return value
    return None


def _apply_env_overrides(config_data: dict, environ) -> None:
    """Apply environment variable overrides to config data."""

    # Server settings
    if env_port := environ.get("PORT"):
        config_data.setdefault("server", {})["port"] = int(env_port)
    if env_host := environ.get("SNAPSHOT_HOST"):
        config_data.setdefault("server", {})["host"] = env_host
    if env_fps := environ.get("FPS"):
        config_data.setdefault("server", {})["serve_fps"] = float(env_fps)
    if env_fetch := environ.get("FETCH_FPS"):
        config_data.setdefault("server", {})["fetch_fps"] = float(env_fetch)
    if env_cache := environ.get("USE_CACHE"):
        config_data.setdefault("server", {})["use_cache"] = _parse_bool(env_cache)
    if env_size := environ.get("CACHE_SIZE"):
        config_data.setdefault("server", {})["cache_size"] = int(env_size)

    # Client settings
    if env_timeout := environ.get("FETCH_TIMEOUT"):
        config_data.setdefault("client", {})["timeout_seconds"] = float(env_timeout)
    if env_retry := environ.get("RETRY_COUNT"):
        config_data.setdefault("client", {})["retry_count"] = int(env_retry)

    # Authorization
    if env_token := _get_env(environ, "TOKEN"):
        config_data.setdefault("authorization", {})["token"] = env_token
    if env_cookie := _get_env(environ, "COOKIE"):
        config_data.setdefault("authorization", {})["cookie"] = env_cookie

    # Cameras: CAMERA_<NAME>=url, plus the numbered CAMERA1..CAMERA6 form
    cameras = config_data.get("cameras") or {}
    for key, value in environ.items():
        upper = key.upper()
        if upper.startswith("CAMERA_") and len(upper) > len("CAMERA_"):
            cameras[key[len("CAMERA_"):].lower()] = value
        elif re.fullmatch(r"CAMERA[1-6]", upper):
            cameras[upper.lower()] = value
    if cameras:
        config_data["cameras"] = cameras

    # Logging settings
    if env_log := environ.get("LOG_LEVEL"):
        config_data.setdefault("logging", {})["level"] = env_log
    if env_fmt := environ.get("LOG_FORMAT"):
        config_data.setdefault("logging", {})["format"] = env_fmt


def setup_logging(settings: Settings) -> None:
    """Configure logging based on settings."""
    log_level = getattr(logging, settings.logging.level.upper(), logging.INFO)

    if settings.logging.format == "json":
        log_format = '{"time": "%(asctime)s", "level": "%(levelname)s", "module": "%(name)s", "message": "%(message)s"}'
    else:
        log_format = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

    logging.basicConfig(
        level=log_level,
        format=log_format,
        datefmt="%Y-%m-%dT%H:%M:%S",
    )


# =============================================================================
# Shared Settings Instance
# =============================================================================

@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Load settings once and configure logging."""
    settings = load_config()
    setup_logging(settings)
    return settings
