"""
Snapshot Client
===============

Blocking HTTP client for fetching camera snapshots.

This client:
    - Keeps one pooled ``requests.Session`` for all cameras
    - Sends the configured Authorization header and session cookie
    - Retries transient transport failures a bounded number of times
    - Raises FetchError for transport failures, returns any HTTP status

It is blocking on purpose: the async side runs it through
``asyncio.to_thread`` so the event loop never waits on the network.

Example:
    from snapshot_stream.stream.client import SnapshotClient

    client = SnapshotClient(timeout=5.0, token="Bearer abc")
    response = client.get_image("http://camera.local/snapshot.jpg")
    if response.ok:
        print(len(response.data))
"""

import logging
from dataclasses import dataclass, field
from typing import Optional, Protocol, Tuple

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from snapshot_stream.errors import FetchError


logger = logging.getLogger(__name__)


DEFAULT_USER_AGENT = "snapshot-stream/0.1"
DEFAULT_COOKIE_NAME = "SessaoId"


@dataclass(frozen=True, slots=True)
class SnapshotResponse:
    """
    Result of one snapshot request that reached the server.

    Attributes:
        status_code: HTTP status code
        data: Response body
        reason: HTTP reason phrase, for logging
    """

    status_code: int
    data: bytes = field(repr=False)
    reason: str = ""

    @property
    def ok(self) -> bool:
        """Whether the server answered 200."""
        return self.status_code == 200

    @property
    def status(self) -> str:
        """Status line fragment, e.g. ``503 Service Unavailable``."""
        return f"{self.status_code} {self.reason}".strip()


class SnapshotSource(Protocol):
    """
    Protocol for anything that can fetch a snapshot.

    Implemented by SnapshotClient in production and by fakes in tests.
    Must raise FetchError on transport failure.
    """

    def get_image(self, url: str) -> SnapshotResponse:
        ...


def parse_cookie(raw: str) -> Tuple[str, str]:
    """
    Split a configured cookie into name and value.

    ``name=value`` is split on the first ``=``; a bare value is sent under
    the default session cookie name.

    Returns:
        (name, value), or ("", "") if nothing is configured.
    """
    if not raw:
        return "", ""
    if "=" in raw:
        name, value = raw.split("=", 1)
        return name.strip(), value.strip()
    return DEFAULT_COOKIE_NAME, raw


class SnapshotClient:
    """
    Pooled HTTP client for camera snapshot URLs.

    Attributes:
        timeout: Per-request timeout in seconds
        retry_count: Retries after the first attempt on transport errors
    """

    def __init__(
        self,
        timeout: float = 5.0,
        token: str = "",
        cookie: str = "",
        retry_count: int = 2,
        retry_wait_ms: int = 50,
        user_agent: str = DEFAULT_USER_AGENT,
        pool_maxsize: int = 20,
        session: Optional[requests.Session] = None,
    ) -> None:
        """
        Initialize the client.

        Args:
            timeout: Per-request timeout in seconds
            token: Value for the Authorization header (sent as-is)
            cookie: ``name=value`` or a bare session id
            retry_count: Retries on connection/read errors
            retry_wait_ms: Backoff between retries in milliseconds
            user_agent: User-Agent header
            pool_maxsize: Connections kept per host
            session: Pre-built session (mostly for tests)
        """
        self.timeout = timeout
        self.retry_count = retry_count

        self._session = session or requests.Session()
        self._session.headers.update({
            "User-Agent": user_agent,
            "Accept": "image/jpeg",
        })
        if token:
            self._session.headers["Authorization"] = token

        cookie_name, cookie_value = parse_cookie(cookie)
        if cookie_value:
            self._session.cookies.set(cookie_name, cookie_value)

        retry = Retry(
            total=retry_count,
            connect=retry_count,
            read=retry_count,
            status=0,
            backoff_factor=retry_wait_ms / 1000.0,
            raise_on_status=False,
        )
        adapter = HTTPAdapter(
            max_retries=retry,
            pool_connections=pool_maxsize,
            pool_maxsize=pool_maxsize,
        )
        self._session.mount("http://", adapter)
        self._session.mount("https://", adapter)

    @property
    def session(self) -> requests.Session:
        """Underlying requests session."""
        return self._session

    def get_image(self, url: str) -> SnapshotResponse:
        """
        Fetch one snapshot.

        Args:
            url: Snapshot URL of the camera

        Returns:
            SnapshotResponse with whatever status the server returned

        Raises:
            FetchError: On connection errors, timeouts and other transport
                failures
        """
        try:
            with self._session.get(url, timeout=self.timeout) as response:
                return SnapshotResponse(
                    status_code=response.status_code,
                    data=response.content,
                    reason=response.reason or "",
                )
        except requests.RequestException as e:
            raise FetchError(url, str(e)) from e

    def close(self) -> None:
        """Release pooled connections."""
        self._session.close()
