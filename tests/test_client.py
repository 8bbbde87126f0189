"""
Snapshot Client Tests
=====================

Header/cookie injection and error mapping, using a fake transport adapter.
"""

import pytest
import requests
from requests.adapters import BaseAdapter

from conftest import make_jpeg

from snapshot_stream.errors import FetchError
from snapshot_stream.stream.client import SnapshotClient, parse_cookie


URL = "http://camera.local/snapshot.jpg"


class FakeAdapter(BaseAdapter):
    """Transport adapter that records requests and returns canned responses."""

    def __init__(self, status=200, body=b"", error=None):
        super().__init__()
        self.status = status
        self.body = body
        self.error = error
        self.requests = []
        self.timeouts = []

    def send(self, request, stream=False, timeout=None, verify=True, cert=None, proxies=None):
        self.requests.append(request)
        self.timeouts.append(timeout)
        if self.error is not None:
            raise self.error

        response = requests.Response()
        response.status_code = self.status
        response.reason = "OK" if self.status == 200 else "Service Unavailable"
        response._content = self.body
        response._content_consumed = True
        response.url = request.url
        response.request = request
        return response

    def close(self):
        pass


def make_client(adapter, **kwargs):
    client = SnapshotClient(**kwargs)
    client.session.mount("http://", adapter)
    return client


class TestParseCookie:
    """Cookie configuration formats."""

    def test_empty(self):
        assert parse_cookie("") == ("", "")

    def test_name_value(self):
        assert parse_cookie(" session = abc=123 ") == ("session", "abc=123")

    def test_bare_value_uses_default_name(self):
        assert parse_cookie("abc123") == ("SessaoId", "abc123")


class TestSnapshotClient:
    """Requests made through the session."""

    def test_returns_body_and_status(self):
        body = make_jpeg()
        adapter = FakeAdapter(body=body)
        client = make_client(adapter)

        response = client.get_image(URL)

        assert response.ok
        assert response.status_code == 200
        assert response.data == body
        assert adapter.timeouts == [5.0]

    def test_non_200_is_not_an_exception(self):
        client = make_client(FakeAdapter(status=503, body=b"busy"))

        response = client.get_image(URL)

        assert not response.ok
        assert response.status == "503 Service Unavailable"

    def test_default_headers(self):
        adapter = FakeAdapter(body=b"x")
        make_client(adapter, user_agent="test-agent").get_image(URL)

        headers = adapter.requests[0].headers
        assert headers["User-Agent"] == "test-agent"
        assert headers["Accept"] == "image/jpeg"
        assert "Authorization" not in headers
        assert "Cookie" not in headers

    def test_token_and_cookie(self):
        adapter = FakeAdapter(body=b"x")
        client = make_client(adapter, token="Bearer t0k3n", cookie="abc123")
        client.get_image(URL)

        headers = adapter.requests[0].headers
        assert headers["Authorization"] == "Bearer t0k3n"
        assert headers["Cookie"] == "SessaoId=abc123"

    def test_custom_timeout(self):
        adapter = FakeAdapter(body=b"x")
        make_client(adapter, timeout=1.5).get_image(URL)
        assert adapter.timeouts == [1.5]

    @pytest.mark.parametrize(
        "error",
        [
            requests.ConnectionError("refused"),
            requests.Timeout("timed out"),
        ],
    )
    def test_transport_errors_raise_fetch_error(self, error):
        client = make_client(FakeAdapter(error=error))

        with pytest.raises(FetchError) as exc_info:
            client.get_image(URL)

        assert exc_info.value.url == URL
        assert exc_info.value.__cause__ is error

    def test_retry_adapter_mounted(self):
        client = SnapshotClient(retry_count=3)
        adapter = client.session.get_adapter("http://camera.local/")
        assert adapter.max_retries.total == 3
        client.close()
