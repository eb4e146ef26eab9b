import httpx
import pytest

from cnes_crawler.errors import NetworkError
from cnes_crawler.fetcher import DEFAULT_USER_AGENT, Fetcher


def test_get_returns_body_and_sends_signature():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["ua"] = request.headers.get("user-agent")
        return httpx.Response(200, content=b"<html>ok</html>")

    with Fetcher(transport=httpx.MockTransport(handler)) as f:
        assert f.get("http://catalog.test/page.asp") == b"<html>ok</html>"
    assert seen["ua"] == DEFAULT_USER_AGENT


@pytest.mark.parametrize("status", [403, 404, 500, 503])
def test_error_status_is_network_error(status):
    transport = httpx.MockTransport(lambda request: httpx.Response(status))
    with Fetcher(transport=transport) as f:
        with pytest.raises(NetworkError) as exc:
            f.get("http://catalog.test/x")
    assert f"HTTP {status}" in str(exc.value)
    assert exc.value.url == "http://catalog.test/x"


def test_timeout_is_network_error():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("read timed out", request=request)

    with Fetcher(timeout=5, transport=httpx.MockTransport(handler)) as f:
        with pytest.raises(NetworkError, match="timed out"):
            f.get("http://catalog.test/slow")


def test_connect_error_is_network_error():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    with Fetcher(transport=httpx.MockTransport(handler)) as f:
        with pytest.raises(NetworkError, match="ConnectError"):
            f.get("http://catalog.test/down")


def test_spawn_keeps_config():
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request.headers.get("x-extra"))
        return httpx.Response(200, content=b"")

    parent = Fetcher(timeout=7, headers={"X-Extra": "1"}, transport=httpx.MockTransport(handler))
    child = parent.spawn()
    try:
        assert child is not parent
        assert child.timeout == 7
        child.get("http://catalog.test/")
    finally:
        child.close()
        parent.close()
    assert calls == ["1"]
