"""HTTP fetching with a fixed client signature and a per-request deadline."""

import httpx

from cnes_crawler.errors import NetworkError

# Identifying signature the catalog operators already know
DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (DataBr.io Crawler) AppleWebKit/537.13+ (KHTML, like Gecko) "
    "Version/5.1.7 Safari/534.57.2"
)
DEFAULT_TIMEOUT = 30.0

DEFAULT_HEADERS = {
    "User-Agent": DEFAULT_USER_AGENT,
    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
}


class Fetcher:
    """
    HTTP fetcher with connection pooling. One attempt per call: a timeout,
    transport failure or non-2xx status raises NetworkError. Retrying is the
    caller's job.
    """

    def __init__(
        self,
        *,
        timeout: float = DEFAULT_TIMEOUT,
        headers: dict[str, str] | None = None,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self._timeout = timeout
        self._headers = {**DEFAULT_HEADERS, **(headers or {})}
        self._transport = transport
        self._client: httpx.Client | None = None

    @property
    def timeout(self) -> float:
        return self._timeout

    def spawn(self) -> "Fetcher":
        """Return a new Fetcher with the same config (for use in another thread)."""
        return Fetcher(timeout=self._timeout, headers=self._headers, transport=self._transport)

    def _get_client(self) -> httpx.Client:
        if self._client is None or self._client.is_closed:
            self._client = httpx.Client(
                follow_redirects=True,
                timeout=self._timeout,
                headers=self._headers,
                transport=self._transport,
            )
        return self._client

    def close(self) -> None:
        if self._client and not self._client.is_closed:
            self._client.close()

    def __enter__(self) -> "Fetcher":
        return self

    def __exit__(self, *args: object) -> None:
        self.close()

    def get(self, url: str) -> bytes:
        """GET url and return the raw body."""
        try:
            resp = self._get_client().get(url)
            resp.raise_for_status()
            return resp.content
        except httpx.TimeoutException as e:
            raise NetworkError(url, f"timed out after {self._timeout:.0f}s") from e
        except httpx.HTTPStatusError as e:
            raise NetworkError(url, f"HTTP {e.response.status_code}") from e
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            raise NetworkError(url, f"{type(e).__name__}: {e}") from e
