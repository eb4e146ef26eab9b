"""Error types raised by the fetch layer and the crawl pipeline."""


class CrawlError(Exception):
    """Base class for crawler errors."""


class FetchError(CrawlError):
    """A single fetch attempt failed. Callers do not distinguish subclasses."""

    def __init__(self, url: str, message: str) -> None:
        super().__init__(f"{message} ({url})")
        self.url = url


class NetworkError(FetchError):
    """Connection, timeout, or non-2xx response."""


class ParseError(FetchError):
    """Document or child descriptor could not be interpreted."""


class TerminalFetchError(CrawlError):
    """Retry budget exhausted for a URL; wraps the last attempt's error."""

    def __init__(self, url: str, attempts: int, cause: BaseException | None) -> None:
        super().__init__(f"giving up on {url} after {attempts} attempts: {cause}")
        self.url = url
        self.attempts = attempts
        self.cause = cause


class ConfigError(CrawlError):
    """Unrecoverable configuration problem detected at startup."""
