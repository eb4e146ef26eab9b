"""Per-URL failure accounting and the retry loop around FetchService.fetch."""

import sys
import threading
import time
from typing import Callable, Protocol

from cnes_crawler.errors import TerminalFetchError
from cnes_crawler.service import Document, FetchResult

DEFAULT_RETRY_THRESHOLD = 3
DEFAULT_RETRY_DELAY = 2.0


class SupportsFetch(Protocol):
    def fetch(self, url: str) -> FetchResult: ...


class RetryState:
    """Consecutive-failure count per URL. Every access goes through one lock."""

    def __init__(self) -> None:
        self._counts: dict[str, int] = {}
        self._lock = threading.Lock()

    def increment(self, url: str) -> int:
        """Record one more failure for url; return the new count."""
        with self._lock:
            n = self._counts.get(url, 0) + 1
            self._counts[url] = n
            return n

    def clear(self, url: str) -> None:
        with self._lock:
            self._counts.pop(url, None)

    def get(self, url: str) -> int:
        with self._lock:
            return self._counts.get(url, 0)

    def snapshot(self) -> dict[str, int]:
        with self._lock:
            return dict(self._counts)

    def __len__(self) -> int:
        with self._lock:
            return len(self._counts)


class RetryCoordinator:
    """
    fetch_with_retry: retry a failing URL after a fixed delay until its failure
    count exceeds the threshold, then raise TerminalFetchError. With the default
    threshold of 3 that is at most 4 attempts per call.
    """

    def __init__(
        self,
        service: SupportsFetch,
        state: RetryState | None = None,
        *,
        threshold: int = DEFAULT_RETRY_THRESHOLD,
        delay: float = DEFAULT_RETRY_DELAY,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        if threshold < 0:
            raise ValueError("retry threshold must be >= 0")
        self.service = service
        self.state = state if state is not None else RetryState()
        self.threshold = threshold
        self.delay = delay
        self._sleep = sleep

    def fetch_with_retry(self, url: str) -> Document:
        attempt = 0
        # Bounded by attempts as well as by the shared count, so a count another
        # caller is advancing for the same URL can never extend this loop
        while True:
            attempt += 1
            result = self.service.fetch(url)
            if result.ok:
                self.state.clear(url)
                return result.document  # type: ignore[return-value]
            last_error = result.error
            count = self.state.increment(url)
            print(f"ERR {last_error}, counter: {count}", file=sys.stderr)
            if count > self.threshold or attempt > self.threshold:
                # Drop the entry so the map only holds URLs that are still being retried
                self.state.clear(url)
                raise TerminalFetchError(url, attempt, last_error)
            self._sleep(self.delay)
