"""
Fetch service: a fixed pool of fetch workers sharing one inbound request queue.

Callers block on a private single-slot reply queue. Every worker consults the
cache first, fetches on miss, stores the raw body before parsing, replies,
then sleeps its cooldown. The cooldown is per worker, so the upstream host
sees at most workers / cooldown requests per second.
"""

import sys
import threading
from dataclasses import dataclass, field
from queue import Queue

from bs4 import BeautifulSoup

from cnes_crawler.cache import FetchCache
from cnes_crawler.errors import FetchError, NetworkError, ParseError
from cnes_crawler.fetcher import Fetcher

DEFAULT_COOLDOWN = 4.0


@dataclass
class Document:
    """A fetched and parsed page."""

    url: str
    content: bytes
    soup: BeautifulSoup
    from_cache: bool = False


@dataclass
class FetchResult:
    document: Document | None = None
    error: FetchError | None = None

    @property
    def ok(self) -> bool:
        return self.error is None and self.document is not None


@dataclass
class FetchRequest:
    """One fetch attempt. The reply queue is answered exactly once."""

    url: str
    reply: "Queue[FetchResult]" = field(default_factory=lambda: Queue(maxsize=1))


def parse_document(url: str, content: bytes, *, from_cache: bool = False) -> Document:
    """Parse raw HTML bytes; BeautifulSoup detects the charset from the body."""
    try:
        soup = BeautifulSoup(content, "lxml")
    except Exception as e:
        raise ParseError(url, f"unparseable document: {e}") from e
    return Document(url=url, content=content, soup=soup, from_cache=from_cache)


class FetchService:
    """Pooled, cached, rate-limited HTTP retrieval."""

    def __init__(
        self,
        fetcher: Fetcher,
        cache: FetchCache | None,
        *,
        workers: int,
        cooldown: float = DEFAULT_COOLDOWN,
        verbose: bool = False,
    ) -> None:
        if workers < 1:
            raise ValueError("fetch service needs at least one worker")
        self._fetcher = fetcher
        self._cache = cache
        self._workers = workers
        self._cooldown = cooldown
        self._verbose = verbose
        self._requests: "Queue[FetchRequest | None]" = Queue()
        self._stop = threading.Event()
        self._threads: list[threading.Thread] = []
        self.network_fetches = 0
        self.cache_hits = 0
        self._count_lock = threading.Lock()
        # Orders fetch()'s check-and-enqueue against stop(), so nothing is queued after the drain
        self._lifecycle_lock = threading.Lock()

    @property
    def running(self) -> bool:
        return bool(self._threads) and not self._stop.is_set()

    def start(self) -> "FetchService":
        if self._threads or self._stop.is_set():
            return self
        for i in range(self._workers):
            t = threading.Thread(target=self._worker, args=(i,), name=f"fetch-{i}", daemon=True)
            t.start()
            self._threads.append(t)
        return self

    def stop(self, timeout: float | None = None) -> None:
        """Wake and join all workers. Requests still queued are answered with an error."""
        with self._lifecycle_lock:
            self._stop.set()
            for _ in self._threads:
                self._requests.put(None)
        for t in self._threads:
            t.join(timeout)
        self._threads = []
        while not self._requests.empty():
            req = self._requests.get_nowait()
            if req is not None:
                req.reply.put(FetchResult(error=NetworkError(req.url, "fetch service stopped")))

    def __enter__(self) -> "FetchService":
        return self.start()

    def __exit__(self, *args: object) -> None:
        self.stop()

    def fetch(self, url: str) -> FetchResult:
        """Submit one fetch attempt and block until a worker answers."""
        req = FetchRequest(url)
        with self._lifecycle_lock:
            if not self.running:
                return FetchResult(error=NetworkError(url, "fetch service stopped"))
            self._requests.put(req)
        return req.reply.get()

    def _worker(self, worker_id: int) -> None:
        fetcher = self._fetcher.spawn()
        if self._verbose:
            print(f"#{worker_id} REQUEST WORKER STARTED", file=sys.stderr)
        try:
            while True:
                req = self._requests.get()
                if req is None:
                    return
                result = self._handle(worker_id, fetcher, req.url)
                req.reply.put(result)
                if self._stop.wait(self._cooldown):
                    return
        finally:
            fetcher.close()

    def _handle(self, worker_id: int, fetcher: Fetcher, url: str) -> FetchResult:
        try:
            if self._cache is not None:
                cached = self._cache.get(url)
                if cached is not None:
                    with self._count_lock:
                        self.cache_hits += 1
                    if self._verbose:
                        print(f"#{worker_id} FROM CACHE {url}", file=sys.stderr)
                    return FetchResult(document=parse_document(url, cached, from_cache=True))
            if self._verbose:
                print(f"#{worker_id} GET {url}", file=sys.stderr)
            with self._count_lock:
                self.network_fetches += 1
            body = fetcher.get(url)
            if self._cache is not None:
                self._cache.put(url, body)
            return FetchResult(document=parse_document(url, body))
        except FetchError as e:
            return FetchResult(error=e)
        except Exception as e:
            # Any other fetcher exception counts as a failed attempt
            return FetchResult(error=NetworkError(url, f"{type(e).__name__}: {e}"))
