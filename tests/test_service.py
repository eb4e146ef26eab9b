import threading
import time

import pytest

from cnes_crawler.cache import FetchCache
from cnes_crawler.errors import NetworkError
from cnes_crawler.service import FetchService, parse_document
from fakes import FakeFetcher

URL = "http://catalog.test/Lista_Tot_Es_Estado.asp"
PAGE = b"<html><head><title>Estados</title></head><body><p>x</p></body></html>"


def test_second_fetch_comes_from_cache(tmp_path):
    fetcher = FakeFetcher({URL: PAGE})
    cache = FetchCache(tmp_path)
    with FetchService(fetcher, cache, workers=2, cooldown=0) as service:
        first = service.fetch(URL)
        second = service.fetch(URL)
    assert first.ok and second.ok
    assert first.document.content == second.document.content == PAGE
    assert not first.document.from_cache
    assert second.document.from_cache
    assert fetcher.calls[URL] == 1
    assert cache.get(URL) == PAGE
    assert service.network_fetches == 1
    assert service.cache_hits == 1


def test_existing_cache_entry_skips_network(tmp_path):
    cache = FetchCache(tmp_path)
    cache.put(URL, PAGE)
    fetcher = FakeFetcher()
    with FetchService(fetcher, cache, workers=1, cooldown=0) as service:
        result = service.fetch(URL)
    assert result.document.soup.title.string == "Estados"
    assert fetcher.calls[URL] == 0


def test_failures_are_not_cached(tmp_path):
    fetcher = FakeFetcher({URL: PAGE}, failures={URL: 1})
    cache = FetchCache(tmp_path)
    with FetchService(fetcher, cache, workers=1, cooldown=0) as service:
        failed = service.fetch(URL)
        assert not failed.ok
        assert isinstance(failed.error, NetworkError)
        assert cache.get(URL) is None
        assert service.fetch(URL).ok
    assert cache.get(URL) == PAGE


def test_unexpected_fetcher_exception_becomes_error_and_worker_survives():
    class Flaky(FakeFetcher):
        def get(self, url):
            if url.endswith("boom"):
                raise RuntimeError("driver exploded")
            return super().get(url)

    with FetchService(Flaky({URL: PAGE}), None, workers=1, cooldown=0) as service:
        bad = service.fetch("http://catalog.test/boom")
        good = service.fetch(URL)
    assert isinstance(bad.error, NetworkError)
    assert "driver exploded" in str(bad.error)
    assert good.ok


def test_cooldown_is_per_worker():
    fetcher = FakeFetcher()
    with FetchService(fetcher, None, workers=1, cooldown=0.3) as service:
        start = time.monotonic()
        service.fetch("http://catalog.test/a")
        service.fetch("http://catalog.test/b")
        elapsed = time.monotonic() - start
    assert elapsed >= 0.3


def test_fetch_after_stop_fails_fast():
    service = FetchService(FakeFetcher(), None, workers=1, cooldown=0).start()
    service.stop()
    result = service.fetch(URL)
    assert isinstance(result.error, NetworkError)
    assert not service.running


def test_stop_interrupts_cooldown():
    service = FetchService(FakeFetcher(), None, workers=1, cooldown=30).start()
    assert service.fetch(URL).ok
    start = time.monotonic()
    service.stop(timeout=5)
    assert time.monotonic() - start < 5


def test_needs_a_worker():
    with pytest.raises(ValueError):
        FetchService(FakeFetcher(), None, workers=0)


def test_parse_document_keeps_raw_bytes():
    doc = parse_document(URL, PAGE)
    assert doc.content == PAGE
    assert doc.soup.find("p").get_text() == "x"
    assert doc.url == URL


def test_fetch_on_unstarted_service_fails_fast():
    fetcher = FakeFetcher({URL: PAGE})
    result = FetchService(fetcher, None, workers=1, cooldown=0).fetch(URL)
    assert isinstance(result.error, NetworkError)
    assert "stopped" in str(result.error)
    assert fetcher.calls[URL] == 0


def test_fetch_racing_stop_is_always_answered():
    service = FetchService(FakeFetcher({URL: PAGE}), None, workers=1, cooldown=0).start()
    stopper = threading.Thread(target=service.stop)
    real_put = service._requests.put

    def put_while_stopping(item, *args, **kwargs):
        if item is not None and stopper.ident is None:
            stopper.start()
            time.sleep(0.2)
        real_put(item, *args, **kwargs)

    service._requests.put = put_while_stopping
    results = []
    caller = threading.Thread(target=lambda: results.append(service.fetch(URL)))
    caller.start()
    caller.join(5)
    stopper.join(5)
    assert not caller.is_alive()
    assert len(results) == 1
    assert results[0].ok or isinstance(results[0].error, NetworkError)
    assert service.fetch(URL).error is not None
