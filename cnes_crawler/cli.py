"""cnes-crawler CLI. Invoked as `cnes-crawler` when installed with pip install -e ."""

import argparse
import sys
import time
from pathlib import Path

from cnes_crawler._deps import check_required

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_INTERRUPTED = 130


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="cnes-crawler",
        description="Crawl the CNES catalog (states -> municipalities -> establishments) into JSONL.",
        epilog="Unset options fall back to CACHE_FOLDER and CNES_* environment variables.",
    )
    parser.add_argument("--base-url", default=None, metavar="URL", help="Catalog base URL")
    parser.add_argument("--root-path", default=None, metavar="PATH", help="Root listing page, relative to the base URL")
    parser.add_argument("--cache-dir", type=Path, default=None, metavar="DIR", help="Cache directory (env CACHE_FOLDER)")
    parser.add_argument(
        "--cache-key",
        choices=("lossy", "sha256"),
        default=None,
        help="Cache filename scheme: lossy (URL with non-alphanumerics replaced, default) or sha256",
    )
    parser.add_argument("--workers", type=int, default=None, metavar="N", help="Crawl workers (default 30)")
    parser.add_argument(
        "--fetch-workers",
        type=int,
        default=None,
        metavar="N",
        help="Fetch workers; each sleeps --cooldown after every request (default: same as --workers)",
    )
    parser.add_argument("--retry-threshold", type=int, default=None, metavar="N", help="Retries per URL before giving up (default 3)")
    parser.add_argument("--retry-delay", type=float, default=None, metavar="SECS", help="Wait before each retry (default 2)")
    parser.add_argument("--cooldown", type=float, default=None, metavar="SECS", help="Per-fetch-worker pause after each request (default 4)")
    parser.add_argument("--timeout", type=float, default=None, metavar="SECS", help="Per-request deadline (default 30)")
    parser.add_argument(
        "--out",
        type=Path,
        default=None,
        metavar="FILE",
        help="JSONL file for job outcomes (default: output/cnes-<timestamp>.jsonl)",
    )
    parser.add_argument("--no-progress", action="store_true", help="Disable progress bar (e.g. for scripting)")
    parser.add_argument("--verbose", action="store_true", help="Log every request and cache hit")
    return parser


def main(argv: list[str] | None = None) -> int:
    check_required()

    from cnes_crawler.config import CrawlConfig
    from cnes_crawler.crawler import Crawler
    from cnes_crawler.errors import ConfigError, CrawlError
    from cnes_crawler.fetcher import Fetcher
    from cnes_crawler.parsers import CnesParser
    from cnes_crawler.retry import RetryCoordinator, RetryState
    from cnes_crawler.service import FetchService
    from cnes_crawler.sinks import JsonlSink

    args = build_parser().parse_args(argv)

    try:
        config = CrawlConfig.from_env()
        for name in (
            "base_url", "root_path", "cache_dir", "cache_key", "workers", "fetch_workers",
            "retry_threshold", "retry_delay", "cooldown", "timeout",
        ):
            value = getattr(args, name)
            if value is not None:
                setattr(config, name, value)
        config.validate()
    except ConfigError as e:
        print(f"Error: {e}", file=sys.stderr)
        return EXIT_FAILED

    out = args.out or Path("output") / f"cnes-{time.strftime('%Y%m%dT%H%M%SZ', time.gmtime())}.jsonl"
    print(
        f"Crawl: {config.root_url} (workers={config.workers}, fetch workers={config.effective_fetch_workers}, "
        f"cooldown={config.cooldown}s, cache={config.cache_dir})",
        file=sys.stderr,
    )

    fetcher = Fetcher(timeout=config.timeout)
    service = FetchService(
        fetcher,
        config.make_cache(),
        workers=config.effective_fetch_workers,
        cooldown=config.cooldown,
        verbose=args.verbose,
    )
    coordinator = RetryCoordinator(
        service,
        RetryState(),
        threshold=config.retry_threshold,
        delay=config.retry_delay,
    )
    try:
        with service, JsonlSink(out) as sink:
            crawler = Crawler(
                coordinator,
                CnesParser(),
                sink,
                base_url=config.base_url,
                root_url=config.root_url,
                workers=config.workers,
                use_progress=not args.no_progress,
            )
            stats = crawler.run()
    except KeyboardInterrupt:
        print("\nInterrupted.", file=sys.stderr)
        return EXIT_INTERRUPTED
    except CrawlError as e:
        print(f"Error: bootstrap failed: {e}", file=sys.stderr)
        return EXIT_FAILED
    finally:
        fetcher.close()

    print(f"\nDone: {stats.summary()} (network {service.network_fetches}, cache {service.cache_hits})", file=sys.stderr)
    print(f"Outcomes: {out}", file=sys.stderr)
    return EXIT_OK


if __name__ == "__main__":
    sys.exit(main())
