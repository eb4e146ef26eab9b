"""Crawl settings: defaults, environment overrides, and startup validation."""

import os
from dataclasses import dataclass
from pathlib import Path
from urllib.parse import urljoin, urlparse

from cnes_crawler.cache import KEY_SCHEMES, FetchCache
from cnes_crawler.crawler import DEFAULT_WORKERS
from cnes_crawler.errors import ConfigError
from cnes_crawler.fetcher import DEFAULT_TIMEOUT
from cnes_crawler.retry import DEFAULT_RETRY_DELAY, DEFAULT_RETRY_THRESHOLD
from cnes_crawler.service import DEFAULT_COOLDOWN

DEFAULT_BASE_URL = "http://cnes.datasus.gov.br/"
DEFAULT_ROOT_PATH = "Lista_Tot_Es_Estado.asp"
DEFAULT_CACHE_DIR = "cache"

# Environment variable -> (field, type)
ENV_VARS = {
    "CACHE_FOLDER": ("cache_dir", Path),
    "CNES_BASE_URL": ("base_url", str),
    "CNES_ROOT_PATH": ("root_path", str),
    "CNES_WORKERS": ("workers", int),
    "CNES_FETCH_WORKERS": ("fetch_workers", int),
    "CNES_RETRY_THRESHOLD": ("retry_threshold", int),
    "CNES_RETRY_DELAY": ("retry_delay", float),
    "CNES_COOLDOWN": ("cooldown", float),
    "CNES_TIMEOUT": ("timeout", float),
    "CNES_CACHE_KEY": ("cache_key", str),
}


@dataclass
class CrawlConfig:
    base_url: str = DEFAULT_BASE_URL
    root_path: str = DEFAULT_ROOT_PATH
    cache_dir: Path = Path(DEFAULT_CACHE_DIR)
    cache_key: str = "lossy"
    workers: int = DEFAULT_WORKERS
    fetch_workers: int | None = None  # None = same as workers
    retry_threshold: int = DEFAULT_RETRY_THRESHOLD
    retry_delay: float = DEFAULT_RETRY_DELAY
    cooldown: float = DEFAULT_COOLDOWN
    timeout: float = DEFAULT_TIMEOUT

    @classmethod
    def from_env(cls, environ: dict[str, str] | None = None) -> "CrawlConfig":
        """Defaults overridden by any ENV_VARS that are set and non-empty."""
        env = os.environ if environ is None else environ
        values: dict = {}
        for var, (name, conv) in ENV_VARS.items():
            raw = env.get(var, "").strip()
            if not raw:
                continue
            try:
                values[name] = conv(raw)
            except ValueError as e:
                raise ConfigError(f"{var}={raw!r}: {e}") from e
        return cls(**values)

    @property
    def root_url(self) -> str:
        return urljoin(self.base_url, self.root_path)

    @property
    def effective_fetch_workers(self) -> int:
        return self.fetch_workers if self.fetch_workers is not None else self.workers

    def validate(self) -> None:
        """Raise ConfigError for settings the crawl cannot start with. Creates the cache dir."""
        parsed = urlparse(self.base_url)
        if parsed.scheme not in ("http", "https") or not parsed.netloc:
            raise ConfigError(f"base url must be http(s)://host/..., got {self.base_url!r}")
        if self.workers < 1:
            raise ConfigError("workers must be >= 1")
        if self.effective_fetch_workers < 1:
            raise ConfigError("fetch workers must be >= 1")
        if self.retry_threshold < 0:
            raise ConfigError("retry threshold must be >= 0")
        for name in ("retry_delay", "cooldown"):
            if getattr(self, name) < 0:
                raise ConfigError(f"{name.replace('_', ' ')} must be >= 0")
        if self.timeout <= 0:
            raise ConfigError("timeout must be > 0")
        if self.cache_key not in KEY_SCHEMES:
            raise ConfigError(f"cache key must be one of {', '.join(KEY_SCHEMES)}")
        self.make_cache().ensure_writable()

    def make_cache(self) -> FetchCache:
        return FetchCache(self.cache_dir, key_scheme=self.cache_key)
