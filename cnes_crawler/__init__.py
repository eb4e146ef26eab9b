"""CNES catalog crawler: concurrent, cached, rate-limited crawl of a hierarchical HTML catalog."""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("cnes-crawler")
except PackageNotFoundError:
    __version__ = "0.0.0+dev"
