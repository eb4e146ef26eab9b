"""Read-through disk cache of raw response bodies, one file per URL key."""

import hashlib
import os
import re
import sys
import tempfile
from pathlib import Path

from cnes_crawler.errors import ConfigError

KEY_SCHEMES = ("lossy", "sha256")

# ASCII non-word characters; keeps existing on-disk caches readable
_NON_WORD_RE = re.compile(r"\W", re.ASCII)
KEY_SEPARATOR = "-"

# Most filesystems cap a name at 255 bytes
MAX_KEY_LENGTH = 255


def lossy_key(url: str) -> str:
    """
    Replace every non-alphanumeric character with '-'. Distinct URLs can
    collide (e.g. 'a?b' and 'a/b'); both map to the same file.
    """
    return _NON_WORD_RE.sub(KEY_SEPARATOR, url)


def sha256_key(url: str) -> str:
    """Hex digest of the full URL; collision-resistant but not human-readable."""
    return hashlib.sha256(url.encode("utf-8")).hexdigest()


class FetchCache:
    """Cache keyed by a deterministic transform of the URL. Entries never expire."""

    def __init__(self, root: Path | str, *, key_scheme: str = "lossy") -> None:
        if key_scheme not in KEY_SCHEMES:
            raise ConfigError(f"unknown cache key scheme {key_scheme!r} (expected one of {', '.join(KEY_SCHEMES)})")
        self.root = Path(root)
        self.key_scheme = key_scheme

    def key(self, url: str) -> str:
        if self.key_scheme == "sha256":
            return sha256_key(url)
        return lossy_key(url)

    def path_for(self, url: str) -> Path:
        return self.root / self.key(url)

    def ensure_writable(self) -> None:
        """Create the cache root and check we can write to it; raise ConfigError otherwise."""
        try:
            self.root.mkdir(parents=True, exist_ok=True)
            fd, probe = tempfile.mkstemp(dir=self.root, prefix=".probe-")
            os.close(fd)
            os.unlink(probe)
        except OSError as e:
            raise ConfigError(f"cache directory {self.root} is not writable: {e}") from e

    def get(self, url: str) -> bytes | None:
        """Return the cached body for url, or None on miss."""
        key = self.key(url)
        if len(key.encode("utf-8")) > MAX_KEY_LENGTH:
            return None
        try:
            return (self.root / key).read_bytes()
        except FileNotFoundError:
            return None
        except OSError as e:
            print(f"  Cache read failed for {url}: {e}", file=sys.stderr)
            return None

    def put(self, url: str, data: bytes) -> bool:
        """Store data for url. Written to a temp file then renamed, so readers never see a partial body."""
        key = self.key(url)
        if len(key.encode("utf-8")) > MAX_KEY_LENGTH:
            print(f"  Cache key too long, not caching {url}", file=sys.stderr)
            return False
        path = self.root / key
        tmp_name: str | None = None
        try:
            self.root.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(dir=self.root, prefix=".tmp-")
            with os.fdopen(fd, "wb") as f:
                f.write(data)
            os.replace(tmp_name, path)
            return True
        except OSError as e:
            print(f"  Cache write failed for {url}: {e}", file=sys.stderr)
            if tmp_name is not None:
                try:
                    os.unlink(tmp_name)
                except OSError:
                    pass
            return False
