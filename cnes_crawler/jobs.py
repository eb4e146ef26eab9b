"""Job, record, and outcome types that flow through the crawl pipeline."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any
from urllib.parse import urljoin

from cnes_crawler.errors import ParseError


class JobKind(str, Enum):
    """Position of a page in the catalog hierarchy."""

    ROOT = "root"  # fetched by bootstrap, never queued
    REGION = "region"  # e.g. a state
    SUBREGION = "subregion"  # e.g. a municipality


@dataclass(frozen=True)
class Job:
    """One page to fetch, plus the catalog entity it represents."""

    kind: JobKind
    display_name: str
    url: str
    parent_key: str | None = None


@dataclass(frozen=True)
class ChildJob:
    """Job descriptor as produced by a page parser; url may be relative."""

    kind: JobKind
    display_name: str
    url: str | None
    parent_key: str | None = None

    def resolve(self, base_url: str, parent: Job | None = None) -> Job:
        """Build a queueable Job, resolving url against base_url. Inherits parent_key when unset."""
        if not self.url or not self.url.strip():
            raise ParseError(parent.url if parent else base_url, f"child {self.display_name!r} has no url")
        if self.kind == JobKind.ROOT:
            raise ParseError(parent.url if parent else base_url, "root jobs cannot be discovered")
        key = self.parent_key
        if key is None and parent is not None:
            key = parent.parent_key
        return Job(
            kind=self.kind,
            display_name=self.display_name.strip(),
            url=urljoin(base_url, self.url.strip()),
            parent_key=key,
        )


@dataclass(frozen=True)
class Record:
    """Terminal leaf entity extracted from a page."""

    name: str
    url: str | None = None
    parent_key: str | None = None
    data: dict[str, Any] = field(default_factory=dict, hash=False, compare=False)

    def to_dict(self) -> dict[str, Any]:
        return {"name": self.name, "url": self.url, "parent_key": self.parent_key, **self.data}


@dataclass
class JobOutcome:
    """Final result of processing one job, handed to the sink exactly once."""

    job: Job
    records: list[Record] = field(default_factory=list)
    children: int = 0
    error: BaseException | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.job.kind.value,
            "name": self.job.display_name,
            "url": self.job.url,
            "parent_key": self.job.parent_key,
            "status": "ok" if self.ok else "failed",
            "error": None if self.error is None else str(self.error),
            "children": self.children,
            "records": [r.to_dict() for r in self.records],
        }
