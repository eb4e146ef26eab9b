"""
Crawl engine: per-kind job queues, a fixed crawl worker pool, and bootstrap.

Workers both consume and produce jobs of the same kinds, so queues are
unbounded: put() never blocks, which rules out the pool deadlocking on its
own output regardless of fan-out. Memory grows with the number of
discovered-but-unprocessed jobs, which for a finite catalog is bounded by
the catalog size.
"""

import sys
import threading
from collections import deque
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field, replace
from typing import Iterable

from tqdm import tqdm

from cnes_crawler.errors import ParseError, TerminalFetchError
from cnes_crawler.jobs import ChildJob, Job, JobKind, JobOutcome, Record
from cnes_crawler.parsers import PageParser
from cnes_crawler.retry import RetryCoordinator
from cnes_crawler.service import Document
from cnes_crawler.sinks import Sink

DEFAULT_WORKERS = 30
QUEUED_KINDS = (JobKind.REGION, JobKind.SUBREGION)


class JobQueues:
    """
    One FIFO per job kind behind a single condition variable, so get() waits
    on every kind at once. Ties between non-empty kinds are broken round-robin.

    In-flight accounting works like queue.Queue.join: put() and hold() add one
    unfinished unit, task_done() removes one. get() returns None once every
    queue is empty and nothing is unfinished (crawl complete), or after close().
    """

    def __init__(self, kinds: Iterable[JobKind] = QUEUED_KINDS) -> None:
        self._queues: dict[JobKind, deque[Job]] = {k: deque() for k in kinds}
        self._order: list[JobKind] = list(self._queues)
        self._next = 0
        self._cond = threading.Condition()
        self._unfinished = 0
        self._closed = False

    def put(self, job: Job) -> bool:
        """Enqueue job on its kind's queue. Never blocks. Returns False if closed."""
        if job.kind == JobKind.ROOT:
            raise ValueError("root jobs are fetched by bootstrap, not queued")
        with self._cond:
            if self._closed:
                return False
            q = self._queues.get(job.kind)
            if q is None:
                q = self._queues[job.kind] = deque()
                self._order.append(job.kind)
            q.append(job)
            self._unfinished += 1
            self._cond.notify()
            return True

    def get(self) -> Job | None:
        """Block until a job of any kind is available. None means stop."""
        with self._cond:
            while True:
                if self._closed:
                    return None
                job = self._pop_next()
                if job is not None:
                    return job
                if self._unfinished == 0:
                    return None
                self._cond.wait()

    def _pop_next(self) -> Job | None:
        n = len(self._order)
        for i in range(n):
            idx = (self._next + i) % n
            q = self._queues[self._order[idx]]
            if q:
                self._next = (idx + 1) % n
                return q.popleft()
        return None

    def hold(self) -> None:
        """Keep the queues open (e.g. while bootstrap is still seeding)."""
        with self._cond:
            self._unfinished += 1

    def task_done(self) -> None:
        with self._cond:
            if self._unfinished <= 0:
                raise ValueError("task_done() called too many times")
            self._unfinished -= 1
            if self._unfinished == 0:
                self._cond.notify_all()

    def close(self) -> None:
        """Stop handing out jobs; queued jobs are dropped."""
        with self._cond:
            self._closed = True
            for q in self._queues.values():
                q.clear()
            self._cond.notify_all()

    @property
    def closed(self) -> bool:
        with self._cond:
            return self._closed

    def pending(self) -> dict[JobKind, int]:
        with self._cond:
            return {k: len(q) for k, q in self._queues.items()}

    def __len__(self) -> int:
        with self._cond:
            return sum(len(q) for q in self._queues.values())


@dataclass
class CrawlStats:
    jobs: dict[str, int] = field(default_factory=dict)
    failed: int = 0
    records: int = 0
    children: int = 0
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False, compare=False)

    def add(self, outcome: JobOutcome) -> None:
        with self._lock:
            kind = outcome.job.kind.value
            self.jobs[kind] = self.jobs.get(kind, 0) + 1
            self.records += len(outcome.records)
            self.children += outcome.children
            if not outcome.ok:
                self.failed += 1

    def summary(self) -> str:
        with self._lock:
            per_kind = ", ".join(f"{n} {k}" for k, n in sorted(self.jobs.items())) or "no jobs"
            return f"{per_kind}; {self.children} jobs discovered, {self.records} records, {self.failed} failed"


class Crawler:
    """
    Runs the crawl: starts the worker pool, bootstraps from the root page,
    and returns once the catalog is exhausted. Every finished job (including
    the root) is submitted to the sink exactly once.
    """

    def __init__(
        self,
        coordinator: RetryCoordinator,
        parser: PageParser,
        sink: Sink,
        *,
        base_url: str,
        root_url: str,
        workers: int = DEFAULT_WORKERS,
        use_progress: bool = False,
        queues: JobQueues | None = None,
    ) -> None:
        if workers < 1:
            raise ValueError("crawler needs at least one worker")
        self.coordinator = coordinator
        self.parser = parser
        self.sink = sink
        self.base_url = base_url
        self.root_url = root_url
        self.workers = workers
        self.use_progress = use_progress
        self.queues = queues if queues is not None else JobQueues()
        self.stats = CrawlStats()
        self._pbar: tqdm | None = None

    def run(self) -> CrawlStats:
        """Crawl to completion. Raises if the root page cannot be fetched or parsed."""
        print(f"  → Crawl started ({self.workers} workers, parser {self.parser.name}/{self.parser.version})...", file=sys.stderr)
        self._pbar = tqdm(desc="Crawl", unit=" page", file=sys.stderr) if self.use_progress else None
        # Held until bootstrap has seeded, so idle workers don't see an empty, finished crawl
        self.queues.hold()
        try:
            with ThreadPoolExecutor(max_workers=self.workers, thread_name_prefix="crawl") as executor:
                futures = [executor.submit(self._worker, i) for i in range(self.workers)]
                try:
                    try:
                        self.bootstrap()
                    finally:
                        self.queues.task_done()
                    for f in as_completed(futures):
                        f.result()
                except BaseException:
                    self.stop()
                    raise
        finally:
            if self._pbar is not None:
                self._pbar.close()
                self._pbar = None
        return self.stats

    def stop(self) -> None:
        """Ask workers to exit after their current job."""
        self.queues.close()

    def bootstrap(self) -> int:
        """Fetch the root page outside the pool and seed the queues. Returns jobs seeded."""
        root = Job(JobKind.ROOT, "root", self.root_url)
        document = self.coordinator.fetch_with_retry(root.url)
        outcome = self._consume(root, document)
        if outcome.error is not None:
            raise outcome.error
        self._report(outcome)
        print(f"  Seeded {outcome.children} jobs from {root.url}", file=sys.stderr)
        return outcome.children

    def _worker(self, worker_id: int) -> None:
        while True:
            job = self.queues.get()
            if job is None:
                return
            try:
                outcome = self._process(job)
            except Exception as e:
                print(f"ERROR #{worker_id} {job.kind.value} {job.display_name}: {type(e).__name__}: {e}", file=sys.stderr)
                outcome = JobOutcome(job=job, error=e)
            try:
                self._report(outcome)
            finally:
                self.queues.task_done()

    def _process(self, job: Job) -> JobOutcome:
        try:
            document = self.coordinator.fetch_with_retry(job.url)
        except TerminalFetchError as e:
            print(f"ERROR {job.kind.value} {job.display_name}: {e}", file=sys.stderr)
            return JobOutcome(job=job, error=e)
        outcome = self._consume(job, document)
        if outcome.error is not None:
            print(f"ERROR {job.kind.value} {job.display_name}: {outcome.error}", file=sys.stderr)
        return outcome

    def _consume(self, job: Job, document: Document) -> JobOutcome:
        """Run the parser, enqueue child jobs as they are produced, collect records."""
        outcome = JobOutcome(job=job)
        try:
            for item in self.parser.parse(job, document):
                if isinstance(item, Record):
                    if item.parent_key is None and job.parent_key is not None:
                        item = replace(item, parent_key=job.parent_key)
                    outcome.records.append(item)
                elif isinstance(item, ChildJob):
                    if self.queues.put(item.resolve(self.base_url, parent=job)):
                        outcome.children += 1
                else:
                    raise ParseError(job.url, f"parser produced {type(item).__name__}")
        except ParseError as e:
            outcome.error = e
        return outcome

    def _report(self, outcome: JobOutcome) -> None:
        self.stats.add(outcome)
        try:
            self.sink.submit(outcome)
        except Exception as e:
            print(f"  Sink rejected {outcome.job.url}: {e}", file=sys.stderr)
        if self._pbar is not None:
            self._pbar.set_postfix({k.value: n for k, n in self.queues.pending().items()})
            self._pbar.update(1)
