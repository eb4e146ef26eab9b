"""Outcome sinks: where finished jobs and their records go."""

import json
import sys
import threading
from pathlib import Path
from queue import Queue

from cnes_crawler.jobs import JobOutcome, Record


class Sink:
    """Receives one outcome per finished job. submit() must not block on durability."""

    def submit(self, outcome: JobOutcome) -> None:
        raise NotImplementedError

    def close(self) -> None:
        pass

    def __enter__(self) -> "Sink":
        return self

    def __exit__(self, *args: object) -> None:
        self.close()


class MemorySink(Sink):
    """Keeps outcomes in a list. Safe to share between workers."""

    def __init__(self) -> None:
        self._outcomes: list[JobOutcome] = []
        self._lock = threading.Lock()

    def submit(self, outcome: JobOutcome) -> None:
        with self._lock:
            self._outcomes.append(outcome)

    @property
    def outcomes(self) -> list[JobOutcome]:
        with self._lock:
            return list(self._outcomes)

    @property
    def records(self) -> list[Record]:
        return [r for o in self.outcomes for r in o.records]

    @property
    def failures(self) -> list[JobOutcome]:
        return [o for o in self.outcomes if not o.ok]


class JsonlSink(Sink):
    """
    Appends one JSON line per outcome. A background thread does the writing,
    so submit() only enqueues; close() drains the queue and closes the file.
    """

    def __init__(self, path: Path | str) -> None:
        self.path = Path(path)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self._queue: "Queue[JobOutcome | None]" = Queue()
        self._file = open(self.path, "a", encoding="utf-8")
        self._thread = threading.Thread(target=self._writer, name="jsonl-sink", daemon=True)
        self._closed = False
        self._thread.start()

    def submit(self, outcome: JobOutcome) -> None:
        if self._closed:
            raise RuntimeError("sink is closed")
        self._queue.put(outcome)

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._queue.put(None)
        self._thread.join()
        self._file.close()

    def _writer(self) -> None:
        while True:
            outcome = self._queue.get()
            if outcome is None:
                return
            try:
                self._file.write(json.dumps(outcome.to_dict(), ensure_ascii=False) + "\n")
                self._file.flush()
            except (OSError, TypeError, ValueError) as e:
                print(f"  Sink write failed for {outcome.job.url}: {e}", file=sys.stderr)
