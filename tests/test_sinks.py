import json

import pytest

from cnes_crawler.errors import NetworkError, TerminalFetchError
from cnes_crawler.jobs import Job, JobKind, JobOutcome, Record
from cnes_crawler.sinks import JsonlSink, MemorySink

CITY = Job(JobKind.SUBREGION, "ADAMANTINA", "http://catalog.test/city/350010", parent_key="350010")


def test_jsonl_sink_writes_one_line_per_outcome(tmp_path):
    path = tmp_path / "out" / "outcomes.jsonl"
    ok = JobOutcome(job=CITY, records=[Record(name="2035561 HOSPITAL", parent_key="350010", data={"municipality": "ADAMANTINA"})])
    err = TerminalFetchError(CITY.url, 4, NetworkError(CITY.url, "HTTP 503"))
    failed = JobOutcome(job=CITY, error=err)
    with JsonlSink(path) as sink:
        sink.submit(ok)
        sink.submit(failed)
    lines = [json.loads(line) for line in path.read_text(encoding="utf-8").splitlines()]
    assert [line["status"] for line in lines] == ["ok", "failed"]
    assert lines[0]["records"] == [
        {"name": "2035561 HOSPITAL", "url": None, "parent_key": "350010", "municipality": "ADAMANTINA"}
    ]
    assert lines[0]["kind"] == "subregion"
    assert "after 4 attempts" in lines[1]["error"]


def test_jsonl_sink_appends(tmp_path):
    path = tmp_path / "outcomes.jsonl"
    for _ in range(2):
        with JsonlSink(path) as sink:
            sink.submit(JobOutcome(job=CITY))
    assert len(path.read_text(encoding="utf-8").splitlines()) == 2


def test_jsonl_sink_rejects_after_close(tmp_path):
    sink = JsonlSink(tmp_path / "o.jsonl")
    sink.close()
    sink.close()
    with pytest.raises(RuntimeError):
        sink.submit(JobOutcome(job=CITY))


def test_memory_sink_views():
    sink = MemorySink()
    sink.submit(JobOutcome(job=CITY, records=[Record(name="a"), Record(name="b")]))
    sink.submit(JobOutcome(job=CITY, error=NetworkError(CITY.url, "x")))
    assert [r.name for r in sink.records] == ["a", "b"]
    assert len(sink.failures) == 1
    assert len(sink.outcomes) == 2


def test_jsonl_sink_is_fully_built_before_writer_runs(tmp_path):
    seen = []

    class Watched(JsonlSink):
        def _writer(self):
            seen.append(self._closed)
            super()._writer()

    with Watched(tmp_path / "o.jsonl") as sink:
        sink.submit(JobOutcome(job=CITY))
    assert seen == [False]
