from __future__ import annotations

import json
from pathlib import Path

from ChurnPlan.core.run_record import RunRecord


def _record() -> RunRecord:
    record = RunRecord()
    a = record.report("a")
    a.stale, a.status, a.duration = True, "succeeded", 1.5
    b = record.report("b")
    b.status = "skipped"
    c = record.report("c")
    c.stale, c.status, c.error = True, "failed", "ValueError: nope"
    d = record.report("d")
    d.stale, d.status, d.upstream_failure = True, "failed", "c"
    d.error = "upstream target 'c' failed"
    record.finish()
    return record


def test_views_partition_targets():
    record = _record()
    assert record.stale == ["a", "c", "d"]
    assert record.executed == ["a", "c"]
    assert record.skipped == ["b"]
    assert record.failed == ["c", "d"]
    assert record.outcome == "partial_failure"
    assert record.total_duration == 1.5


def test_outcome_without_failures_is_success():
    record = RunRecord()
    record.report("a").status = "skipped"
    assert record.outcome == "success"
    record.report("b").status = "failed"
    assert record.outcome == "partial_failure"


def test_json_roundtrip(tmp_path: Path):
    record = _record()
    path = tmp_path / "nested" / "run_record.json"
    record.write_json(path)

    data = json.loads(path.read_text(encoding="utf-8"))
    assert data["outcome"] == "partial_failure"
    assert [t["name"] for t in data["targets"]] == ["a", "b", "c", "d"]

    loaded = RunRecord.read_json(path)
    assert loaded.failures() == record.failures()
    assert loaded.targets["d"].upstream_failure == "c"
    assert loaded.finished_at == record.finished_at


def test_cancelled_targets_make_a_clean_run_partial():
    record = RunRecord()
    record.report("a").status = "succeeded"
    record.report("b").status = "cancelled"
    assert record.failed == []
    assert record.outcome == "partial_failure"
    assert record.to_json_dict()["outcome"] == "partial_failure"


def test_cancel_flag_alone_makes_a_run_partial():
    record = RunRecord(cancelled=True)
    record.report("a").status = "skipped"
    assert record.outcome == "partial_failure"
