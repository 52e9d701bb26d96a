from __future__ import annotations

import threading
import time
from pathlib import Path

import pytest

from ChurnPlan.cache.fingerprint_store import FingerprintStore
from ChurnPlan.cache.store import MemoryBackend
from ChurnPlan.core.commands import FunctionCommand, ValueCommand
from ChurnPlan.core.errors import ExecutionFailure, StoreUnavailable, UnstorableResult
from ChurnPlan.core.graph import TargetGraph
from ChurnPlan.core.models import PlanConfig
from ChurnPlan.core.scheduler import CancellationToken, Scheduler, default_executor


def _read_stripped(context):
    return context.file_reads[0].read_text(encoding="utf-8").strip()


def _tag(context, *, dep, tag):
    return f"{context[dep]}+{tag}"


def _boom(context):
    raise ValueError("bad input")


def _write_output(context, *, text):
    context.output.write_text(text, encoding="utf-8")
    return len(text)


def _counting(calls):
    def _executor(target, context):
        calls.append(target.name)
        return default_executor(target, context)

    return _executor


def _chain_graph(src: Path, *, c_tag: str = "c") -> TargetGraph:
    """A -> B -> C, with D independent."""
    g = TargetGraph()
    g.add_target("A", FunctionCommand(_read_stripped), file_reads=[src])
    g.add_target("B", FunctionCommand(_tag, {"dep": "A", "tag": "b"}), depends_on=["A"])
    g.add_target("C", FunctionCommand(_tag, {"dep": "B", "tag": c_tag}), depends_on=["B"])
    g.add_target("D", ValueCommand(4))
    return g


def _rewrite(path: Path, text: str) -> None:
    time.sleep(0.01)  # ensure mtime changes on fast FS
    path.write_text(text, encoding="utf-8")


@pytest.fixture
def src(tmp_path: Path) -> Path:
    p = tmp_path / "input.txt"
    p.write_text("hello\n", encoding="utf-8")
    return p


@pytest.fixture
def store() -> FingerprintStore:
    return FingerprintStore(MemoryBackend())


def test_first_run_builds_everything_in_order(src, store):
    calls = []
    record = Scheduler().run(_chain_graph(src), store, _counting(calls))

    assert calls == ["A", "B", "C", "D"]
    assert record.outcome == "success"
    assert record.succeeded == ["A", "B", "C", "D"]
    assert store.load_result("C") == "hello+b+c"
    assert record.finished_at is not None


def test_second_run_executes_nothing(src, store):
    Scheduler().run(_chain_graph(src), store)

    calls = []
    record = Scheduler().run(_chain_graph(src), store, _counting(calls))

    assert calls == []
    assert record.executed == []
    assert record.skipped == ["A", "B", "C", "D"]
    assert record.outcome == "success"


def test_changed_input_rebuilds_only_downstream(src, store):
    Scheduler().run(_chain_graph(src), store)
    _rewrite(src, "world\n")

    calls = []
    record = Scheduler().run(_chain_graph(src), store, _counting(calls))

    assert set(record.stale) == {"A", "B", "C"}
    assert calls == ["A", "B", "C"]
    assert record.targets["D"].status == "skipped"
    assert store.load_result("C") == "world+b+c"


def test_rebuilt_upstream_forces_downstream_even_with_equal_result(src, store):
    Scheduler().run(_chain_graph(src), store)
    # Same stripped value, different bytes.
    _rewrite(src, "hello\n\n")

    calls = []
    Scheduler().run(_chain_graph(src), store, _counting(calls))
    assert calls == ["A", "B", "C"]


def test_touching_a_file_without_changing_it_keeps_targets_fresh(src, store):
    Scheduler().run(_chain_graph(src), store)
    _rewrite(src, "hello\n")

    calls = []
    Scheduler().run(_chain_graph(src), store, _counting(calls))
    assert calls == []


def test_touched_file_mtime_is_recorded_so_later_runs_skip_hashing(src, store, monkeypatch):
    Scheduler().run(_chain_graph(src), store)
    _rewrite(src, "hello\n")

    record = Scheduler().run(_chain_graph(src), store)
    assert record.targets["A"].status == "skipped"
    assert store.get_fingerprint("A").files[str(src)].mtime_ns == src.stat().st_mtime_ns

    def _no_hashing(path):
        raise AssertionError(f"{path} was re-hashed")

    monkeypatch.setattr("ChurnPlan.cache.fingerprints._digest_bytes", _no_hashing)
    calls = []
    Scheduler().run(_chain_graph(src), store, _counting(calls))
    assert calls == []


def test_changed_command_parameters_rebuild_that_target(src, store):
    Scheduler().run(_chain_graph(src), store)

    calls = []
    Scheduler().run(_chain_graph(src, c_tag="C2"), store, _counting(calls))
    assert calls == ["C"]
    assert store.load_result("C") == "hello+b+C2"


def test_missing_cached_result_rebuilds_target(src, store):
    Scheduler().run(_chain_graph(src), store)
    store.backend.delete("results", "B")

    calls = []
    Scheduler().run(_chain_graph(src), store, _counting(calls))
    assert calls == ["B", "C"]


def _pair(context, *, k):
    return (context["A"], k)


def test_corrupt_cached_result_rebuilds_target_and_feeds_real_value_downstream(tmp_path):
    store = FingerprintStore.at(tmp_path / "cache")

    def _graph(k):
        g = TargetGraph()
        g.add_target("A", ValueCommand(41))
        g.add_target("B", FunctionCommand(_pair, {"k": k}), depends_on=["A"])
        return g

    Scheduler().run(_graph(1), store)
    store.backend._path("results", "A").write_bytes(b"garbage, not a pickle")

    record = Scheduler().run(_graph(2), store)
    assert record.targets["A"].status == "succeeded"
    assert record.targets["B"].status == "succeeded"
    assert store.load_result("A") == 41
    assert store.load_result("B") == (41, 2)


def _closure(context):
    def inner():
        return context.name

    return inner


def test_unstorable_result_fails_only_that_target(tmp_path):
    store = FingerprintStore.at(tmp_path / "cache")
    g = TargetGraph()
    g.add_target("bad", FunctionCommand(_closure))
    g.add_target("after_bad", lambda ctx: ctx["bad"], depends_on=["bad"])
    g.add_target("D", ValueCommand(4))

    record = Scheduler().run(g, store)

    assert sorted(record.failed) == ["after_bad", "bad"]
    assert record.succeeded == ["D"]
    assert record.outcome == "partial_failure"
    assert record.targets["after_bad"].upstream_failure == "bad"
    assert isinstance(record.failures_by_name["bad"].cause, UnstorableResult)
    assert store.get_fingerprint("bad") is None
    assert list((tmp_path / "cache").rglob("*.tmp*")) == []


def test_deleted_output_file_rebuilds_target(tmp_path, store):
    out = tmp_path / "reports" / "out.txt"
    g = TargetGraph()
    g.add_target("report", FunctionCommand(_write_output, {"text": "abc"}), file_writes=[out])

    Scheduler().run(g, store)
    assert out.read_text(encoding="utf-8") == "abc"

    calls = []
    Scheduler().run(g, store, _counting(calls))
    assert calls == []

    out.unlink()
    Scheduler().run(g, store, _counting(calls))
    assert calls == ["report"]
    assert out.exists()


def test_none_results_are_cached(store):
    g = TargetGraph()
    g.add_target("nothing", lambda ctx: None)
    g.add_target("after", lambda ctx: ctx["nothing"] is None, depends_on=["nothing"])

    first = Scheduler().run(g, store)
    assert first.outcome == "success"
    assert store.load_result("after") is True

    second = Scheduler().run(g, store)
    assert second.executed == []


def test_failure_cascades_to_descendants_only(store):
    g = TargetGraph()
    g.add_target("root", ValueCommand(1))
    g.add_target("T", FunctionCommand(_boom), depends_on=["root"])
    g.add_target("T_child", lambda ctx: ctx["T"], depends_on=["T"])
    g.add_target("T_grandchild", lambda ctx: ctx["T_child"], depends_on=["T_child"])
    g.add_target("other", lambda ctx: ctx["root"] + 1, depends_on=["root"])

    calls = []
    record = Scheduler().run(g, store, _counting(calls))

    assert "T_child" not in calls and "T_grandchild" not in calls
    assert record.failed == ["T", "T_child", "T_grandchild"]
    assert record.succeeded == ["root", "other"]
    assert record.outcome == "partial_failure"

    failure = record.failures_by_name["T"]
    assert isinstance(failure, ExecutionFailure)
    assert isinstance(failure.cause, ValueError)
    assert record.targets["T_grandchild"].upstream_failure == "T"
    assert record.failures()["T"] == "ValueError: bad input"

    # Failed targets leave no fingerprint, so the next run retries them.
    assert store.get_fingerprint("T") is None
    retry = Scheduler().run(g, store)
    assert retry.targets["T"].stale is True
    assert retry.targets["other"].status == "skipped"


def test_all_targets_failing_is_a_failure(store):
    g = TargetGraph()
    g.add_target("only", FunctionCommand(_boom))
    record = Scheduler().run(g, store)
    assert record.outcome == "failure"


def test_keep_going_false_stops_dispatch_after_first_failure(store):
    g = TargetGraph()
    g.add_target("bad", FunctionCommand(_boom))
    g.add_target("good1", ValueCommand(1))
    g.add_target("good2", ValueCommand(2))

    record = Scheduler(keep_going=False).run(g, store)
    assert record.failed == ["bad"]
    assert record.names_with_status("cancelled") == ["good1", "good2"]
    assert record.cancelled is False


def test_cancellation_leaves_undispatched_targets_cancelled(store):
    token = CancellationToken()
    scheduler = Scheduler(token=token)

    def _cancel_after(target, context):
        result = default_executor(target, context)
        if target.name == "first":
            scheduler.cancel()
        return result

    g = TargetGraph()
    g.add_target("first", ValueCommand(1))
    g.add_target("second", lambda ctx: ctx["first"] + 1, depends_on=["first"])
    g.add_target("third", ValueCommand(3))

    record = scheduler.run(g, store, _cancel_after)
    assert token.cancelled
    assert record.cancelled is True
    assert record.succeeded == ["first"]
    assert record.names_with_status("cancelled") == ["second", "third"]
    assert record.outcome == "partial_failure"
    assert store.get_fingerprint("second") is None

    # A fresh run picks up where the cancelled one stopped.
    calls = []
    Scheduler().run(g, store, _counting(calls))
    assert calls == ["second", "third"]


def test_workers_run_independent_targets_concurrently(store):
    barrier = threading.Barrier(2, timeout=10)

    def _meet(target, context):
        if target.name in ("left", "right"):
            barrier.wait()
        return default_executor(target, context)

    g = TargetGraph()
    g.add_target("left", ValueCommand("L"))
    g.add_target("right", ValueCommand("R"))
    g.add_target("join", lambda ctx: ctx["left"] + ctx["right"], depends_on=["left", "right"])

    record = Scheduler(workers=2).run(g, store, _meet)
    assert record.outcome == "success", record.failures()
    assert store.load_result("join") == "LR"


def test_concurrent_run_matches_sequential_results(src, tmp_path):
    seq_store = FingerprintStore(MemoryBackend())
    par_store = FingerprintStore.at(tmp_path / "cache")

    Scheduler(workers=1).run(_chain_graph(src), seq_store)
    record = Scheduler(workers=3).run(_chain_graph(src), par_store)

    assert record.outcome == "success"
    for name in ("A", "B", "C", "D"):
        assert par_store.load_result(name) == seq_store.load_result(name)
        assert par_store.get_fingerprint(name).result_digest == seq_store.get_fingerprint(name).result_digest


def test_run_restricted_to_requested_targets(src, store):
    record = Scheduler().run(_chain_graph(src), store, targets=["B"])
    assert list(record.targets) == ["A", "B"]
    assert store.get_fingerprint("C") is None


def test_outdated_is_a_dry_run(src, store):
    assert Scheduler().outdated(_chain_graph(src), store) == ["A", "B", "C", "D"]
    assert store.names() == []

    Scheduler().run(_chain_graph(src), store)
    assert Scheduler().outdated(_chain_graph(src), store) == []

    _rewrite(src, "changed\n")
    before = store.get_fingerprint("A")
    assert Scheduler().outdated(_chain_graph(src), store) == ["A", "B", "C"]
    assert store.get_fingerprint("A") == before


def test_unavailable_store_aborts_run(tmp_path, src):
    blocker = tmp_path / "blocker"
    blocker.write_text("not a directory", encoding="utf-8")
    with pytest.raises(StoreUnavailable):
        Scheduler().run(_chain_graph(src), FingerprintStore.at(blocker / "cache"))


def test_from_config_uses_build_settings():
    scheduler = Scheduler.from_config(PlanConfig(workers=0, keep_going=False))
    assert scheduler.workers == 1
    assert scheduler.keep_going is False
