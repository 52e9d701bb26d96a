"""
Incremental scheduler.

Walks a `TargetGraph` in dependency order, re-executes only the targets whose
fingerprint changed (or whose upstream was rebuilt in this run), and reuses
cached results for everything else.
"""

from __future__ import annotations

import logging
import threading
import time
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, List, Optional, Set, Tuple

from ..cache.fingerprint_store import FingerprintStore
from ..cache.fingerprints import FileFingerprint, file_identity, value_digest
from .errors import ExecutionFailure, UnstorableResult
from .graph import Target, TargetContext, TargetGraph
from .models import PlanConfig
from .run_record import RunRecord

Executor = Callable[[Target, TargetContext], Any]


def default_executor(target: Target, context: TargetContext) -> Any:
    return target.command(context)


class CancellationToken:
    """Thread-safe flag a caller can flip to stop dispatching new targets."""

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()


@dataclass
class _Evaluation:
    code_id: str
    input_ids: List[str]
    files: Dict[str, FileFingerprint]
    stale: bool
    reason: str


@dataclass
class _BuildState:
    # Identity of each resolved target's result, as seen by its consumers.
    digests: Dict[str, str] = field(default_factory=dict)
    # Results loaded or produced during this run.
    results: Dict[str, Any] = field(default_factory=dict)
    # Targets whose executor ran successfully in this run.
    rebuilt: Set[str] = field(default_factory=set)


def _run_timed(executor: Executor, target: Target, context: TargetContext) -> Tuple[Any, float, Optional[Exception]]:
    start = time.perf_counter()
    try:
        result = executor(target, context)
    except Exception as exc:
        return None, time.perf_counter() - start, exc
    return result, time.perf_counter() - start, None


class Scheduler:
    """Builds the stale part of a target graph.

    Contract: executor errors never escape `run`; they are recorded per target
    and cascade to descendants. `StoreUnavailable` and graph errors do escape.
    """

    def __init__(
        self,
        *,
        workers: int = 1,
        keep_going: bool = True,
        token: Optional[CancellationToken] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.workers = max(1, int(workers))
        self.keep_going = bool(keep_going)
        self.token = token if token is not None else CancellationToken()
        self.logger = logger if logger is not None else logging.getLogger(__name__)
        self._stop = threading.Event()

    @classmethod
    def from_config(cls, config: PlanConfig, *, logger: Optional[logging.Logger] = None) -> "Scheduler":
        return cls(workers=config.resolved_workers(), keep_going=config.keep_going, logger=logger)

    def cancel(self) -> None:
        self.token.cancel()

    @property
    def cancelled(self) -> bool:
        return self.token.cancelled or self._stop.is_set()

    # ------------------------------------------------------------------ staleness
    def _evaluate(
        self,
        target: Target,
        store: FingerprintStore,
        digests: Dict[str, str],
        rebuilt: Set[str],
        results: Optional[Dict[str, Any]] = None,
    ) -> _Evaluation:
        """Decide whether `target` must run.

        With `results`, a fresh target's cached value is loaded into it, so an
        entry that exists but cannot be read makes the target stale.
        """
        code_id = target.command.code_id()
        prev = store.get_fingerprint(target.name)
        prev_files = prev.files if prev is not None else {}

        input_ids: List[str] = [f"target:{dep}={digests.get(dep, 'pending')}" for dep in target.depends_on]
        files: Dict[str, FileFingerprint] = {}
        for kind, paths in (("file_in", target.file_reads), ("file_out", target.file_writes)):
            for path in paths:
                digest, fp = file_identity(path, prev_files.get(str(path)))
                input_ids.append(f"{kind}:{path}={digest}")
                if fp is not None:
                    files[str(path)] = fp

        if prev is None:
            return _Evaluation(code_id, input_ids, files, True, "never built")
        if prev.code_id != code_id:
            return _Evaluation(code_id, input_ids, files, True, "command changed")
        rebuilt_deps = [dep for dep in target.depends_on if dep in rebuilt]
        if rebuilt_deps:
            return _Evaluation(code_id, input_ids, files, True, f"upstream rebuilt: {', '.join(rebuilt_deps)}")
        if store.is_stale(target.name, code_id, input_ids):
            return _Evaluation(code_id, input_ids, files, True, "inputs changed")
        if results is None:
            if not store.has_result(target.name):
                return _Evaluation(code_id, input_ids, files, True, "cached result missing")
        elif target.name not in results:
            try:
                results[target.name] = store.load_result(target.name)
            except KeyError:
                return _Evaluation(code_id, input_ids, files, True, "cached result missing")
        return _Evaluation(code_id, input_ids, files, False, "up to date")

    def outdated(self, graph: TargetGraph, store: FingerprintStore, targets: Optional[Iterable[str]] = None) -> List[str]:
        """Names that a `run` would execute right now, in build order. Writes nothing."""
        if targets is not None:
            graph = graph.subgraph(targets)
        order = graph.topological_order()
        store.open()

        digests: Dict[str, str] = {}
        would_rebuild: Set[str] = set()
        stale: List[str] = []
        for name in order:
            evaluation = self._evaluate(graph[name], store, digests, would_rebuild)
            if evaluation.stale:
                stale.append(name)
                would_rebuild.add(name)
            else:
                prev = store.get_fingerprint(name)
                digests[name] = (prev.result_digest if prev is not None else None) or "unknown"
        return stale

    # ------------------------------------------------------------------ build
    def run(
        self,
        graph: TargetGraph,
        store: FingerprintStore,
        executor: Optional[Executor] = None,
        targets: Optional[Iterable[str]] = None,
    ) -> RunRecord:
        if targets is not None:
            graph = graph.subgraph(targets)
        order = graph.topological_order()
        executor = executor if executor is not None else default_executor

        self._stop.clear()
        record = RunRecord()
        for name in order:
            record.report(name)

        store.open()
        self.logger.info(f"Build started: {len(order)} target(s), workers={self.workers}")
        try:
            self._drive(graph, order, store, executor, record)
        finally:
            record.cancelled = self.token.cancelled
            record.finish()
            store.flush()

        self.logger.info(
            f"Build finished: outcome={record.outcome} executed={len(record.executed)} "
            f"skipped={len(record.skipped)} failed={len(record.failed)} "
            f"cancelled={len(record.names_with_status('cancelled'))}"
        )
        for name, reason in record.failures().items():
            self.logger.error(f"  {name}: {reason}")
        return record

    def _readiness(self, target: Target, record: RunRecord) -> Tuple[str, Optional[str]]:
        waiting = False
        for dep in target.depends_on:
            rep = record.targets[dep]
            if rep.status == "failed":
                return "upstream_failed", rep.upstream_failure or dep
            if rep.status == "cancelled":
                return "upstream_cancelled", dep
            if rep.status == "pending":
                waiting = True
        return ("wait", None) if waiting else ("ready", None)

    def _resolve(self, name: str, store: FingerprintStore, state: _BuildState) -> Any:
        if name not in state.results:
            state.results[name] = store.load_result(name)
        return state.results[name]

    def _drive(
        self,
        graph: TargetGraph,
        order: List[str],
        store: FingerprintStore,
        executor: Executor,
        record: RunRecord,
    ) -> None:
        state = _BuildState()
        position = {name: i for i, name in enumerate(order)}
        waiting: List[str] = list(order)
        in_flight: Dict[Future, Tuple[str, _Evaluation]] = {}
        pool = ThreadPoolExecutor(max_workers=self.workers) if self.workers > 1 else None

        try:
            while waiting or in_flight:
                for name in list(waiting):
                    target = graph[name]
                    readiness, culprit = self._readiness(target, record)
                    if readiness == "wait":
                        continue
                    waiting.remove(name)
                    report = record.targets[name]

                    if readiness == "upstream_failed":
                        failure = ExecutionFailure(name, f"upstream target '{culprit}' failed", upstream=culprit)
                        report.stale = True
                        report.status = "failed"
                        report.upstream_failure = culprit
                        report.error = failure.reason
                        record.failures_by_name[name] = failure
                        continue
                    if readiness == "upstream_cancelled" or self.cancelled:
                        report.status = "cancelled"
                        continue

                    evaluation = self._evaluate(target, store, state.digests, state.rebuilt, state.results)
                    report.stale = evaluation.stale
                    if not evaluation.stale:
                        prev = store.get_fingerprint(name)
                        digest = prev.result_digest if prev is not None else None
                        if digest is None:
                            digest = value_digest(self._resolve(name, store, state))
                        if prev is not None and prev.files != evaluation.files:
                            # Same content under a new mtime; keep the stat shortcut current.
                            store.record_fingerprint(
                                name, prev.code_id, prev.input_ids, result_digest=prev.result_digest, files=evaluation.files
                            )
                        state.digests[name] = digest
                        report.status = "skipped"
                        self.logger.debug(f"Skipping {name}: {evaluation.reason}")
                        continue

                    self.logger.info(f"Building {name} ({evaluation.reason})")
                    for path in target.file_writes:
                        path.parent.mkdir(parents=True, exist_ok=True)
                    context = TargetContext(
                        name=name,
                        upstream={dep: self._resolve(dep, store, state) for dep in target.depends_on},
                        file_reads=target.file_reads,
                        file_writes=target.file_writes,
                    )
                    if pool is None:
                        outcome = _run_timed(executor, target, context)
                        self._complete(target, evaluation, outcome, store, state, record)
                    else:
                        in_flight[pool.submit(_run_timed, executor, target, context)] = (name, evaluation)

                if in_flight:
                    done, _ = wait(list(in_flight), return_when=FIRST_COMPLETED)
                    for future in sorted(done, key=lambda f: position[in_flight[f][0]]):
                        name, evaluation = in_flight.pop(future)
                        self._complete(graph[name], evaluation, future.result(), store, state, record)
        finally:
            if pool is not None:
                pool.shutdown(wait=True)

    def _complete(
        self,
        target: Target,
        evaluation: _Evaluation,
        outcome: Tuple[Any, float, Optional[Exception]],
        store: FingerprintStore,
        state: _BuildState,
        record: RunRecord,
    ) -> None:
        result, duration, error = outcome
        report = record.targets[target.name]
        report.duration = float(duration)

        if error is not None:
            self._fail(target.name, error, duration, record)
            return

        # Outputs are fingerprinted as they are after the command wrote them.
        input_ids = [i for i in evaluation.input_ids if not i.startswith("file_out:")]
        files = {k: v for k, v in evaluation.files.items() if k not in {str(p) for p in target.file_writes}}
        for path in target.file_writes:
            digest, fp = file_identity(path)
            input_ids.append(f"file_out:{path}={digest}")
            if fp is not None:
                files[str(path)] = fp

        digest = value_digest(result)
        try:
            store.save_result(target.name, result)
        except UnstorableResult as exc:
            # The old fingerprint must not vouch for a result we never stored.
            store.forget(target.name)
            self._fail(target.name, exc, duration, record)
            return
        store.record_fingerprint(target.name, evaluation.code_id, input_ids, result_digest=digest, files=files)

        state.results[target.name] = result
        state.digests[target.name] = digest
        state.rebuilt.add(target.name)
        report.status = "succeeded"
        self.logger.info(f"Built {target.name} in {duration:.2f}s")

    def _fail(self, name: str, error: BaseException, duration: float, record: RunRecord) -> None:
        failure = ExecutionFailure(name, error)
        report = record.targets[name]
        report.status = "failed"
        report.error = failure.reason
        record.failures_by_name[name] = failure
        self.logger.error(f"Target {name} failed after {duration:.2f}s: {failure.reason}")
        if not self.keep_going:
            self._stop.set()
