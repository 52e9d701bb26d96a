from __future__ import annotations

import json
from dataclasses import replace
from pathlib import Path

import pytest
import torch

from ChurnPlan.cache.fingerprint_store import FingerprintStore
from ChurnPlan.churn.config import ChurnConfig
from ChurnPlan.churn.data import make_synthetic_churn, write_churn_csv
from ChurnPlan.churn.metrics import ConfusionMatrix
from ChurnPlan.churn.plan import build_churn_plan, confusion_target, default_run_record_path, model_target
from ChurnPlan.core.scheduler import Scheduler


@pytest.fixture
def config(tmp_path: Path) -> ChurnConfig:
    data = write_churn_csv(make_synthetic_churn(300, seed=9), tmp_path / "data" / "churn.csv")
    return ChurnConfig(
        data_path=str(data),
        output_dir=str(tmp_path / "reports"),
        epochs=1,
        batch_size=32,
        models=["relu"],
    )


def test_plan_shape(config):
    graph = build_churn_plan(replace(config, models=["relu", "tanh"]))
    order = graph.topological_order()

    assert order[:5] == ["raw_data", "clean", "split", "recipe", "baked"]
    for name in ("relu", "tanh"):
        assert order.index(model_target(name)) < order.index(confusion_target(name))
        assert order.index(confusion_target(name)) < order.index("comparison")
    assert graph.descendants("recipe") >= {"baked", "model_relu", "comparison", "history_plot"}
    assert graph["comparison"].file_writes == (Path(config.output_dir) / "comparison.json",)


def test_full_build_then_noop_then_targeted_rebuild(config, tmp_path):
    store = FingerprintStore.at(tmp_path / "cache")
    record = Scheduler().run(build_churn_plan(config), store)

    assert record.outcome == "success", record.failures()
    out_dir = Path(config.output_dir)
    comparison = json.loads((out_dir / "comparison.json").read_text(encoding="utf-8"))
    assert list(comparison) == ["relu"]
    assert (out_dir / "confusion_matrices.png").exists()
    assert (out_dir / "training_history.png").exists()
    cm = store.load_result("confusion_relu")
    assert isinstance(cm, ConfusionMatrix)
    assert cm.total == len(store.load_result("split")["test"])

    again = Scheduler().run(build_churn_plan(config), store)
    assert again.executed == []

    more_epochs = replace(config, epochs=2)
    assert Scheduler().outdated(build_churn_plan(more_epochs), store) == [
        "model_relu",
        "confusion_relu",
        "comparison",
        "confusion_plot",
        "history_plot",
    ]


def test_concurrent_build_of_several_models(config, tmp_path):
    cfg = replace(config, models=["relu", "tanh"])
    record = Scheduler(workers=2).run(build_churn_plan(cfg), FingerprintStore.at(tmp_path / "cache"))

    assert record.outcome == "success", record.failures()
    assert set(record.succeeded) >= {"model_relu", "model_tanh", "comparison", "confusion_plot"}


def test_parallel_training_matches_sequential_weights(config, tmp_path):
    cfg = replace(config, models=["relu", "tanh"])
    sequential = FingerprintStore.at(tmp_path / "cache_seq")
    parallel = FingerprintStore.at(tmp_path / "cache_par")
    Scheduler(workers=1).run(build_churn_plan(cfg), sequential)
    Scheduler(workers=2).run(build_churn_plan(cfg), parallel)

    for name in ("relu", "tanh"):
        a = sequential.load_result(model_target(name))
        b = parallel.load_result(model_target(name))
        assert a.history.loss == b.history.loss
        weights_a, weights_b = a.load().state_dict(), b.load().state_dict()
        assert list(weights_a) == list(weights_b)
        for key in weights_a:
            assert torch.equal(weights_a[key], weights_b[key]), f"{name}: {key} differs"


def test_missing_data_fails_the_whole_plan(config, tmp_path):
    cfg = replace(config, data_path=str(tmp_path / "nowhere.csv"))
    record = Scheduler().run(build_churn_plan(cfg), FingerprintStore.at(tmp_path / "cache"))

    assert record.outcome == "failure"
    assert "DataError" in record.targets["raw_data"].error
    assert record.targets["history_plot"].upstream_failure == "raw_data"


def test_run_record_lands_in_output_dir(config):
    assert default_run_record_path(config) == Path(config.output_dir) / "run_record.json"
