"""
Churn model comparison plan.

raw_data -> clean -> split -> recipe -> baked -> model_<m> -> confusion_<m>
                                                            -> comparison (json)
                                                            -> confusion_plot (png)
                                              model_<m>     -> history_plot (png)
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, List, Optional

from ..core.commands import CommandRegistry
from ..core.graph import TargetContext, TargetGraph
from ..core.utils import write_json
from .config import ChurnConfig
from .data import churn_labels, load_churn_csv, take_rows
from .metrics import ConfusionMatrix, comparison_table, confusion_matrix
from .models import ModelSpec, get_model_spec
from .preprocess import drop_incomplete, initial_split, recipe_from_config
from .training import TrainedModel, predict_class, train_model

COMMANDS = CommandRegistry()


@COMMANDS.register("raw_data")
def read_raw_data(context: TargetContext) -> Dict[str, Any]:
    return load_churn_csv(context.file_reads[0])


@COMMANDS.register("clean")
def clean_data(context: TargetContext) -> Dict[str, Any]:
    return drop_incomplete(context["raw_data"])


@COMMANDS.register("split")
def split_data(context: TargetContext, *, target_column: str, test_fraction: float, seed: int) -> Dict[str, Any]:
    labels = churn_labels(context["clean"], target_column)
    train, test = initial_split(labels, test_fraction=test_fraction, seed=seed)
    return {"train": train, "test": test}


@COMMANDS.register("recipe")
def prep_recipe(
    context: TargetContext,
    *,
    target_column: str,
    id_column: Optional[str],
    tenure_bins: int,
    log_columns: List[str],
):
    table = context["clean"]
    recipe = recipe_from_config(
        list(table),
        outcome=target_column,
        id_column=id_column,
        tenure_bins=tenure_bins,
        log_columns=log_columns,
    )
    return recipe.prep(take_rows(table, context["split"]["train"]))


@COMMANDS.register("bake")
def bake_data(context: TargetContext, *, target_column: str) -> Dict[str, Any]:
    table, split, prepared = context["clean"], context["split"], context["recipe"]
    train, test = take_rows(table, split["train"]), take_rows(table, split["test"])
    return {
        "x_train": prepared.bake(train),
        "y_train": churn_labels(train, target_column),
        "x_test": prepared.bake(test),
        "y_test": churn_labels(test, target_column),
        "feature_names": prepared.feature_names,
    }


@COMMANDS.register("train")
def fit_model(
    context: TargetContext,
    *,
    spec: Dict[str, Any],
    epochs: int,
    batch_size: int,
    learning_rate: float,
    validation_fraction: float,
    seed: int,
) -> TrainedModel:
    baked = context["baked"]
    model_spec = ModelSpec(
        name=spec["name"],
        hidden=tuple(spec["hidden"]),
        activation=spec["activation"],
        dropout=float(spec["dropout"]),
    )
    return train_model(
        model_spec,
        baked["x_train"],
        baked["y_train"],
        epochs=epochs,
        batch_size=batch_size,
        learning_rate=learning_rate,
        validation_fraction=validation_fraction,
        seed=seed,
    )


@COMMANDS.register("confusion")
def score_model(context: TargetContext, *, model_target: str, threshold: float) -> ConfusionMatrix:
    baked = context["baked"]
    predicted = predict_class(context[model_target], baked["x_test"], threshold=threshold)
    return confusion_matrix(baked["y_test"], predicted)


@COMMANDS.register("compare")
def compare_models(context: TargetContext, *, confusion_targets: Dict[str, str]) -> Dict[str, Dict[str, Any]]:
    table = comparison_table({model: context[t] for model, t in confusion_targets.items()})
    if context.output is not None:
        write_json(context.output, table)
    return table


@COMMANDS.register("confusion_plot")
def render_confusion_plot(context: TargetContext, *, confusion_targets: Dict[str, str]) -> str:
    from ..reporting.plots import plot_confusion_matrices

    matrices = {model: context[t].as_array() for model, t in confusion_targets.items()}
    return str(plot_confusion_matrices(matrices, context.output))


@COMMANDS.register("history_plot")
def render_history_plot(context: TargetContext, *, model_targets: Dict[str, str]) -> str:
    from ..reporting.plots import plot_training_histories

    histories = {model: context[t].history.to_json_dict() for model, t in model_targets.items()}
    return str(plot_training_histories(histories, context.output))


def model_target(name: str) -> str:
    return f"model_{name}"


def confusion_target(name: str) -> str:
    return f"confusion_{name}"


def build_churn_plan(config: ChurnConfig, *, registry: CommandRegistry = COMMANDS) -> TargetGraph:
    out_dir = config.resolved_output_dir()
    graph = TargetGraph()

    graph.add_target("raw_data", registry.create("raw_data"), file_reads=[config.resolved_data_path()])
    graph.add_target("clean", registry.create("clean"), depends_on=["raw_data"])
    graph.add_target(
        "split",
        registry.create(
            "split",
            target_column=config.target_column,
            test_fraction=float(config.test_fraction),
            seed=int(config.seed),
        ),
        depends_on=["clean"],
    )
    graph.add_target(
        "recipe",
        registry.create(
            "recipe",
            target_column=config.target_column,
            id_column=config.id_column,
            tenure_bins=int(config.tenure_bins),
            log_columns=list(config.log_columns),
        ),
        depends_on=["clean", "split"],
    )
    graph.add_target(
        "baked",
        registry.create("bake", target_column=config.target_column),
        depends_on=["clean", "split", "recipe"],
    )

    model_targets: Dict[str, str] = {}
    confusion_targets: Dict[str, str] = {}
    for name in config.models:
        spec = get_model_spec(name)
        m_target, c_target = model_target(name), confusion_target(name)
        graph.add_target(
            m_target,
            registry.create(
                "train",
                spec=spec.to_json_dict(),
                epochs=int(config.epochs),
                batch_size=int(config.batch_size),
                learning_rate=float(config.learning_rate),
                validation_fraction=float(config.validation_fraction),
                seed=int(config.seed),
            ),
            depends_on=["baked"],
        )
        graph.add_target(
            c_target,
            registry.create("confusion", model_target=m_target, threshold=float(config.threshold)),
            depends_on=["baked", m_target],
        )
        model_targets[name] = m_target
        confusion_targets[name] = c_target

    graph.add_target(
        "comparison",
        registry.create("compare", confusion_targets=confusion_targets),
        depends_on=list(confusion_targets.values()),
        file_writes=[out_dir / "comparison.json"],
    )
    graph.add_target(
        "confusion_plot",
        registry.create("confusion_plot", confusion_targets=confusion_targets),
        depends_on=list(confusion_targets.values()),
        file_writes=[out_dir / "confusion_matrices.png"],
    )
    graph.add_target(
        "history_plot",
        registry.create("history_plot", model_targets=model_targets),
        depends_on=list(model_targets.values()),
        file_writes=[out_dir / "training_history.png"],
    )
    return graph


def default_run_record_path(config: ChurnConfig) -> Path:
    return config.resolved_output_dir() / "run_record.json"
