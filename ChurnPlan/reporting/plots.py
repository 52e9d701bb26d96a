"""
Plots for build runs and model comparisons. Everything renders to files.
"""

from __future__ import annotations

import functools
import threading
from pathlib import Path
from typing import Dict, Mapping, Optional

import matplotlib

matplotlib.use("Agg")
import matplotlib.pyplot as plt
import numpy as np

from ..core.run_record import RunRecord

STATUS_COLORS = {
    "succeeded": "#2ca02c",
    "skipped": "#7f7f7f",
    "failed": "#d62728",
    "cancelled": "#ff7f0e",
    "pending": "#1f77b4",
}

# pyplot keeps global figure state; plot targets may run on worker threads.
_PLOT_LOCK = threading.Lock()


def _one_figure_at_a_time(fn):
    @functools.wraps(fn)
    def wrapper(*args, **kwargs):
        with _PLOT_LOCK:
            return fn(*args, **kwargs)

    return wrapper


@_one_figure_at_a_time
def plot_run_record(record: RunRecord, save_path: Path, *, title: Optional[str] = None) -> Path:
    """Horizontal bars of target durations, colored by status."""
    reports = record.reports()
    names = [r.name for r in reports]
    durations = np.array([r.duration for r in reports], dtype=float)
    colors = [STATUS_COLORS.get(r.status, "#1f77b4") for r in reports]

    height = max(2.5, 0.35 * len(names) + 1.0)
    fig, ax = plt.subplots(figsize=(8, height))
    y = np.arange(len(names))
    ax.barh(y, durations, color=colors)
    ax.set_yticks(y)
    ax.set_yticklabels(names)
    ax.invert_yaxis()
    ax.set_xlabel("Duration (s)")
    ax.set_title(title or f"Build outcome: {record.outcome} ({record.total_duration:.1f}s in targets)")
    handles = [plt.Rectangle((0, 0), 1, 1, color=c) for c in STATUS_COLORS.values()]
    ax.legend(handles, list(STATUS_COLORS), loc="lower right", fontsize=8)
    ax.grid(True, axis="x", linestyle="--", alpha=0.4)
    fig.tight_layout()

    save_path = Path(save_path)
    save_path.parent.mkdir(parents=True, exist_ok=True)
    fig.savefig(save_path, dpi=150)
    plt.close(fig)
    return save_path


@_one_figure_at_a_time
def plot_confusion_matrices(matrices: Mapping[str, np.ndarray], save_path: Path) -> Path:
    """One 2x2 heatmap per model (rows truth, columns prediction)."""
    names = list(matrices)
    cols = max(1, min(4, len(names)))
    rows = max(1, int(np.ceil(len(names) / cols)))
    fig, axes = plt.subplots(rows, cols, figsize=(3.2 * cols, 3.0 * rows), squeeze=False)

    for ax in axes.ravel():
        ax.axis("off")
    for ax, name in zip(axes.ravel(), names):
        cm = np.asarray(matrices[name])
        ax.axis("on")
        ax.imshow(cm, cmap="Blues")
        for (i, j), v in np.ndenumerate(cm):
            ax.text(j, i, str(int(v)), ha="center", va="center", fontsize=11)
        ax.set_xticks([0, 1])
        ax.set_xticklabels(["No", "Yes"])
        ax.set_yticks([0, 1])
        ax.set_yticklabels(["No", "Yes"])
        ax.set_xlabel("Predicted")
        ax.set_ylabel("Truth")
        ax.set_title(name)
    fig.tight_layout()

    save_path = Path(save_path)
    save_path.parent.mkdir(parents=True, exist_ok=True)
    fig.savefig(save_path, dpi=150)
    plt.close(fig)
    return save_path


@_one_figure_at_a_time
def plot_training_histories(histories: Mapping[str, Dict[str, list]], save_path: Path) -> Path:
    """Training (solid) and validation (dashed) accuracy per epoch for each model."""
    fig, ax = plt.subplots(figsize=(8, 4))
    for name, hist in histories.items():
        acc = hist.get("accuracy") or []
        line = ax.plot(np.arange(1, len(acc) + 1), acc, label=f"{name} (train)")[0]
        val = hist.get("val_accuracy") or []
        if val:
            ax.plot(np.arange(1, len(val) + 1), val, linestyle="--", color=line.get_color(), label=f"{name} (val)")
    ax.set_xlabel("Epoch")
    ax.set_ylabel("Accuracy")
    ax.grid(True, linestyle="--", alpha=0.4)
    ax.legend(fontsize=7, ncol=2)
    fig.tight_layout()

    save_path = Path(save_path)
    save_path.parent.mkdir(parents=True, exist_ok=True)
    fig.savefig(save_path, dpi=150)
    plt.close(fig)
    return save_path
