from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Any, Dict

import numpy as np


@dataclass(frozen=True)
class ConfusionMatrix:
    """Binary confusion matrix; class 1 is "churned"."""

    tn: int
    fp: int
    fn: int
    tp: int

    @property
    def total(self) -> int:
        return self.tn + self.fp + self.fn + self.tp

    def as_array(self) -> np.ndarray:
        # Rows: truth (0, 1); columns: prediction (0, 1).
        return np.array([[self.tn, self.fp], [self.fn, self.tp]], dtype=np.int64)

    def accuracy(self) -> float:
        return (self.tp + self.tn) / self.total if self.total else float("nan")

    def precision(self) -> float:
        denom = self.tp + self.fp
        return self.tp / denom if denom else 0.0

    def recall(self) -> float:
        denom = self.tp + self.fn
        return self.tp / denom if denom else 0.0

    def f1(self) -> float:
        p, r = self.precision(), self.recall()
        return 2 * p * r / (p + r) if (p + r) else 0.0

    def summary(self) -> Dict[str, Any]:
        return asdict(self) | {
            "accuracy": self.accuracy(),
            "precision": self.precision(),
            "recall": self.recall(),
            "f1": self.f1(),
        }


def confusion_matrix(y_true: np.ndarray, y_pred: np.ndarray) -> ConfusionMatrix:
    t = np.asarray(y_true).astype(np.int64).ravel()
    p = np.asarray(y_pred).astype(np.int64).ravel()
    if t.shape != p.shape:
        raise ValueError(f"Shape mismatch: y_true {t.shape} vs y_pred {p.shape}")
    bad = set(np.unique(np.concatenate([t, p]))) - {0, 1}
    if bad:
        raise ValueError(f"Labels must be 0/1, got {sorted(bad)}")
    return ConfusionMatrix(
        tn=int(np.sum((t == 0) & (p == 0))),
        fp=int(np.sum((t == 0) & (p == 1))),
        fn=int(np.sum((t == 1) & (p == 0))),
        tp=int(np.sum((t == 1) & (p == 1))),
    )


def comparison_table(matrices: Dict[str, ConfusionMatrix]) -> Dict[str, Dict[str, Any]]:
    """Per-model summary, best F1 first."""
    rows = {name: cm.summary() for name, cm in matrices.items()}
    return dict(sorted(rows.items(), key=lambda kv: (-kv[1]["f1"], kv[0])))
