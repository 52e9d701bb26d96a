"""
Preprocessing for the churn workflow.

A `Recipe` describes the steps; `Recipe.prep` learns their parameters on the
training split only and returns a `PreparedRecipe`, whose `bake` turns any
split into a float32 design matrix.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np

from .data import ChurnTable, DataError, n_rows, take_rows


def drop_incomplete(table: ChurnTable) -> ChurnTable:
    """Drop rows with a NaN in any numeric column or a blank in any text column."""
    rows = n_rows(table)
    keep = np.ones(rows, dtype=bool)
    for values in table.values():
        if values.dtype == object:
            keep &= np.array([str(v).strip() != "" for v in values], dtype=bool)
        else:
            keep &= ~np.isnan(values.astype(np.float64))
    return take_rows(table, np.flatnonzero(keep))


def initial_split(
    labels: np.ndarray,
    *,
    test_fraction: float = 0.2,
    seed: Optional[int] = None,
) -> Tuple[np.ndarray, np.ndarray]:
    """Stratified train/test row indices (each sorted)."""
    if not 0.0 < float(test_fraction) < 1.0:
        raise ValueError(f"test_fraction must be in (0, 1), got {test_fraction!r}")
    rng = np.random.default_rng(seed)
    train_parts: List[np.ndarray] = []
    test_parts: List[np.ndarray] = []
    for cls in np.unique(labels):
        idx = np.flatnonzero(labels == cls)
        rng.shuffle(idx)
        n_test = int(round(len(idx) * float(test_fraction)))
        if len(idx) > 1:
            n_test = min(max(n_test, 1), len(idx) - 1)
        test_parts.append(idx[:n_test])
        train_parts.append(idx[n_test:])
    train = np.sort(np.concatenate(train_parts)) if train_parts else np.array([], dtype=int)
    test = np.sort(np.concatenate(test_parts)) if test_parts else np.array([], dtype=int)
    return train, test


@dataclass(frozen=True)
class Recipe:
    outcome: str = "Churn"
    drop: Tuple[str, ...] = ("customerID",)
    discretize: Dict[str, int] = field(default_factory=lambda: {"tenure": 6})
    log: Tuple[str, ...] = ("TotalCharges",)
    center_scale: bool = True

    def _predictors(self, table: ChurnTable) -> List[str]:
        return [c for c in table if c != self.outcome and c not in self.drop]

    def prep(self, training: ChurnTable) -> "PreparedRecipe":
        predictors = self._predictors(training)
        for col in [*self.discretize, *self.log]:
            if col not in predictors:
                raise DataError(f"Recipe step refers to missing column '{col}'")

        bin_edges: Dict[str, np.ndarray] = {}
        for col, bins in self.discretize.items():
            values = training[col].astype(np.float64)
            edges = np.unique(np.quantile(values, np.linspace(0.0, 1.0, int(bins) + 1)))
            bin_edges[col] = edges

        prepared = PreparedRecipe(recipe=self, predictors=predictors, bin_edges=bin_edges)
        transformed = prepared._transform(training)

        levels: Dict[str, List[str]] = {}
        numeric: List[str] = []
        for col in predictors:
            values = transformed[col]
            if values.dtype == object:
                levels[col] = sorted({str(v) for v in values})
            else:
                numeric.append(col)
        prepared.levels = levels
        prepared.numeric = numeric

        design = prepared._design(transformed)
        if self.center_scale and design.shape[0] > 0:
            means = np.nanmean(design, axis=0)
            scales = np.nanstd(design, axis=0)
            scales[~np.isfinite(scales) | (scales == 0.0)] = 1.0
        else:
            means = np.zeros(design.shape[1])
            scales = np.ones(design.shape[1])
        prepared.means = means
        prepared.scales = scales
        return prepared


@dataclass
class PreparedRecipe:
    recipe: Recipe
    predictors: List[str]
    bin_edges: Dict[str, np.ndarray] = field(default_factory=dict)
    levels: Dict[str, List[str]] = field(default_factory=dict)
    numeric: List[str] = field(default_factory=list)
    means: Optional[np.ndarray] = None
    scales: Optional[np.ndarray] = None

    @property
    def feature_names(self) -> List[str]:
        names = list(self.numeric)
        for col in self.predictors:
            if col in self.levels:
                # First level is the reference category.
                names.extend(f"{col}_{lvl}" for lvl in self.levels[col][1:])
        return names

    def _transform(self, table: ChurnTable) -> ChurnTable:
        out: ChurnTable = {}
        for col in self.predictors:
            if col not in table:
                raise DataError(f"Missing predictor column '{col}'")
            values = table[col]
            if col in self.bin_edges:
                inner = self.bin_edges[col][1:-1]
                bucket = np.digitize(values.astype(np.float64), inner, right=True)
                values = np.array([f"bin{int(b) + 1}" for b in bucket], dtype=object)
            elif col in self.recipe.log:
                values = np.log(np.clip(values.astype(np.float64), 1e-9, None))
            out[col] = values
        return out

    def _design(self, transformed: ChurnTable) -> np.ndarray:
        rows = n_rows(transformed)
        blocks: List[np.ndarray] = []
        for col in self.numeric:
            blocks.append(transformed[col].astype(np.float64).reshape(rows, 1))
        for col in self.predictors:
            if col not in self.levels:
                continue
            observed = np.array([str(v) for v in transformed[col]], dtype=object)
            for lvl in self.levels[col][1:]:
                blocks.append((observed == lvl).astype(np.float64).reshape(rows, 1))
        if not blocks:
            return np.zeros((rows, 0))
        return np.hstack(blocks)

    def bake(self, table: ChurnTable) -> np.ndarray:
        design = self._design(self._transform(table))
        means = self.means if self.means is not None else np.zeros(design.shape[1])
        scales = self.scales if self.scales is not None else np.ones(design.shape[1])
        design = np.where(np.isnan(design), means, design)
        return ((design - means) / scales).astype(np.float32)


def recipe_from_config(columns: Sequence[str], *, outcome: str, id_column: Optional[str], tenure_bins: int, log_columns: Sequence[str]) -> Recipe:
    discretize = {"tenure": int(tenure_bins)} if "tenure" in columns and tenure_bins > 0 else {}
    return Recipe(
        outcome=outcome,
        drop=(id_column,) if id_column and id_column in columns else (),
        discretize=discretize,
        log=tuple(c for c in log_columns if c in columns),
    )
