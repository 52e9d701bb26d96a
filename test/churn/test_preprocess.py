from __future__ import annotations

import numpy as np
import pytest

from ChurnPlan.churn.data import DataError, churn_labels, make_synthetic_churn, n_rows
from ChurnPlan.churn.preprocess import Recipe, drop_incomplete, initial_split, recipe_from_config


def _small_table():
    return {
        "customerID": np.array(["a", "b", "c", "d"], dtype=object),
        "tenure": np.array([1.0, 10.0, 20.0, 40.0]),
        "Contract": np.array(["M", "O", "M", "T"], dtype=object),
        "TotalCharges": np.array([10.0, 100.0, 200.0, 400.0]),
        "Churn": np.array(["Yes", "No", "No", "Yes"], dtype=object),
    }


def test_drop_incomplete_removes_nan_and_blank_rows():
    table = _small_table()
    table["TotalCharges"] = np.array([10.0, np.nan, 200.0, 400.0])
    table["Contract"] = np.array(["M", "O", " ", "T"], dtype=object)
    cleaned = drop_incomplete(table)
    assert cleaned["customerID"].tolist() == ["a", "d"]


def test_initial_split_is_stratified_and_disjoint():
    labels = churn_labels(drop_incomplete(make_synthetic_churn(600, seed=5)))
    train, test = initial_split(labels, test_fraction=0.25, seed=100)

    assert len(np.intersect1d(train, test)) == 0
    assert len(train) + len(test) == len(labels)
    assert np.all(np.diff(train) > 0) and np.all(np.diff(test) > 0)
    assert len(test) == pytest.approx(0.25 * len(labels), abs=2)
    assert labels[test].mean() == pytest.approx(labels.mean(), abs=0.03)


def test_initial_split_is_seeded():
    labels = np.array([0, 1] * 50, dtype=np.float32)
    a = initial_split(labels, test_fraction=0.2, seed=1)
    b = initial_split(labels, test_fraction=0.2, seed=1)
    np.testing.assert_array_equal(a[1], b[1])


@pytest.mark.parametrize("fraction", [0.0, 1.0, -0.1])
def test_initial_split_rejects_bad_fractions(fraction):
    with pytest.raises(ValueError):
        initial_split(np.zeros(10), test_fraction=fraction)


def test_recipe_learns_bins_levels_and_scaling_on_training_rows():
    recipe = Recipe(outcome="Churn", drop=("customerID",), discretize={"tenure": 2}, log=("TotalCharges",))
    prepared = recipe.prep(_small_table())

    assert prepared.predictors == ["tenure", "Contract", "TotalCharges"]
    assert prepared.levels == {"tenure": ["bin1", "bin2"], "Contract": ["M", "O", "T"]}
    assert prepared.feature_names == ["TotalCharges", "tenure_bin2", "Contract_O", "Contract_T"]

    x = prepared.bake(_small_table())
    assert x.dtype == np.float32
    assert x.shape == (4, 4)
    np.testing.assert_allclose(x.mean(axis=0), 0.0, atol=1e-5)


def test_bake_imputes_missing_numeric_values_with_training_mean():
    prepared = Recipe(discretize={"tenure": 2}).prep(_small_table())
    unseen = _small_table()
    unseen["TotalCharges"] = np.array([np.nan, 100.0, 200.0, 400.0])
    x = prepared.bake(unseen)
    assert x[0, 0] == pytest.approx(0.0)
    assert np.all(np.isfinite(x))


def test_recipe_steps_must_name_existing_columns():
    with pytest.raises(DataError):
        Recipe(discretize={"age": 3}).prep(_small_table())


def test_recipe_from_config_skips_absent_columns():
    recipe = recipe_from_config(
        ["customerID", "Contract", "Churn"],
        outcome="Churn",
        id_column="customerID",
        tenure_bins=6,
        log_columns=["TotalCharges"],
    )
    assert recipe.discretize == {}
    assert recipe.log == ()
    assert recipe.drop == ("customerID",)

    prepared = recipe.prep({k: v for k, v in _small_table().items() if k in ("customerID", "Contract", "Churn")})
    assert prepared.feature_names == ["Contract_O", "Contract_T"]
    assert n_rows({"x": prepared.bake(_small_table())}) == 4
