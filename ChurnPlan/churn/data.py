"""
Churn data access: read a telco-style CSV into column arrays, or synthesize one.
"""

from __future__ import annotations

import csv
from pathlib import Path
from typing import Dict, List, Optional

import numpy as np

ChurnTable = Dict[str, np.ndarray]


class DataError(ValueError):
    pass


def _parse_column(values: List[str]) -> np.ndarray:
    """Numeric when every non-blank cell parses as float (blanks become NaN)."""
    parsed: List[float] = []
    for v in values:
        s = v.strip()
        if not s:
            parsed.append(float("nan"))
            continue
        try:
            parsed.append(float(s))
        except ValueError:
            return np.array([v.strip() for v in values], dtype=object)
    return np.array(parsed, dtype=np.float64)


def load_churn_csv(path: Path) -> ChurnTable:
    path = Path(path)
    if not path.exists():
        raise DataError(f"Churn data not found: {path}")
    with path.open("r", encoding="utf-8", newline="") as f:
        reader = csv.DictReader(f)
        if not reader.fieldnames:
            raise DataError(f"{path} has no header row")
        columns: Dict[str, List[str]] = {name: [] for name in reader.fieldnames}
        for row in reader:
            for name in reader.fieldnames:
                columns[name].append(row.get(name) or "")
    return {name: _parse_column(values) for name, values in columns.items()}


def n_rows(table: ChurnTable) -> int:
    lengths = {len(v) for v in table.values()}
    if len(lengths) > 1:
        raise DataError(f"Ragged table: column lengths {sorted(lengths)}")
    return lengths.pop() if lengths else 0


def take_rows(table: ChurnTable, index: np.ndarray) -> ChurnTable:
    return {name: values[index] for name, values in table.items()}


def churn_labels(table: ChurnTable, target_column: str = "Churn") -> np.ndarray:
    if target_column not in table:
        raise DataError(f"Missing target column '{target_column}'")
    raw = table[target_column]
    if raw.dtype == object:
        lowered = np.array([str(v).strip().lower() for v in raw])
        unknown = sorted(set(lowered) - {"yes", "no", "1", "0", "true", "false"})
        if unknown:
            raise DataError(f"Unrecognized labels in '{target_column}': {unknown[:5]}")
        return np.isin(lowered, ["yes", "1", "true"]).astype(np.float32)
    return (raw > 0.5).astype(np.float32)


def make_synthetic_churn(n: int = 2000, seed: Optional[int] = 42) -> ChurnTable:
    """Telco-shaped churn data with a learnable signal.

    Month-to-month contracts, fiber internet, electronic checks and short
    tenure raise churn probability, as in the public telco dataset.
    """

    rng = np.random.default_rng(seed)
    n = int(n)

    gender = rng.choice(["Female", "Male"], size=n)
    senior = rng.binomial(1, 0.16, size=n).astype(np.float64)
    partner = rng.choice(["Yes", "No"], size=n)
    dependents = rng.choice(["Yes", "No"], size=n, p=[0.3, 0.7])
    contract = rng.choice(["Month-to-month", "One year", "Two year"], size=n, p=[0.55, 0.21, 0.24])
    internet = rng.choice(["DSL", "Fiber optic", "No"], size=n, p=[0.34, 0.44, 0.22])
    phone = rng.choice(["Yes", "No"], size=n, p=[0.9, 0.1])
    paperless = rng.choice(["Yes", "No"], size=n, p=[0.59, 0.41])
    payment = rng.choice(
        ["Electronic check", "Mailed check", "Bank transfer (automatic)", "Credit card (automatic)"],
        size=n,
        p=[0.34, 0.23, 0.22, 0.21],
    )

    max_tenure = np.where(contract == "Two year", 72, np.where(contract == "One year", 60, 40))
    tenure = np.floor(rng.uniform(0, 1, size=n) * (max_tenure + 1)).astype(np.float64)

    base = np.where(internet == "Fiber optic", 80.0, np.where(internet == "DSL", 55.0, 22.0))
    monthly = np.round(base + rng.normal(0, 8, size=n) + np.where(phone == "Yes", 5.0, 0.0), 2)
    monthly = np.clip(monthly, 18.0, 120.0)
    total = np.round(monthly * tenure + rng.normal(0, 15, size=n), 2)
    total = np.where(tenure == 0, np.nan, np.maximum(total, monthly))

    logit = (
        -1.6
        + 1.5 * (contract == "Month-to-month")
        - 0.8 * (contract == "Two year")
        + 0.7 * (internet == "Fiber optic")
        + 0.5 * (payment == "Electronic check")
        + 0.3 * senior
        + 0.25 * (paperless == "Yes")
        - 0.04 * tenure
        + 0.01 * (monthly - 65.0)
    )
    churn = rng.uniform(0, 1, size=n) < 1.0 / (1.0 + np.exp(-logit))

    return {
        "customerID": np.array([f"{i:04d}-SYN" for i in range(n)], dtype=object),
        "gender": gender.astype(object),
        "SeniorCitizen": senior,
        "Partner": partner.astype(object),
        "Dependents": dependents.astype(object),
        "tenure": tenure,
        "PhoneService": phone.astype(object),
        "InternetService": internet.astype(object),
        "Contract": contract.astype(object),
        "PaperlessBilling": paperless.astype(object),
        "PaymentMethod": payment.astype(object),
        "MonthlyCharges": monthly,
        "TotalCharges": total,
        "Churn": np.where(churn, "Yes", "No").astype(object),
    }


def _format_cell(value) -> str:
    if isinstance(value, (float, np.floating)):
        if np.isnan(value):
            return ""
        return str(int(value)) if float(value).is_integer() else f"{float(value):.2f}"
    return str(value)


def write_churn_csv(table: ChurnTable, path: Path) -> Path:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    names = list(table)
    rows = n_rows(table)
    with path.open("w", encoding="utf-8", newline="") as f:
        writer = csv.writer(f)
        writer.writerow(names)
        for i in range(rows):
            writer.writerow([_format_cell(table[name][i]) for name in names])
    return path
