from __future__ import annotations

from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional


@dataclass(frozen=True)
class ChurnConfig:
    """Configuration surface for the churn model comparison workflow.

    Notes:
    - `data_path` must point at a telco-style CSV (one row per customer, a
      `Churn` column with Yes/No). `python main.py synth` writes one.
    - Every field flows into some target's command parameters, so changing a
      value invalidates exactly the targets that use it.
    """

    # Input data
    data_path: str = "data/WA_Fn-UseC_-Telco-Customer-Churn.csv"
    target_column: str = "Churn"
    id_column: Optional[str] = "customerID"

    # Split
    seed: int = 100
    test_fraction: float = 0.2

    # Recipe
    tenure_bins: int = 6
    log_columns: List[str] = field(default_factory=lambda: ["TotalCharges"])

    # Training
    epochs: int = 35
    batch_size: int = 50
    learning_rate: float = 1e-3
    validation_fraction: float = 0.3
    threshold: float = 0.5
    models: List[str] = field(default_factory=lambda: ["relu", "sigmoid", "tanh", "deep_relu"])

    # Artifacts
    output_dir: str = "reports"

    def to_json_dict(self) -> Dict[str, Any]:
        return asdict(self)

    def resolved_data_path(self) -> Path:
        return Path(self.data_path)

    def resolved_output_dir(self) -> Path:
        return Path(self.output_dir)
