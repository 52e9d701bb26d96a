"""
Small feed-forward churn classifiers.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Any, Dict, List, Tuple

import torch
from torch import nn

_ACTIVATIONS = {
    "relu": nn.ReLU,
    "sigmoid": nn.Sigmoid,
    "tanh": nn.Tanh,
    "elu": nn.ELU,
}


@dataclass(frozen=True)
class ModelSpec:
    """Architecture of one compared model: hidden layer widths, activation, dropout."""
    name: str
    hidden: Tuple[int, ...] = (16, 16)
    activation: str = "relu"
    dropout: float = 0.1

    def to_json_dict(self) -> Dict[str, Any]:
        return asdict(self)


_DEFAULT_SPECS: Dict[str, ModelSpec] = {
    "relu": ModelSpec(name="relu", hidden=(16, 16), activation="relu", dropout=0.1),
    "sigmoid": ModelSpec(name="sigmoid", hidden=(16, 16), activation="sigmoid", dropout=0.1),
    "tanh": ModelSpec(name="tanh", hidden=(16, 16), activation="tanh", dropout=0.1),
    "deep_relu": ModelSpec(name="deep_relu", hidden=(32, 16, 8), activation="relu", dropout=0.2),
}


def list_model_specs() -> List[str]:
    return list(_DEFAULT_SPECS)


def get_model_spec(name: str) -> ModelSpec:
    try:
        return _DEFAULT_SPECS[name]
    except KeyError as exc:
        raise ValueError(f"Unknown model '{name}'. Available: {', '.join(_DEFAULT_SPECS)}") from exc


class ChurnMLP(nn.Module):
    """Dense layers with dropout; outputs one logit per row."""

    def __init__(self, n_features: int, spec: ModelSpec):
        super().__init__()
        if spec.activation not in _ACTIVATIONS:
            raise ValueError(f"Unsupported activation '{spec.activation}'")
        layers: List[nn.Module] = []
        width = int(n_features)
        for units in spec.hidden:
            layers.append(nn.Linear(width, int(units)))
            layers.append(_ACTIVATIONS[spec.activation]())
            if spec.dropout > 0:
                layers.append(nn.Dropout(float(spec.dropout)))
            width = int(units)
        layers.append(nn.Linear(width, 1))
        self.net = nn.Sequential(*layers)
        self.n_features = int(n_features)
        self.spec = spec

    def forward(self, x: torch.Tensor) -> torch.Tensor:
        return self.net(x).squeeze(-1)


def build_model(spec: ModelSpec, n_features: int) -> ChurnMLP:
    return ChurnMLP(n_features, spec)
