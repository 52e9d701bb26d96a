from __future__ import annotations

import io
import threading
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

import numpy as np
import torch
from torch import nn
from torch.utils.data import DataLoader, TensorDataset

from .models import ChurnMLP, ModelSpec, build_model

# One seeded fit at a time on the default torch generator.
_TORCH_RNG_LOCK = threading.Lock()


@dataclass
class TrainingHistory:
    loss: List[float] = field(default_factory=list)
    accuracy: List[float] = field(default_factory=list)
    val_loss: List[float] = field(default_factory=list)
    val_accuracy: List[float] = field(default_factory=list)

    def to_json_dict(self) -> Dict[str, List[float]]:
        return {
            "loss": list(self.loss),
            "accuracy": list(self.accuracy),
            "val_loss": list(self.val_loss),
            "val_accuracy": list(self.val_accuracy),
        }


@dataclass
class TrainedModel:
    """A fitted model in cacheable form.

    Weights are kept as serialized bytes rather than a live `nn.Module`, so the
    result pickles cheaply and hashes deterministically.
    """

    spec: ModelSpec
    n_features: int
    state: bytes
    history: TrainingHistory
    seed: Optional[int] = None

    def load(self) -> ChurnMLP:
        model = build_model(self.spec, self.n_features)
        state_dict = torch.load(io.BytesIO(self.state), map_location="cpu")
        model.load_state_dict(state_dict)
        model.eval()
        return model


def serialize_state(model: nn.Module) -> bytes:
    buf = io.BytesIO()
    torch.save(model.state_dict(), buf)
    return buf.getvalue()


def _accuracy(logits: torch.Tensor, y: torch.Tensor) -> float:
    if y.numel() == 0:
        return float("nan")
    return float(((logits > 0).float() == y).float().mean().item())


def train_model(
    spec: ModelSpec,
    x: np.ndarray,
    y: np.ndarray,
    *,
    epochs: int = 35,
    batch_size: int = 50,
    learning_rate: float = 1e-3,
    validation_fraction: float = 0.3,
    seed: Optional[int] = 42,
) -> TrainedModel:
    """Fit with Adam on binary cross-entropy; a tail of the shuffled rows is held out for validation.

    Weight init and dropout draw from torch's process-wide generator, so fits
    are serialized and run on a forked RNG state. A given seed gives the same
    weights whether or not other models train on other threads.
    """
    if len(x) != len(y):
        raise ValueError(f"x and y lengths differ: {len(x)} != {len(y)}")
    if len(x) == 0:
        raise ValueError("Cannot train on an empty dataset")

    rng = np.random.default_rng(seed)
    order = rng.permutation(len(x))
    n_val = int(len(x) * float(validation_fraction)) if validation_fraction > 0 else 0
    n_val = min(n_val, len(x) - 1)
    train_idx, val_idx = order[: len(x) - n_val], order[len(x) - n_val:]

    x_t = torch.as_tensor(np.asarray(x, dtype=np.float32))
    y_t = torch.as_tensor(np.asarray(y, dtype=np.float32))

    with _TORCH_RNG_LOCK, torch.random.fork_rng(devices=[]):
        if seed is not None:
            torch.manual_seed(int(seed))
        model, history = _fit(
            spec,
            x_t[train_idx],
            y_t[train_idx],
            x_t[val_idx],
            y_t[val_idx],
            epochs=epochs,
            batch_size=batch_size,
            learning_rate=learning_rate,
            seed=seed,
        )

    return TrainedModel(
        spec=spec,
        n_features=int(x_t.shape[1]),
        state=serialize_state(model),
        history=history,
        seed=seed,
    )


def _fit(
    spec: ModelSpec,
    x_train: torch.Tensor,
    y_train: torch.Tensor,
    x_val: torch.Tensor,
    y_val: torch.Tensor,
    *,
    epochs: int,
    batch_size: int,
    learning_rate: float,
    seed: Optional[int],
) -> Tuple[ChurnMLP, TrainingHistory]:
    g = torch.Generator()
    g.manual_seed(int(seed) if seed is not None else 0)
    loader = DataLoader(
        TensorDataset(x_train, y_train),
        batch_size=max(1, int(batch_size)),
        shuffle=True,
        generator=g,
        num_workers=0,
    )

    model = build_model(spec, x_train.shape[1])
    optimizer = torch.optim.Adam(model.parameters(), lr=float(learning_rate))
    loss_fn = nn.BCEWithLogitsLoss()
    history = TrainingHistory()

    for _ in range(max(1, int(epochs))):
        model.train()
        total_loss, total_correct, seen = 0.0, 0.0, 0
        for xb, yb in loader:
            optimizer.zero_grad()
            logits = model(xb)
            loss = loss_fn(logits, yb)
            loss.backward()
            optimizer.step()
            total_loss += float(loss.item()) * len(xb)
            total_correct += float(((logits.detach() > 0).float() == yb).sum().item())
            seen += len(xb)
        history.loss.append(total_loss / max(seen, 1))
        history.accuracy.append(total_correct / max(seen, 1))

        if len(x_val) > 0:
            model.eval()
            with torch.no_grad():
                val_logits = model(x_val)
                history.val_loss.append(float(loss_fn(val_logits, y_val).item()))
                history.val_accuracy.append(_accuracy(val_logits, y_val))

    model.eval()
    return model, history


def predict_proba(trained: TrainedModel, x: np.ndarray) -> np.ndarray:
    model = trained.load()
    with torch.no_grad():
        logits = model(torch.as_tensor(np.asarray(x, dtype=np.float32)))
        return torch.sigmoid(logits).cpu().numpy().astype(np.float64)


def predict_class(trained: TrainedModel, x: np.ndarray, threshold: float = 0.5) -> np.ndarray:
    return (predict_proba(trained, x) >= float(threshold)).astype(np.int64)
