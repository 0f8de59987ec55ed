import logging
from typing import Any, Dict, Generator, Optional, Sequence

import numpy as np
import torch
from torch import nn
from torch.utils.data import DataLoader, TensorDataset
from sklearn.model_selection import train_test_split

from ..data.preprocess import preprocess_records
from ..types import EpochProgress
from ..utils.config import FeatureConfig, Hyperparameters
from ..utils.iteration import run_to_completion
from ..utils.metrics import binary_metrics
from ..utils.serialization import get_weights, get_model_num_params
from .model_zoo import ArchitectureKind, TrainedModel, build_model, build_optimizer

LOGGER = logging.getLogger(__name__)

_MIN_ROWS_FOR_VALIDATION = 5


def make_loader_from_arrays(
    X_np: np.ndarray,
    y_np: np.ndarray,
    batch_size: int,
    shuffle: bool,
    generator: Optional[torch.Generator] = None,
) -> DataLoader:
    """
    Wrap numpy arrays into a TensorDataset + DataLoader.
    y is always cast to float32 because we're doing BCEWithLogitsLoss.
    """
    X_t = torch.tensor(X_np, dtype=torch.float32)
    y_t = torch.tensor(y_np, dtype=torch.float32)
    ds = TensorDataset(X_t, y_t)
    return DataLoader(ds, batch_size=batch_size, shuffle=shuffle, generator=generator)


def iter_training_epochs(
    model: nn.Module,
    optimizer: torch.optim.Optimizer,
    X: np.ndarray,
    y: np.ndarray,
    epochs: int,
    batch_size: int,
    generator: Optional[torch.Generator] = None,
) -> Generator[EpochProgress, None, None]:
    """
    Train ``model`` in place, yielding one EpochProgress after each epoch.

    The caller decides what to do between epochs (report progress, stop
    early by closing the generator); an epoch that has started always runs
    to completion.
    """
    criterion = nn.BCEWithLogitsLoss()
    loader = make_loader_from_arrays(X, y, batch_size=batch_size, shuffle=True, generator=generator)

    for epoch in range(epochs):
        model.train()
        running_loss = 0.0
        running_count = 0
        for xb, yb in loader:
            optimizer.zero_grad()
            logits = model(xb).squeeze(-1)
            loss = criterion(logits, yb)
            loss.backward()
            optimizer.step()

            bs = xb.size(0)
            running_loss += loss.item() * bs
            running_count += bs

        avg_loss = (running_loss / running_count) if running_count > 0 else 0.0
        yield EpochProgress(epoch=epoch + 1, total_epochs=epochs, loss=avg_loss)


def predict_proba(model: nn.Module, X: np.ndarray) -> np.ndarray:
    model.eval()
    with torch.no_grad():
        logits = model(torch.as_tensor(X, dtype=torch.float32)).squeeze(-1)
        return torch.sigmoid(logits).cpu().numpy()


def evaluate_model(model: nn.Module, X: np.ndarray, y: np.ndarray) -> Dict[str, float]:
    """
    Loss and binary metrics (threshold 0.5) on the given arrays.
    """
    if len(y) == 0:
        return {"loss": 0.0, "accuracy": 0.0, "precision": 0.0, "recall": 0.0, "f1": 0.0}
    model.eval()
    with torch.no_grad():
        logits = model(torch.as_tensor(X, dtype=torch.float32)).squeeze(-1)
        loss = nn.functional.binary_cross_entropy_with_logits(
            logits, torch.as_tensor(y, dtype=torch.float32)
        ).item()
        probs = torch.sigmoid(logits).cpu().numpy()
    preds = (probs >= 0.5).astype(int)
    metrics = binary_metrics(np.asarray(y), preds)
    metrics["loss"] = float(loss)
    return metrics


def iter_centralized_training(
    records: Sequence[Dict[str, Any]],
    config: FeatureConfig,
    hyper: Hyperparameters,
    architecture: ArchitectureKind = ArchitectureKind.LOGISTIC,
    validation_split: float = 0.2,
    seed: Optional[int] = None,
) -> Generator[EpochProgress, None, TrainedModel]:
    """
    Train one model on the whole dataset.

    The last ``validation_split`` fraction of the valid rows is held out
    while fitting; final metrics are computed on all valid rows.
    """
    data = preprocess_records(records, config.feature_columns, config.target_column)
    LOGGER.info(
        f"[train_centralized] Training with {data.num_features} features to predict "
        f"'{data.target_column}' on {data.num_samples} rows"
    )

    generator = None
    if seed is not None:
        torch.manual_seed(seed)
        generator = torch.Generator().manual_seed(seed)

    X_fit, y_fit = data.features, data.labels
    X_val = y_val = None
    if validation_split > 0.0 and data.num_samples >= _MIN_ROWS_FOR_VALIDATION:
        X_fit, X_val, y_fit, y_val = train_test_split(
            data.features, data.labels, test_size=validation_split, shuffle=False
        )

    kind = ArchitectureKind.parse(architecture)
    model = build_model(kind, data.num_features)
    optimizer = build_optimizer(kind, model, hyper.learning_rate)
    LOGGER.info(
        f"[train_centralized] {kind.value} architecture with "
        f"{get_model_num_params(model)} parameters"
    )

    for event in iter_training_epochs(
        model, optimizer, X_fit, y_fit,
        epochs=hyper.epochs, batch_size=hyper.batch_size, generator=generator,
    ):
        if event.epoch % 5 == 0 or event.epoch == event.total_epochs:
            msg = f"[train_centralized] Epoch {event.epoch}/{event.total_epochs} loss={event.loss:.4f}"
            if X_val is not None:
                msg += f" val_loss={evaluate_model(model, X_val, y_val)['loss']:.4f}"
            LOGGER.info(msg)
        yield event

    metrics = evaluate_model(model, data.features, data.labels)
    LOGGER.info(
        f"[train_centralized] Training complete. accuracy={metrics['accuracy']:.4f} "
        f"loss={metrics['loss']:.4f}"
    )
    return TrainedModel(
        architecture=kind,
        weights=get_weights(model),
        config=config,
        label_map=dict(data.label_map),
        metrics=metrics,
    )


def train_centralized(
    records: Sequence[Dict[str, Any]],
    config: FeatureConfig,
    hyper: Hyperparameters,
    architecture: ArchitectureKind = ArchitectureKind.LOGISTIC,
    validation_split: float = 0.2,
    seed: Optional[int] = None,
    on_progress=None,
) -> TrainedModel:
    return run_to_completion(
        iter_centralized_training(
            records, config, hyper,
            architecture=architecture,
            validation_split=validation_split,
            seed=seed,
        ),
        on_step=on_progress,
    )
