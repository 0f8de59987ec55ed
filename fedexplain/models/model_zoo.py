import enum
from dataclasses import dataclass, field
from typing import Any, Dict

import numpy as np
import torch
import torch.nn as nn

from ..types import WeightSet
from ..utils.config import FeatureConfig
from ..utils.serialization import set_weights


class ArchitectureKind(str, enum.Enum):
    LOGISTIC = "logistic"
    DEEP = "deep"

    @classmethod
    def parse(cls, value: Any) -> "ArchitectureKind":
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).lower())
        except ValueError:
            raise ValueError(
                f"Unknown architecture '{value}'; expected one of {[k.value for k in cls]}"
            ) from None


class TabularBinaryMLP(nn.Module):
    """
    Small MLP for binary classification on tabular features.
    Output: a single logit per row.
    """

    def __init__(self, input_dim: int, hidden1: int = 16, hidden2: int = 8):
        super().__init__()
        self.feature_extractor = nn.Sequential(
            nn.Linear(input_dim, hidden1),
            nn.ReLU(),
            nn.Linear(hidden1, hidden2),
            nn.ReLU(),
        )
        self.classifier = nn.Linear(hidden2, 1)

    def forward(self, x: torch.Tensor) -> torch.Tensor:
        z = self.feature_extractor(x)
        return self.classifier(z)


class DeepTabularMLP(nn.Module):
    """
    A slightly wider MLP with dropout, used as the non-linear
    "decision tree approximation" architecture.
    """

    def __init__(self, input_dim: int, hidden1: int = 32, hidden2: int = 16, p: float = 0.2):
        super().__init__()
        self.feature_extractor = nn.Sequential(
            nn.Linear(input_dim, hidden1),
            nn.ReLU(),
            nn.Dropout(p),
            nn.Linear(hidden1, hidden2),
            nn.ReLU(),
        )
        self.classifier = nn.Linear(hidden2, 1)

    def forward(self, x: torch.Tensor) -> torch.Tensor:
        z = self.feature_extractor(x)
        return self.classifier(z)


def build_model(kind: ArchitectureKind, input_dim: int) -> nn.Module:
    kind = ArchitectureKind.parse(kind)
    if input_dim <= 0:
        raise ValueError("input_dim must be > 0.")
    if kind is ArchitectureKind.LOGISTIC:
        return TabularBinaryMLP(input_dim=input_dim)
    return DeepTabularMLP(input_dim=input_dim)


def build_optimizer(
    kind: ArchitectureKind, model: nn.Module, lr: float
) -> torch.optim.Optimizer:
    if lr <= 0.0:
        raise ValueError("Learning rate must be > 0.")
    kind = ArchitectureKind.parse(kind)
    if kind is ArchitectureKind.LOGISTIC:
        return torch.optim.Adam(model.parameters(), lr=lr)
    return torch.optim.RMSprop(model.parameters(), lr=lr)


@dataclass
class TrainedModel:
    """
    A trained model as plain data: architecture tag, weights, and the
    feature configuration it was trained against.
    """

    architecture: ArchitectureKind
    weights: WeightSet
    config: FeatureConfig
    label_map: Dict[Any, int] = field(default_factory=dict)
    metrics: Dict[str, float] = field(default_factory=dict)

    def build(self) -> nn.Module:
        model = build_model(self.architecture, self.config.num_features)
        set_weights(model, self.weights)
        model.eval()
        return model

    def predict_proba(self, X: np.ndarray) -> np.ndarray:
        """Positive-class probabilities, shape [N]."""
        model = self.build()
        with torch.no_grad():
            logits = model(torch.as_tensor(np.asarray(X), dtype=torch.float32))
            return torch.sigmoid(logits).squeeze(-1).cpu().numpy()
