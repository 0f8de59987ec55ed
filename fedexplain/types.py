from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import torch

# Ordered parameter tensors of one model, in state_dict order.
WeightSet = List[torch.Tensor]


class ParticipantStatus(str, enum.Enum):
    IDLE = "idle"
    PREPARING = "preparing"
    TRAINING = "training"
    COMPLETED = "completed"


class RoundPhase(str, enum.Enum):
    IDLE = "idle"
    PREPARING = "preparing"
    TRAINING = "training"
    AGGREGATING = "aggregating"


class RoundStatus(str, enum.Enum):
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    FAILED = "failed"


@dataclass
class Participant:
    participant_id: int
    name: str
    records: List[Dict[str, Any]]
    status: ParticipantStatus = ParticipantStatus.IDLE
    progress: float = 0.0
    local_accuracy: float = 0.0
    rounds_completed: int = 0

    @property
    def data_size(self) -> int:
        return len(self.records)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.participant_id,
            "name": self.name,
            "status": self.status.value,
            "progress": self.progress,
            "local_accuracy": self.local_accuracy,
            "data_size": self.data_size,
            "rounds": self.rounds_completed,
        }


@dataclass
class TrainingResult:
    participant_id: int
    weights: WeightSet
    accuracy: float
    sample_count: int
    loss: float = float("nan")


@dataclass
class GlobalModelState:
    round: int = 0
    weights: Optional[WeightSet] = None
    accuracy: float = 0.0

    def snapshot(self) -> Dict[str, Any]:
        return {
            "round": self.round,
            "accuracy": self.accuracy,
            "has_weights": self.weights is not None,
        }


@dataclass(frozen=True)
class EpochProgress:
    epoch: int
    total_epochs: int
    loss: float

    @property
    def progress(self) -> float:
        return 100.0 * self.epoch / self.total_epochs


@dataclass(frozen=True)
class ParticipantUpdate:
    participant_id: int
    status: ParticipantStatus
    progress: float
    local_accuracy: float


@dataclass
class RoundOutcome:
    status: RoundStatus
    round: int
    accuracy: float
    contributors: int = 0
    error: Optional[str] = None
    update_bytes: int = 0
    participant_metrics: Dict[str, Dict[str, float]] = field(default_factory=dict)


@dataclass(frozen=True)
class FeatureImportanceEntry:
    feature_name: str
    raw_importance: float
    normalized_importance: float


@dataclass
class GlobalExplanation:
    model_accuracy: float
    features: List[FeatureImportanceEntry] = field(default_factory=list)


@dataclass(frozen=True)
class FeatureContribution:
    feature_name: str
    coefficient: float


@dataclass
class LocalExplanation:
    instance_prediction: float
    contributions: List[FeatureContribution] = field(default_factory=list)

    def top(self, n: int = 5) -> List[FeatureContribution]:
        return self.contributions[:n]
