import asyncio
import logging
from typing import Callable, Generator, Optional

import torch

from ..data.preprocess import PreprocessedData, class_distribution_report, preprocess_records
from ..errors import PreprocessingError, RoundCancelled
from ..models.model_zoo import ArchitectureKind, build_model, build_optimizer
from ..models.trainer import evaluate_model, iter_training_epochs
from ..types import EpochProgress, Participant, ParticipantStatus, TrainingResult, WeightSet
from ..utils.config import FeatureConfig, Hyperparameters
from ..utils.serialization import clone_weights, get_weights, set_weights

LOGGER = logging.getLogger(__name__)


def iter_local_training(
    participant_id: int,
    data: PreprocessedData,
    seed_weights: Optional[WeightSet],
    architecture: ArchitectureKind,
    local_epochs: int,
    hyper: Hyperparameters,
    seed: Optional[int] = None,
) -> Generator[EpochProgress, None, TrainingResult]:
    """
    One local training pass for one participant.

    Builds a fresh model of the agreed architecture, loads a private clone
    of ``seed_weights`` when given (None means keep the random init), trains
    for ``local_epochs`` epochs yielding after each one, then evaluates on the
    same local data.
    """
    generator = None
    if seed is not None:
        torch.manual_seed(seed)
        generator = torch.Generator().manual_seed(seed)

    model = build_model(architecture, data.num_features)
    if seed_weights is not None:
        set_weights(model, clone_weights(seed_weights))
    optimizer = build_optimizer(architecture, model, hyper.learning_rate)

    last_loss = float("nan")
    for event in iter_training_epochs(
        model, optimizer, data.features, data.labels,
        epochs=local_epochs, batch_size=hyper.batch_size, generator=generator,
    ):
        last_loss = event.loss
        yield event

    metrics = evaluate_model(model, data.features, data.labels)
    return TrainingResult(
        participant_id=participant_id,
        weights=get_weights(model),
        accuracy=metrics["accuracy"],
        sample_count=data.num_samples,
        loss=last_loss,
    )


async def run_participant_training(
    participant: Participant,
    config: FeatureConfig,
    seed_weights: Optional[WeightSet],
    hyper: Hyperparameters,
    local_epochs: int,
    architecture: ArchitectureKind = ArchitectureKind.LOGISTIC,
    cancel_event: Optional[asyncio.Event] = None,
    notify: Optional[Callable[[Participant], None]] = None,
    seed: Optional[int] = None,
) -> TrainingResult:
    """
    Task body for one participant within a round.

    Only this task mutates ``participant`` while it runs. A stop request is
    checked at every epoch boundary and raises RoundCancelled. A
    preprocessing failure is contained: it is logged and reported as a
    zero-sample result.
    """

    def _notify() -> None:
        if notify is not None:
            notify(participant)

    def _cancelled() -> bool:
        return cancel_event is not None and cancel_event.is_set()

    participant.status = ParticipantStatus.TRAINING
    participant.progress = 0.0
    _notify()

    try:
        data = preprocess_records(participant.records, config.feature_columns, config.target_column)
    except PreprocessingError as exc:
        LOGGER.warning(f"[{participant.name}] Error: Failed to preprocess data: {exc.message}")
        participant.status = ParticipantStatus.IDLE
        _notify()
        return TrainingResult(
            participant_id=participant.participant_id,
            weights=[],
            accuracy=0.0,
            sample_count=0,
        )

    LOGGER.debug(f"[{participant.name}] {class_distribution_report(data)}")

    if _cancelled():
        raise RoundCancelled(f"[{participant.name}] stopped before training")

    steps = iter_local_training(
        participant_id=participant.participant_id,
        data=data,
        seed_weights=seed_weights,
        architecture=architecture,
        local_epochs=local_epochs,
        hyper=hyper,
        seed=seed,
    )
    while True:
        try:
            event = next(steps)
        except StopIteration as stop:
            result = stop.value
            break
        participant.progress = event.progress
        _notify()
        LOGGER.debug(
            f"[{participant.name}] Epoch {event.epoch}/{event.total_epochs} loss={event.loss:.4f}"
        )
        # suspension point between epochs
        await asyncio.sleep(0)
        if _cancelled():
            steps.close()
            raise RoundCancelled(f"[{participant.name}] stopped after epoch {event.epoch}")

    participant.status = ParticipantStatus.COMPLETED
    participant.progress = 100.0
    participant.local_accuracy = result.accuracy
    participant.rounds_completed += 1
    _notify()

    LOGGER.info(
        f"[{participant.name}] Local training complete. Accuracy: {result.accuracy * 100:.1f}%"
    )
    return result
