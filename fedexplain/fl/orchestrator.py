import asyncio
import logging
from typing import Any, Callable, Dict, List, Optional, Sequence

from ..data.partition import partition_dataset
from ..errors import AggregationError, RoundCancelled, RoundInProgressError
from ..models.model_zoo import ArchitectureKind, TrainedModel
from ..types import (
    GlobalModelState,
    Participant,
    ParticipantStatus,
    ParticipantUpdate,
    RoundOutcome,
    RoundPhase,
    RoundStatus,
    TrainingResult,
)
from ..utils.config import FeatureConfig, FederationSettings, Hyperparameters
from ..utils.serialization import are_compatible, clone_weights, estimate_update_size_bytes
from .client import run_participant_training
from .server import aggregate_accuracy, contributing_results, federated_average

LOGGER = logging.getLogger(__name__)


class RoundOrchestrator:
    """
    Federated round state machine.

    IDLE -> PREPARING -> TRAINING -> AGGREGATING -> IDLE, one cycle per
    ``start`` call. The orchestrator is the only owner of the global model
    state; it is written once per successful round, after every participant
    task has joined. Rounds never overlap.
    """

    def __init__(
        self,
        records: Sequence[Dict[str, Any]],
        config: FeatureConfig,
        hyper: Hyperparameters,
        settings: Optional[FederationSettings] = None,
        trainer: Callable[..., Any] = run_participant_training,
    ):
        self.records = list(records)
        self.config = config
        self.hyper = hyper
        self.settings = settings or FederationSettings()
        self.architecture = ArchitectureKind.parse(self.settings.architecture)
        self._trainer = trainer

        self.state = GlobalModelState()
        self.phase = RoundPhase.IDLE
        self.history: List[RoundOutcome] = []
        self.participants: List[Participant] = partition_dataset(
            self.records, self.settings.participant_names
        )

        self._cancel = asyncio.Event()
        self._generation = 0
        self._subscribers: List[asyncio.Queue] = []

    # ------------------------------------------------------------------
    # observation
    # ------------------------------------------------------------------

    @property
    def is_active(self) -> bool:
        return self.phase is not RoundPhase.IDLE

    def subscribe(self) -> asyncio.Queue:
        """Queue receiving a ParticipantUpdate on every status/progress change."""
        queue: asyncio.Queue = asyncio.Queue()
        self._subscribers.append(queue)
        return queue

    def unsubscribe(self, queue: asyncio.Queue) -> None:
        if queue in self._subscribers:
            self._subscribers.remove(queue)

    def _publish(self, participant: Participant) -> None:
        update = ParticipantUpdate(
            participant_id=participant.participant_id,
            status=participant.status,
            progress=participant.progress,
            local_accuracy=participant.local_accuracy,
        )
        for queue in self._subscribers:
            queue.put_nowait(update)

    def participants_snapshot(self) -> List[Dict[str, Any]]:
        return [p.to_dict() for p in self.participants]

    def global_model(self) -> TrainedModel:
        """The committed global weights wrapped as a TrainedModel."""
        if self.state.weights is None:
            raise ValueError("No federated round has completed yet.")
        return TrainedModel(
            architecture=self.architecture,
            weights=clone_weights(self.state.weights),
            config=self.config,
            metrics={"accuracy": self.state.accuracy, "round": float(self.state.round)},
        )

    # ------------------------------------------------------------------
    # control
    # ------------------------------------------------------------------

    def stop(self) -> None:
        """
        Request cancellation of the active round. Honoured at the next
        epoch or task boundary; the epoch in flight finishes first.
        """
        if self.is_active:
            LOGGER.info("[RoundOrchestrator] Stop requested; finishing current epochs.")
            self._cancel.set()

    def reset(
        self,
        records: Optional[Sequence[Dict[str, Any]]] = None,
        config: Optional[FeatureConfig] = None,
    ) -> None:
        """
        Cancel any in-flight round, clear the global model and rebuild the
        participants from scratch.
        """
        if self.is_active:
            self._cancel.set()
        self._generation += 1
        self._cancel = asyncio.Event()

        if records is not None:
            self.records = list(records)
        if config is not None:
            self.config = config

        self.state = GlobalModelState()
        self.phase = RoundPhase.IDLE
        self.history.clear()
        self.participants = partition_dataset(self.records, self.settings.participant_names)
        for p in self.participants:
            self._publish(p)
        LOGGER.info("[RoundOrchestrator] Simulation reset.")

    def _participant_seed(self, participant: Participant, round_no: int) -> Optional[int]:
        if self.settings.seed is None:
            return None
        return int(self.settings.seed) + 7919 * round_no + participant.participant_id

    def _set_all(self, status: ParticipantStatus) -> None:
        for p in self.participants:
            p.status = status
            if status is ParticipantStatus.PREPARING:
                p.progress = 0.0
            self._publish(p)

    def _abandon(self, round_no: int, generation: int) -> RoundOutcome:
        LOGGER.info(
            f"[RoundOrchestrator] Round {round_no} cancelled; global model stays at round {self.state.round}."
        )
        outcome = RoundOutcome(
            status=RoundStatus.CANCELLED,
            round=self.state.round,
            accuracy=self.state.accuracy,
        )
        if generation == self._generation:
            self.history.append(outcome)
        return outcome

    async def start(self) -> RoundOutcome:
        """
        Run one federated round.

        Returns a COMPLETED or CANCELLED outcome. Aggregation failures
        (shape mismatch, no contributors) and participant task errors are
        logged and re-raised after the orchestrator is back in IDLE with the
        previous global state untouched.
        """
        if self.is_active:
            raise RoundInProgressError("A federated round is already in progress.")

        generation = self._generation
        cancel = asyncio.Event()
        self._cancel = cancel
        round_no = self.state.round + 1
        participants = list(self.participants)

        LOGGER.info(f"[RoundOrchestrator] --- Starting Federated Round {round_no} ---")
        try:
            # -------- Preparing: snapshot the broadcast seed --------
            self.phase = RoundPhase.PREPARING
            seed_weights = clone_weights(self.state.weights)
            self._set_all(ParticipantStatus.PREPARING)
            LOGGER.info("[RoundOrchestrator] Broadcasting global model to participants...")
            await asyncio.sleep(0)
            if cancel.is_set() or generation != self._generation:
                return self._abandon(round_no, generation)

            # -------- Training: fan out, then join --------
            self.phase = RoundPhase.TRAINING
            tasks = [
                asyncio.create_task(
                    self._trainer(
                        p,
                        self.config,
                        clone_weights(seed_weights),
                        hyper=self.hyper,
                        local_epochs=self.settings.local_epochs,
                        architecture=self.architecture,
                        cancel_event=cancel,
                        notify=self._publish,
                        seed=self._participant_seed(p, round_no),
                    ),
                    name=f"train-{p.name}",
                )
                for p in participants
            ]
            outcomes = await asyncio.gather(*tasks, return_exceptions=True)

            if (
                cancel.is_set()
                or generation != self._generation
                or any(isinstance(o, RoundCancelled) for o in outcomes)
            ):
                return self._abandon(round_no, generation)

            failures = [o for o in outcomes if isinstance(o, BaseException)]
            if failures:
                LOGGER.error(
                    f"[RoundOrchestrator] Round {round_no} aborted: participant task failed: {failures[0]!r}"
                )
                self.history.append(
                    RoundOutcome(
                        status=RoundStatus.FAILED,
                        round=self.state.round,
                        accuracy=self.state.accuracy,
                        error=repr(failures[0]),
                    )
                )
                raise failures[0]

            results: List[TrainingResult] = list(outcomes)

            # -------- Aggregating --------
            self.phase = RoundPhase.AGGREGATING
            LOGGER.info("[RoundOrchestrator] Aggregating participant models (Federated Averaging)...")
            try:
                aggregated = federated_average(results)
            except AggregationError as exc:
                LOGGER.error(f"[RoundOrchestrator] Round {round_no} aborted: {exc.message}")
                self.history.append(
                    RoundOutcome(
                        status=RoundStatus.FAILED,
                        round=self.state.round,
                        accuracy=self.state.accuracy,
                        error=exc.message,
                    )
                )
                raise

            contributors = contributing_results(results)
            accuracy = aggregate_accuracy(results)

            update_bytes = 0
            if seed_weights is not None:
                for r in contributors:
                    if are_compatible(seed_weights, r.weights):
                        update_bytes += estimate_update_size_bytes(seed_weights, r.weights)

            by_id = {p.participant_id: p for p in participants}
            participant_metrics = {
                by_id[r.participant_id].name: {
                    "accuracy": r.accuracy,
                    "loss": r.loss,
                    "sample_count": float(r.sample_count),
                }
                for r in results
                if r.participant_id in by_id
            }

            # the only write to the canonical global weights
            self.state = GlobalModelState(
                round=self.state.round + 1,
                weights=aggregated,
                accuracy=accuracy,
            )
            LOGGER.info(
                f"[RoundOrchestrator] Round {self.state.round} complete. "
                f"New Global Accuracy: {accuracy * 100:.1f}% "
                f"({len(contributors)}/{len(results)} contributors)"
            )
            outcome = RoundOutcome(
                status=RoundStatus.COMPLETED,
                round=self.state.round,
                accuracy=accuracy,
                contributors=len(contributors),
                update_bytes=update_bytes,
                participant_metrics=participant_metrics,
            )
            self.history.append(outcome)
            return outcome
        finally:
            if generation == self._generation:
                for p in participants:
                    p.status = ParticipantStatus.IDLE
                    self._publish(p)
                self.phase = RoundPhase.IDLE

    async def run_rounds(
        self,
        rounds: int,
        per_round_logger: Optional[Callable[[RoundOutcome], None]] = None,
    ) -> List[RoundOutcome]:
        """
        Run up to ``rounds`` consecutive rounds, stopping early if one is
        cancelled. Aggregation errors propagate.
        """
        outcomes: List[RoundOutcome] = []
        for r in range(rounds):
            LOGGER.info(f"[run_rounds] ===== Round {r + 1} / {rounds} =====")
            outcome = await self.start()
            outcomes.append(outcome)
            if per_round_logger is not None:
                per_round_logger(outcome)
            if outcome.status is RoundStatus.CANCELLED:
                break
        return outcomes
