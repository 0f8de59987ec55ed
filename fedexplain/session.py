"""
Session context shared by the simulator, the trainer and the explainers.

A Session owns the loaded dataset, the active feature/target configuration,
the federated orchestrator, the most recent trained model and explanations,
and the timestamped event log the UI renders. It has an explicit lifecycle:
``create`` -> any number of ``update`` calls -> ``reset``.
"""

import dataclasses
import logging
from typing import Any, Dict, List, Optional, Sequence

import numpy as np

from .data.loader import default_feature_config
from .errors import PreprocessingError, RoundInProgressError
from .explain.permutation import PermutationImportance
from .explain.surrogate import LocalSurrogate
from .fl.orchestrator import RoundOrchestrator
from .models.model_zoo import ArchitectureKind, TrainedModel
from .models.trainer import train_centralized
from .types import GlobalExplanation, LocalExplanation, RoundOutcome
from .utils.config import ExplainSettings, FeatureConfig, FederationSettings, Hyperparameters
from .utils.logging_utils import EventLogHandler, LogEntry

LOGGER = logging.getLogger(__name__)

_UPDATABLE = {"records", "feature_config", "hyperparameters", "federation", "explain", "architecture"}


def _with_architecture(federation: FederationSettings, architecture: Any) -> FederationSettings:
    kind = ArchitectureKind.parse(architecture)
    return dataclasses.replace(federation, architecture=kind.value)


class Session:
    def __init__(
        self,
        records: Sequence[Dict[str, Any]],
        feature_config: FeatureConfig,
        hyperparameters: Hyperparameters,
        federation: FederationSettings,
        explain: ExplainSettings,
        architecture: Optional[ArchitectureKind] = None,
    ):
        self.records = list(records)
        self.feature_config = feature_config
        self.hyperparameters = hyperparameters
        self.federation = federation
        if architecture is not None:
            self.federation = _with_architecture(federation, architecture)
        self.explain = explain

        self.model: Optional[TrainedModel] = None
        self.importance: Optional[GlobalExplanation] = None
        self.explanation: Optional[LocalExplanation] = None

        self._log = EventLogHandler().attach()
        self.orchestrator = self._build_orchestrator()

    @classmethod
    def create(
        cls,
        records: Sequence[Dict[str, Any]],
        feature_config: Optional[FeatureConfig] = None,
        hyperparameters: Optional[Hyperparameters] = None,
        federation: Optional[FederationSettings] = None,
        explain: Optional[ExplainSettings] = None,
        architecture: Optional[ArchitectureKind] = None,
    ) -> "Session":
        """
        Start a session on ``records``. Without an explicit feature config,
        every numeric column becomes a feature and the first categorical
        column the target. ``architecture``, when given, overrides the one
        in ``federation``.
        """
        if feature_config is None:
            feature_config = default_feature_config(records)
        session = cls(
            records=records,
            feature_config=feature_config,
            hyperparameters=hyperparameters or Hyperparameters(),
            federation=federation or FederationSettings(),
            explain=explain or ExplainSettings(),
            architecture=architecture,
        )
        LOGGER.info(
            f"[Session] Created with {len(session.records)} records, "
            f"{feature_config.num_features} features, target '{feature_config.target_column}'"
        )
        return session

    def __enter__(self) -> "Session":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    @property
    def architecture(self) -> ArchitectureKind:
        """Architecture shared by centralised training and federated rounds."""
        return ArchitectureKind.parse(self.federation.architecture)

    def _build_orchestrator(self) -> RoundOrchestrator:
        return RoundOrchestrator(
            records=self.records,
            config=self.feature_config,
            hyper=self.hyperparameters,
            settings=self.federation,
        )

    def update(self, **changes: Any) -> None:
        """
        Replace parts of the session configuration.

        Changing the dataset, the feature configuration, the federation
        settings or the architecture rebuilds the federation from scratch
        (round counter back to 0). Changing the dataset or the feature
        configuration also drops the trained model and explanations. Other
        changes keep the committed global model. Raises RoundInProgressError
        while a round is running.
        """
        unknown = set(changes) - _UPDATABLE
        if unknown:
            raise ValueError(f"Unknown session fields: {sorted(unknown)}")
        if self.orchestrator.is_active:
            raise RoundInProgressError("Cannot update the session while a federated round is running.")

        if "records" in changes:
            self.records = list(changes["records"])
        if "feature_config" in changes:
            self.feature_config = changes["feature_config"]
        if "hyperparameters" in changes:
            self.hyperparameters = changes["hyperparameters"]
            self.orchestrator.hyper = self.hyperparameters
        if "federation" in changes:
            self.federation = changes["federation"]
        if "architecture" in changes:
            self.federation = _with_architecture(self.federation, changes["architecture"])
        if "explain" in changes:
            self.explain = changes["explain"]

        if {"records", "feature_config"} & set(changes):
            self.model = None
            self.importance = None
            self.explanation = None

        if {"records", "feature_config", "federation", "architecture"} & set(changes):
            self.orchestrator = self._build_orchestrator()
            LOGGER.info("[Session] Federation rebuilt for the new configuration.")

    def reset(self) -> None:
        self.orchestrator.reset()
        self.model = None
        self.importance = None
        self.explanation = None
        self._log.clear()

    def close(self) -> None:
        """Detach the session's event log from the package logger."""
        self._log.detach()

    @property
    def log_entries(self) -> List[LogEntry]:
        return list(self._log.entries)

    # ------------------------------------------------------------------
    # training
    # ------------------------------------------------------------------

    def train_model(self, seed: Optional[int] = None, on_progress=None) -> TrainedModel:
        self.model = train_centralized(
            self.records,
            self.feature_config,
            self.hyperparameters,
            architecture=self.architecture,
            seed=seed if seed is not None else self.federation.seed,
            on_progress=on_progress,
        )
        self.importance = None
        self.explanation = None
        return self.model

    async def run_round(self) -> RoundOutcome:
        return await self.orchestrator.start()

    def use_federated_model(self) -> TrainedModel:
        """Make the committed global federated model the one explained."""
        self.model = self.orchestrator.global_model()
        self.importance = None
        self.explanation = None
        return self.model

    # ------------------------------------------------------------------
    # explanations
    # ------------------------------------------------------------------

    def _require_model(self) -> TrainedModel:
        if self.model is None:
            raise ValueError("Train a model before requesting explanations.")
        return self.model

    def explain_global(self) -> Optional[GlobalExplanation]:
        model = self._require_model()
        engine = PermutationImportance(
            n_permutations=self.explain.n_permutations,
            random_state=self.explain.random_state,
        )
        self.importance = engine.explain(model, self.records)
        return self.importance

    def _surrogate(self) -> LocalSurrogate:
        return LocalSurrogate(
            num_samples=self.explain.num_samples,
            noise_std=self.explain.noise_std,
            kernel_width=self.explain.kernel_width,
            epochs=self.explain.surrogate_epochs,
            learning_rate=self.explain.surrogate_learning_rate,
            batch_size=self.explain.surrogate_batch_size,
            random_state=self.explain.random_state,
        )

    def _pick_record(self, record_index: Optional[int]) -> Dict[str, Any]:
        if not self.records:
            raise PreprocessingError("No records loaded.")
        if record_index is None:
            rng = np.random.default_rng(self.explain.random_state)
            record_index = int(rng.integers(len(self.records)))
        if not 0 <= record_index < len(self.records):
            raise ValueError(
                f"record_index {record_index} is out of range for {len(self.records)} records."
            )
        return self.records[record_index]

    def explain_local(self, record_index: Optional[int] = None) -> Optional[LocalExplanation]:
        """
        LIME explanation for one record (a random one when no index is
        given). Returns None, after logging, when the record cannot be
        encoded. Raises ValueError for an index outside the dataset.
        """
        model = self._require_model()
        try:
            record = self._pick_record(record_index)
            self.explanation = self._surrogate().explain(model, record)
        except PreprocessingError as exc:
            LOGGER.warning(f"[Session] LIME Error: {exc.message}")
            self.explanation = None
        return self.explanation

    async def explain_local_async(self, record_index: Optional[int] = None) -> Optional[LocalExplanation]:
        model = self._require_model()
        try:
            record = self._pick_record(record_index)
            self.explanation = await self._surrogate().explain_async(model, record)
        except PreprocessingError as exc:
            LOGGER.warning(f"[Session] LIME Error: {exc.message}")
            self.explanation = None
        return self.explanation
