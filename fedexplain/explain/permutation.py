"""
Permutation Feature Importance (PFI).

Accuracy-based importance: permute one feature column at a time and measure
how much the model's accuracy drops.

    raw[j] = accuracy(original) - accuracy(feature j permuted)

Higher values indicate more important features. Negative values (the model
looks better with the feature scrambled) are kept as they are.
"""

import logging
from typing import Any, Callable, Dict, Generator, List, Optional, Sequence, Tuple

import numpy as np

from ..data.preprocess import preprocess_records
from ..errors import PreprocessingError
from ..models.model_zoo import TrainedModel
from ..models.trainer import predict_proba
from ..types import FeatureImportanceEntry, GlobalExplanation
from ..utils.iteration import arun_to_completion, run_to_completion

LOGGER = logging.getLogger(__name__)


def normalize_importances(
    feature_names: Sequence[str],
    raw: np.ndarray,
) -> List[FeatureImportanceEntry]:
    """
    Scale raw importances by the largest one and sort descending.

    When no raw importance is positive every normalized value is 0.
    Negative values are bounded below at -1.
    """
    raw = np.asarray(raw, dtype=float)
    max_raw = float(raw.max()) if raw.size else 0.0
    if np.isfinite(max_raw) and max_raw > 0.0:
        normalized = np.clip(raw / max_raw, -1.0, 1.0)
    else:
        normalized = np.zeros_like(raw)

    entries = [
        FeatureImportanceEntry(
            feature_name=name,
            raw_importance=float(r),
            normalized_importance=float(n),
        )
        for name, r, n in zip(feature_names, raw, normalized)
    ]
    return sorted(entries, key=lambda e: e.normalized_importance, reverse=True)


class PermutationImportance:
    """
    Global permutation importance for a trained binary classifier.
    """

    def __init__(
        self,
        n_permutations: int = 1,
        random_state: Optional[int] = 42,
    ):
        self.n_permutations = n_permutations
        self.random_state = random_state

    def _compute_accuracy(
        self,
        model_fn: Callable[[np.ndarray], np.ndarray],
        X: np.ndarray,
        y: np.ndarray,
    ) -> float:
        """Binary accuracy at threshold 0.5."""
        probs = np.asarray(model_fn(X)).reshape(-1)
        preds = (probs >= 0.5).astype(np.int64)
        return float(np.mean(preds == y))

    def iter_compute(
        self,
        model_fn: Callable[[np.ndarray], np.ndarray],
        X: np.ndarray,
        y: np.ndarray,
    ) -> Generator[Tuple[int, float], None, Tuple[float, np.ndarray]]:
        """
        Yields (feature_index, raw_importance) after each feature; returns
        (baseline_accuracy, raw importances).
        """
        X = np.asarray(X, dtype=np.float32)
        y = np.asarray(y, dtype=np.int64)
        n_features = X.shape[1]
        rng = np.random.default_rng(self.random_state)

        baseline = self._compute_accuracy(model_fn, X, y)
        pfi_values = np.zeros(n_features)

        for j in range(n_features):
            permuted_accs = []
            for _ in range(self.n_permutations):
                X_permuted = X.copy()
                X_permuted[:, j] = rng.permutation(X_permuted[:, j])
                permuted_accs.append(self._compute_accuracy(model_fn, X_permuted, y))

            pfi_values[j] = baseline - np.mean(permuted_accs)
            yield j, float(pfi_values[j])

        return baseline, pfi_values

    def compute(
        self,
        model_fn: Callable[[np.ndarray], np.ndarray],
        X: np.ndarray,
        y: np.ndarray,
    ) -> Tuple[float, np.ndarray]:
        return run_to_completion(self.iter_compute(model_fn, X, y))

    def iter_explain(
        self,
        model: TrainedModel,
        records: Sequence[Dict[str, Any]],
    ) -> Generator[Any, None, Optional[GlobalExplanation]]:
        LOGGER.info("[PermutationImportance] Starting permutation feature importance analysis...")
        try:
            data = preprocess_records(
                records, model.config.feature_columns, model.config.target_column
            )
        except PreprocessingError as exc:
            LOGGER.warning(
                f"[PermutationImportance] Failed to preprocess data for importance analysis: {exc.message}"
            )
            return None

        if model.label_map and data.label_map != model.label_map:
            LOGGER.warning(
                "[PermutationImportance] Label map differs from the one the model was trained with; "
                "accuracies may not be comparable."
            )

        net = model.build()
        steps = self.iter_compute(lambda X: predict_proba(net, X), data.features, data.labels)
        while True:
            try:
                j, value = next(steps)
            except StopIteration as stop:
                baseline, raw = stop.value
                break
            LOGGER.info(
                f"[PermutationImportance] Feature '{data.feature_names[j]}' permutation importance: {value:.4f}"
            )
            yield j

        LOGGER.info(f"[PermutationImportance] Baseline accuracy: {baseline * 100:.2f}%")
        entries = normalize_importances(data.feature_names, raw)
        LOGGER.info("[PermutationImportance] Feature importance analysis complete.")
        return GlobalExplanation(model_accuracy=baseline, features=entries)

    def explain(
        self,
        model: TrainedModel,
        records: Sequence[Dict[str, Any]],
    ) -> Optional[GlobalExplanation]:
        """
        Importance ranking for ``model`` on ``records``; None when the data
        cannot be preprocessed with the model's configuration.
        """
        return run_to_completion(self.iter_explain(model, records))

    async def explain_async(
        self,
        model: TrainedModel,
        records: Sequence[Dict[str, Any]],
    ) -> Optional[GlobalExplanation]:
        return await arun_to_completion(self.iter_explain(model, records))
