from typing import Dict, List
import numpy as np
from sklearn.metrics import (
    accuracy_score,
    precision_score,
    recall_score,
    f1_score,
)


def binary_metrics(
    y_true: np.ndarray, y_pred: np.ndarray
) -> Dict[str, float]:
    """
    Compute standard binary classification metrics.
    Assumes y_pred is in {0,1}. Labels outside {0,1} only ever count
    as misses, which matches the single-sigmoid models trained here.
    """
    if len(y_true) == 0:
        return {"accuracy": 0.0, "precision": 0.0, "recall": 0.0, "f1": 0.0}

    acc = accuracy_score(y_true, y_pred)
    y_true_bin = (np.asarray(y_true) == 1).astype(int)
    prec = precision_score(y_true_bin, y_pred, zero_division=0)
    rec = recall_score(y_true_bin, y_pred, zero_division=0)
    f1 = f1_score(y_true_bin, y_pred, zero_division=0)

    return {
        "accuracy": float(acc),
        "precision": float(prec),
        "recall": float(rec),
        "f1": float(f1),
    }


def sample_weighted_mean(values: List[float], counts: List[int]) -> float:
    """Mean of ``values`` weighted by ``counts``; 0.0 when nothing is counted."""
    total = float(sum(counts))
    if total <= 0.0:
        return 0.0
    return float(sum(v * n for v, n in zip(values, counts)) / total)


def fairness_stats(
    participant_metrics: Dict[str, Dict[str, float]],
    metric_key: str = "accuracy",
) -> Dict[str, float]:
    """
    Compute fairness stats across participants for a chosen metric.
    """
    vals: List[float] = []
    for _pid, m in participant_metrics.items():
        if metric_key in m:
            vals.append(m[metric_key])
    if not vals:
        return {"disparity": 0.0, "std": 0.0}
    arr = np.array(vals, dtype=float)
    return {
        "disparity": float(arr.max() - arr.min()),
        "std": float(arr.std(ddof=0)),
    }
