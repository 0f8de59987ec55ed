import logging
from typing import List, Sequence

import torch

from ..errors import NoContributorsError, ShapeMismatchError
from ..types import TrainingResult, WeightSet
from ..utils.metrics import sample_weighted_mean
from ..utils.serialization import clone_weights, weight_shapes

LOGGER = logging.getLogger(__name__)


def contributing_results(results: Sequence[TrainingResult]) -> List[TrainingResult]:
    """Results that carry at least one training sample."""
    return [r for r in results if r.sample_count > 0]


def average_weight_sets(
    weight_sets: Sequence[WeightSet],
    weights: Sequence[float],
) -> WeightSet:
    """
    Weighted average of a list of compatible WeightSets.
    Accumulates in float64 and casts back to each tensor's original dtype.
    """
    if len(weight_sets) == 1:
        return clone_weights(weight_sets[0])

    ref = weight_shapes(weight_sets[0])
    for idx, ws in enumerate(weight_sets):
        shapes = weight_shapes(ws)
        if shapes != ref:
            raise ShapeMismatchError(idx, ref, shapes)

    averaged: WeightSet = []
    for j, first in enumerate(weight_sets[0]):
        acc = torch.zeros(first.shape, dtype=torch.float64)
        for w, ws in zip(weights, weight_sets):
            acc += float(w) * ws[j].detach().to(torch.float64)
        averaged.append(acc.to(first.dtype))
    return averaged


def federated_average(results: Sequence[TrainingResult]) -> WeightSet:
    """
    Federated Averaging over participant results.

    Zero-sample results are ignored; each remaining WeightSet is weighted by
    its share of the total sample count. Raises NoContributorsError when
    nothing is left and ShapeMismatchError when shapes disagree.
    """
    contributors = contributing_results(results)
    if not contributors:
        raise NoContributorsError()

    total = float(sum(r.sample_count for r in contributors))
    shares = [r.sample_count / total for r in contributors]

    aggregated = average_weight_sets([r.weights for r in contributors], shares)
    LOGGER.debug(
        f"[federated_average] contributors={len(contributors)} total_samples={int(total)} "
        f"shares={[round(s, 4) for s in shares]}"
    )
    return aggregated


def aggregate_accuracy(results: Sequence[TrainingResult]) -> float:
    """Sample-weighted mean of participant accuracies over contributors."""
    contributors = contributing_results(results)
    return sample_weighted_mean(
        [r.accuracy for r in contributors],
        [r.sample_count for r in contributors],
    )
