import pytest
import torch

from fedexplain.errors import NoContributorsError, ShapeMismatchError
from fedexplain.fl.server import aggregate_accuracy, federated_average
from fedexplain.types import TrainingResult


def _result(pid, value, n, acc=0.5, shape=(2, 2)):
    return TrainingResult(
        participant_id=pid,
        weights=[torch.full(shape, float(value)), torch.full((2,), float(value))],
        accuracy=acc,
        sample_count=n,
    )


def test_fedavg_weighted_by_sample_count():
    results = [_result(0, 1.0, 10), _result(1, 4.0, 30)]
    agg = federated_average(results)

    # 1 * 10/40 + 4 * 30/40
    assert torch.allclose(agg[0], torch.full((2, 2), 3.25))
    assert torch.allclose(agg[1], torch.full((2,), 3.25))
    assert agg[0].dtype == torch.float32


def test_fedavg_equal_sizes_is_plain_mean():
    results = [_result(i, v, 33) for i, v in enumerate([1.0, 2.0, 6.0])]
    agg = federated_average(results)
    assert torch.allclose(agg[0], torch.full((2, 2), 3.0))


def test_fedavg_single_contributor_is_identity():
    r = _result(0, 2.5, 7)
    agg = federated_average([r])
    assert torch.equal(agg[0], r.weights[0])
    # an independent copy
    agg[0].add_(1.0)
    assert r.weights[0][0, 0].item() == 2.5


def test_fedavg_ignores_zero_sample_results():
    empty = TrainingResult(participant_id=2, weights=[], accuracy=0.0, sample_count=0)
    agg = federated_average([_result(0, 1.0, 5), _result(1, 3.0, 5), empty])
    assert torch.allclose(agg[0], torch.full((2, 2), 2.0))


def test_fedavg_shape_mismatch():
    with pytest.raises(ShapeMismatchError) as exc_info:
        federated_average([_result(0, 1.0, 5), _result(1, 1.0, 5, shape=(3, 2))])
    assert exc_info.value.index == 1
    assert exc_info.value.to_dict()["error"] == "ShapeMismatchError"


def test_fedavg_no_contributors():
    empty = TrainingResult(participant_id=0, weights=[], accuracy=0.0, sample_count=0)
    with pytest.raises(NoContributorsError):
        federated_average([empty])
    with pytest.raises(NoContributorsError):
        federated_average([])


def test_aggregate_accuracy():
    results = [_result(0, 0, 33, acc=0.8), _result(1, 0, 33, acc=0.6), _result(2, 0, 33, acc=0.7)]
    assert aggregate_accuracy(results) == pytest.approx(0.7)

    weighted = [_result(0, 0, 10, acc=1.0), _result(1, 0, 30, acc=0.0)]
    assert aggregate_accuracy(weighted) == pytest.approx(0.25)
    assert aggregate_accuracy([]) == 0.0
