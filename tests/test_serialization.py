import pytest
import torch

from fedexplain.models.model_zoo import ArchitectureKind, build_model
from fedexplain.utils.serialization import (
    are_compatible,
    clone_weights,
    estimate_update_size_bytes,
    get_model_num_params,
    get_weights,
    set_weights,
)


def test_serialization_utils():
    model_a = build_model(ArchitectureKind.LOGISTIC, input_dim=4)
    model_b = build_model(ArchitectureKind.LOGISTIC, input_dim=4)

    w_a = get_weights(model_a)
    n_params = get_model_num_params(model_a)
    assert n_params == 4 * 16 + 16 + 16 * 8 + 8 + 8 + 1

    # dense float32 update: every parameter is sent
    assert estimate_update_size_bytes(w_a, get_weights(model_b)) == n_params * 4
    assert are_compatible(w_a, get_weights(model_b))
    assert not are_compatible(w_a, get_weights(build_model(ArchitectureKind.LOGISTIC, 5)))
    assert not are_compatible(w_a, get_weights(build_model(ArchitectureKind.DEEP, 4)))


def test_clone_weights_is_independent():
    model = build_model(ArchitectureKind.LOGISTIC, input_dim=3)
    original = get_weights(model)
    copy = clone_weights(original)

    with torch.no_grad():
        copy[0].add_(1.0)
    assert not torch.equal(copy[0], original[0])
    assert clone_weights(None) is None


def test_set_weights_round_trip_and_errors():
    src = build_model(ArchitectureKind.DEEP, input_dim=3)
    dst = build_model(ArchitectureKind.DEEP, input_dim=3)
    set_weights(dst, get_weights(src))
    for a, b in zip(get_weights(src), get_weights(dst)):
        assert torch.equal(a, b)

    with pytest.raises(ValueError):
        set_weights(dst, get_weights(src)[:-1])
    with pytest.raises(RuntimeError):
        set_weights(dst, get_weights(build_model(ArchitectureKind.DEEP, input_dim=7)))
