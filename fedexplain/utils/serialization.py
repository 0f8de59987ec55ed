from typing import Dict, List, Optional, Sequence, Tuple
import torch

from ..types import WeightSet


def get_model_num_params(model: torch.nn.Module) -> int:
    """
    Count trainable parameters.
    """
    return sum(p.numel() for p in model.parameters() if p.requires_grad)


def set_state_dict(model: torch.nn.Module, state: Dict[str, torch.Tensor]) -> None:
    model.load_state_dict(state, strict=True)


def get_weights(model: torch.nn.Module) -> WeightSet:
    """Model parameters as an ordered WeightSet (independent copies)."""
    return [v.detach().cpu().clone() for v in model.state_dict().values()]


def set_weights(model: torch.nn.Module, weights: WeightSet) -> None:
    """Load an ordered WeightSet into a model; shapes must match exactly."""
    keys = list(model.state_dict().keys())
    if len(keys) != len(weights):
        raise ValueError(
            f"WeightSet has {len(weights)} tensors, model expects {len(keys)}"
        )
    state = {k: w.detach().clone() for k, w in zip(keys, weights)}
    set_state_dict(model, state)


def clone_weights(weights: Optional[WeightSet]) -> Optional[WeightSet]:
    if weights is None:
        return None
    return [w.detach().clone() for w in weights]


def weight_shapes(weights: Sequence[torch.Tensor]) -> List[Tuple[int, ...]]:
    return [tuple(w.shape) for w in weights]


def are_compatible(a: Sequence[torch.Tensor], b: Sequence[torch.Tensor]) -> bool:
    """Two WeightSets are compatible iff their shape sequences are equal."""
    return weight_shapes(a) == weight_shapes(b)


def estimate_update_size_bytes(old: WeightSet, new: WeightSet) -> int:
    """
    Approximate size in bytes of the difference between two WeightSets.
    Tensors present only in ``new`` count at full size.
    """
    total_bytes = 0
    for i, w in enumerate(new):
        if i >= len(old):
            total_bytes += w.nelement() * w.element_size()
        else:
            diff = w - old[i]
            total_bytes += diff.nelement() * diff.element_size()
    return total_bytes
