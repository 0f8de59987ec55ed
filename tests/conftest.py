import numpy as np
import pytest

from fedexplain.utils.config import FeatureConfig, Hyperparameters


def make_records(n: int, seed: int = 0):
    """Linearly separable toy records: label 'yes' iff x1 + x2 > 0."""
    rng = np.random.default_rng(seed)
    records = []
    for _ in range(n):
        x1, x2 = rng.normal(size=2)
        records.append({
            "x1": f"{x1:.4f}",
            "x2": f"{x2:.4f}",
            "noise": f"{rng.normal():.4f}",
            "label": "yes" if x1 + x2 > 0 else "no",
        })
    return records


@pytest.fixture
def records():
    return make_records(60)


@pytest.fixture
def feature_config():
    return FeatureConfig(feature_columns=["x1", "x2", "noise"], target_column="label")


@pytest.fixture
def hyper():
    return Hyperparameters(epochs=5, learning_rate=0.05, batch_size=16)
