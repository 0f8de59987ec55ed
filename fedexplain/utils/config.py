import yaml
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional


DEFAULT_PARTICIPANT_NAMES = ["Client_Alpha", "Client_Beta", "Client_Gamma"]


def load_config(path: str) -> Dict[str, Any]:
    """
    Load YAML config into a nested dict.
    """
    with open(path, "r", encoding="utf-8") as f:
        cfg = yaml.safe_load(f)
    return cfg or {}


def deep_set(d: Dict[str, Any], key_path: str, value: Any) -> None:
    """
    Set nested dict item using dotted path.
    Example: deep_set(cfg, "training.learning_rate", 0.01)
    """
    parts = key_path.split(".")
    cur = d
    for p in parts[:-1]:
        if p not in cur or not isinstance(cur[p], dict):
            cur[p] = {}
        cur = cur[p]
    cur[parts[-1]] = value


def override_config(
    base_cfg: Dict[str, Any], overrides: Dict[str, Any]
) -> Dict[str, Any]:
    """
    Override nested config keys with CLI-provided values.
    """
    cfg = {**base_cfg}
    for k, v in overrides.items():
        deep_set(cfg, k, v)
    return cfg


@dataclass(frozen=True)
class FeatureConfig:
    """Selected numeric feature columns and the categorical target column."""

    feature_columns: List[str]
    target_column: str

    def __post_init__(self) -> None:
        object.__setattr__(self, "feature_columns", list(self.feature_columns))

    @property
    def num_features(self) -> int:
        return len(self.feature_columns)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "feature_columns": list(self.feature_columns),
            "target_column": self.target_column,
        }


@dataclass(frozen=True)
class Hyperparameters:
    epochs: int = 20
    learning_rate: float = 0.01
    batch_size: int = 32

    def __post_init__(self) -> None:
        if int(self.epochs) <= 0:
            raise ValueError("Epochs must be > 0.")
        if float(self.learning_rate) <= 0.0:
            raise ValueError("Learning rate must be > 0.")
        if int(self.batch_size) <= 0:
            raise ValueError("Batch size must be > 0.")


@dataclass(frozen=True)
class FederationSettings:
    participant_names: List[str] = field(
        default_factory=lambda: list(DEFAULT_PARTICIPANT_NAMES)
    )
    local_epochs: int = 5
    architecture: str = "logistic"
    seed: Optional[int] = None

    def __post_init__(self) -> None:
        if int(self.local_epochs) <= 0:
            raise ValueError("Local epochs must be > 0.")


@dataclass(frozen=True)
class ExplainSettings:
    num_samples: int = 100
    noise_std: float = 0.1
    kernel_width: float = 0.25
    surrogate_epochs: int = 20
    surrogate_learning_rate: float = 0.01
    surrogate_batch_size: int = 32
    n_permutations: int = 1
    random_state: Optional[int] = 42

    def __post_init__(self) -> None:
        if int(self.num_samples) <= 0:
            raise ValueError("LIME num_samples must be > 0.")
        if float(self.kernel_width) <= 0.0:
            raise ValueError("Kernel width must be > 0.")
        if int(self.n_permutations) <= 0:
            raise ValueError("n_permutations must be > 0.")


def feature_config_from_dict(cfg: Dict[str, Any]) -> Optional[FeatureConfig]:
    """
    Build a FeatureConfig from the ``data`` section. Returns None when the
    section leaves features or target unset, so the caller can infer them
    from the dataset instead.
    """
    data_cfg = cfg.get("data", {}) or {}
    features = data_cfg.get("feature_columns") or []
    target = data_cfg.get("target_column") or ""
    if not features or not target:
        return None
    return FeatureConfig(feature_columns=features, target_column=target)


def hyperparameters_from_dict(cfg: Dict[str, Any]) -> Hyperparameters:
    train_cfg = cfg.get("training", {}) or {}
    return Hyperparameters(
        epochs=int(train_cfg.get("epochs", 20)),
        learning_rate=float(train_cfg.get("learning_rate", 0.01)),
        batch_size=int(train_cfg.get("batch_size", 32)),
    )


def participant_names_for(count: int) -> List[str]:
    """
    Fixed names for ``count`` participants: the default names first, then
    ``Client_<n>`` for any beyond them.
    """
    if count <= 0:
        return []
    names = list(DEFAULT_PARTICIPANT_NAMES[:count])
    for i in range(len(names), count):
        names.append(f"Client_{i + 1}")
    return names


def federation_settings_from_dict(cfg: Dict[str, Any]) -> FederationSettings:
    fed_cfg = cfg.get("federation", {}) or {}
    names = fed_cfg.get("participant_names")
    if not names:
        names = participant_names_for(int(fed_cfg.get("participant_count", len(DEFAULT_PARTICIPANT_NAMES))))
    seed = cfg.get("experiment", {}).get("seed")
    return FederationSettings(
        participant_names=list(names),
        local_epochs=int(fed_cfg.get("local_epochs", 5)),
        architecture=str(fed_cfg.get("architecture", "logistic")),
        seed=seed,
    )


def explain_settings_from_dict(cfg: Dict[str, Any]) -> ExplainSettings:
    exp_cfg = cfg.get("explain", {}) or {}
    return ExplainSettings(
        num_samples=int(exp_cfg.get("num_samples", 100)),
        noise_std=float(exp_cfg.get("noise_std", 0.1)),
        kernel_width=float(exp_cfg.get("kernel_width", 0.25)),
        surrogate_epochs=int(exp_cfg.get("surrogate_epochs", 20)),
        surrogate_learning_rate=float(exp_cfg.get("surrogate_learning_rate", 0.01)),
        surrogate_batch_size=int(exp_cfg.get("surrogate_batch_size", 32)),
        n_permutations=int(exp_cfg.get("n_permutations", 1)),
        random_state=exp_cfg.get("random_state", 42),
    )
