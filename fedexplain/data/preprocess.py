from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence
from collections import Counter
import logging

import numpy as np
import pandas as pd

from ..errors import PreprocessingError


LOGGER = logging.getLogger(__name__)


@dataclass
class PreprocessedData:
    features: np.ndarray          # [N, F] float32
    labels: np.ndarray            # [N] int64
    feature_names: List[str]
    target_column: str
    label_map: Dict[Any, int]
    dropped_rows: int = 0

    @property
    def num_samples(self) -> int:
        return int(self.features.shape[0])

    @property
    def num_features(self) -> int:
        return int(self.features.shape[1])


def _strip(v: Any) -> Any:
    return v.strip() if isinstance(v, str) else v


def _is_blank(series: pd.Series) -> pd.Series:
    return series.isna() | series.map(lambda v: isinstance(v, str) and v.strip() == "")


def coerce_numeric(series: pd.Series) -> pd.Series:
    """
    Parse a raw column as float.
    Missing or empty cells become 0.0; anything else that does not parse
    becomes NaN so the caller can drop the row.
    """
    s = series.astype(object).map(_strip)
    blank = _is_blank(s)
    s = s.where(~blank, 0.0)
    return pd.to_numeric(s, errors="coerce").astype(float)


def build_label_map(target: pd.Series) -> Dict[Any, int]:
    """
    Dense label indices for the distinct non-empty target values, in order
    of first appearance within this subset.

    Maps built on different subsets can give the same category different
    indices; nothing here reconciles them.

    Blank targets (missing, or empty after stripping) get no label at all:
    their rows are dropped as unresolved by ``preprocess_records``. An empty
    string is never its own class.
    """
    vals = target[~_is_blank(target)].map(_strip)
    return {v: i for i, v in enumerate(pd.unique(vals))}


def preprocess_records(
    records: Sequence[Dict[str, Any]],
    feature_columns: Sequence[str],
    target_column: Optional[str],
) -> PreprocessedData:
    """
    Encode raw records into a numeric feature matrix and integer labels.

    Rows with an empty/unresolved target or any non-numeric (or non-finite)
    feature are excluded. Raises PreprocessingError when no features or no
    target are selected, or when no valid rows remain.
    """
    if not feature_columns:
        raise PreprocessingError("No feature columns selected.")
    if not target_column:
        raise PreprocessingError("No target column selected.")
    if not records:
        raise PreprocessingError("No records to preprocess.")

    df = pd.DataFrame.from_records(list(records))
    n_rows = len(df)

    if target_column in df.columns:
        target = df[target_column].astype(object)
    else:
        target = pd.Series([None] * n_rows, index=df.index, dtype=object)
    label_map = build_label_map(target)

    # blanks never enter the label map, so they resolve to -1
    labels = target.map(_strip).map(lambda v: label_map.get(v, -1))

    feat_blocks = []
    for col in feature_columns:
        if col in df.columns:
            feat_blocks.append(coerce_numeric(df[col]).to_numpy(dtype=float))
        else:
            feat_blocks.append(np.zeros(n_rows, dtype=float))
    X = np.stack(feat_blocks, axis=1) if feat_blocks else np.zeros((n_rows, 0))
    y = labels.to_numpy(dtype=np.int64)

    valid = (y >= 0) & np.isfinite(X).all(axis=1)
    n_valid = int(valid.sum())
    if n_valid == 0:
        raise PreprocessingError(
            "No valid rows remain after preprocessing.",
            {"rows": n_rows, "features": list(feature_columns), "target": target_column},
        )

    dropped = n_rows - n_valid
    if dropped:
        LOGGER.debug(f"[preprocess_records] dropped {dropped}/{n_rows} invalid rows")

    return PreprocessedData(
        features=X[valid].astype(np.float32),
        labels=y[valid],
        feature_names=list(feature_columns),
        target_column=target_column,
        label_map=label_map,
        dropped_rows=dropped,
    )


def encode_record(record: Dict[str, Any], feature_columns: Sequence[str]) -> np.ndarray:
    """
    Encode one record as a float32 feature vector using the same parsing
    rules as preprocess_records.
    """
    if not feature_columns:
        raise PreprocessingError("No feature columns selected.")
    raw = pd.Series([record.get(c) for c in feature_columns], dtype=object)
    x = coerce_numeric(raw).to_numpy(dtype=float)
    if not np.isfinite(x).all():
        bad = [c for c, v in zip(feature_columns, x) if not np.isfinite(v)]
        raise PreprocessingError(f"Record has non-numeric feature values: {bad}")
    return x.astype(np.float32)


def class_distribution_report(data: PreprocessedData) -> str:
    counts = Counter(data.labels.tolist())
    inverse = {i: v for v, i in data.label_map.items()}
    total = sum(counts.values())
    parts = []
    for k in sorted(counts.keys()):
        parts.append(f"class {k} ({inverse.get(k)}): {counts[k]} ({counts[k]/total:.3f})")
    report_lines = [
        "Class Distribution Report",
        f"total={total} dropped={data.dropped_rows} | " + ", ".join(parts),
    ]
    return "\n".join(report_lines)
