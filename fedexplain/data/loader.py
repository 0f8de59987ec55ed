import os
from typing import Any, Dict, List, Tuple

import pandas as pd

from ..utils.config import FeatureConfig
from .preprocess import coerce_numeric


Record = Dict[str, Any]


def load_records(csv_path: str) -> List[Record]:
    """
    Load a CSV into the ordered list of records the core consumes.

    Every value is read as a string; header keys are trimmed of whitespace
    and missing cells become empty strings. No other schema is assumed.
    """
    if not os.path.isfile(csv_path):
        raise RuntimeError(
            f"Expected dataset CSV at '{csv_path}', but it was not found."
        )
    df = pd.read_csv(csv_path, dtype=str, keep_default_na=False, skipinitialspace=True)
    df.columns = [str(c).strip() for c in df.columns]
    df = df.fillna("")
    return df.to_dict(orient="records")


def infer_column_types(records: List[Record]) -> Tuple[List[str], List[str]]:
    """
    Split columns into (numeric, categorical).

    A column is numeric when it has at least one non-empty value and every
    non-empty value parses as a float. Column order follows the first record.
    """
    if not records:
        return [], []
    df = pd.DataFrame.from_records(records)

    num_cols: List[str] = []
    cat_cols: List[str] = []
    for c in df.columns:
        col = df[c]
        non_empty = col[~(col.isna() | col.astype(str).str.strip().eq(""))]
        if len(non_empty) > 0 and coerce_numeric(non_empty).notna().all():
            num_cols.append(c)
        else:
            cat_cols.append(c)
    return num_cols, cat_cols


def default_feature_config(records: List[Record]) -> FeatureConfig:
    """
    All numeric columns as features, first categorical column as target.
    """
    num_cols, cat_cols = infer_column_types(records)
    if not num_cols or not cat_cols:
        raise ValueError(
            "Cannot derive a default feature configuration: need at least one "
            f"numeric and one categorical column (numeric={num_cols}, categorical={cat_cols})."
        )
    return FeatureConfig(feature_columns=num_cols, target_column=cat_cols[0])
