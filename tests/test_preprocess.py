import numpy as np
import pytest

from fedexplain.data.loader import default_feature_config, infer_column_types, load_records
from fedexplain.data.preprocess import (
    build_label_map,
    class_distribution_report,
    encode_record,
    preprocess_records,
)
from fedexplain.errors import PreprocessingError


def test_preprocess_records_basic():
    records = [
        {"a": "1.5", "b": "2", "y": "cat"},
        {"a": "", "b": "3", "y": "dog"},
        {"a": "2", "b": "4", "y": "cat"},
    ]
    data = preprocess_records(records, ["a", "b"], "y")

    assert data.features.dtype == np.float32
    assert data.features.shape == (3, 2)
    # empty feature cell parses as 0
    assert data.features[1, 0] == 0.0
    assert data.label_map == {"cat": 0, "dog": 1}
    assert data.labels.tolist() == [0, 1, 0]


def test_preprocess_excludes_invalid_rows():
    records = [
        {"a": "1", "y": "x"},
        {"a": "not-a-number", "y": "x"},
        {"a": "2", "y": ""},
        {"a": "inf", "y": "z"},
        {"a": "3", "y": "z"},
    ]
    data = preprocess_records(records, ["a"], "y")
    assert data.num_samples == 2
    assert data.dropped_rows == 3
    assert data.features[:, 0].tolist() == [1.0, 3.0]


def test_preprocess_missing_feature_column_is_zero():
    data = preprocess_records([{"y": "a"}, {"y": "b"}], ["missing"], "y")
    assert data.features[:, 0].tolist() == [0.0, 0.0]


@pytest.mark.parametrize(
    "features,target",
    [([], "y"), (["a"], ""), (["a"], None)],
)
def test_preprocess_rejects_empty_selection(features, target):
    with pytest.raises(PreprocessingError):
        preprocess_records([{"a": "1", "y": "x"}], features, target)


def test_preprocess_no_valid_rows():
    with pytest.raises(PreprocessingError):
        preprocess_records([{"a": "abc", "y": "x"}], ["a"], "y")


def test_label_map_depends_on_subset_order():
    import pandas as pd

    assert build_label_map(pd.Series(["b", "a", "b"])) == {"b": 0, "a": 1}
    assert build_label_map(pd.Series(["a", "b"])) == {"a": 0, "b": 1}


def test_label_map_skips_blank_targets():
    import pandas as pd

    assert build_label_map(pd.Series(["", "b", None, "  ", " a "])) == {"b": 0, "a": 1}
    data = preprocess_records([{"a": "1", "y": ""}, {"a": "2", "y": "z"}], ["a"], "y")
    assert "" not in data.label_map
    assert data.dropped_rows == 1


def test_encode_record():
    x = encode_record({"a": " 2.5 ", "b": ""}, ["a", "b"])
    assert x.tolist() == [2.5, 0.0]
    with pytest.raises(PreprocessingError):
        encode_record({"a": "oops"}, ["a"])


def test_class_distribution_report():
    data = preprocess_records(
        [{"a": "1", "y": "p"}, {"a": "2", "y": "q"}, {"a": "3", "y": "p"}], ["a"], "y"
    )
    report = class_distribution_report(data)
    assert "Class Distribution Report" in report
    assert "class 0 (p): 2" in report


def test_load_records_and_infer_types(tmp_path):
    path = tmp_path / "data.csv"
    path.write_text(" age , income,group\n30,1000,a\n40,,b\n")
    records = load_records(str(path))

    assert records == [
        {"age": "30", "income": "1000", "group": "a"},
        {"age": "40", "income": "", "group": "b"},
    ]
    assert infer_column_types(records) == (["age", "income"], ["group"])

    cfg = default_feature_config(records)
    assert cfg.feature_columns == ["age", "income"]
    assert cfg.target_column == "group"


def test_load_records_missing_file(tmp_path):
    with pytest.raises(RuntimeError):
        load_records(str(tmp_path / "nope.csv"))


def test_default_feature_config_needs_both_kinds():
    with pytest.raises(ValueError):
        default_feature_config([{"a": "1", "b": "2"}])
