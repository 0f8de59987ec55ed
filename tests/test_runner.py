import csv
import json
import os

from fedexplain.experiments.runner import run_full_experiment
from fedexplain.utils.logging_utils import create_run_dirs, save_run_metadata

from conftest import make_records


def _write_csv(path, records):
    with open(path, "w", newline="", encoding="utf-8") as f:
        writer = csv.DictWriter(f, fieldnames=list(records[0].keys()))
        writer.writeheader()
        writer.writerows(records)


def test_run_full_experiment(tmp_path):
    csv_path = tmp_path / "toy.csv"
    _write_csv(csv_path, make_records(45, seed=2))

    config = {
        "experiment": {"name": "toy", "seed": 0, "rounds": 2},
        "data": {"csv_path": str(csv_path), "feature_columns": [], "target_column": ""},
        "federation": {"local_epochs": 1, "architecture": "logistic"},
        "training": {"epochs": 3, "learning_rate": 0.05, "batch_size": 16},
        "explain": {"num_samples": 20, "surrogate_epochs": 2, "record_index": 0},
        "output": {"results_dir": str(tmp_path / "results")},
        "logging": {"log_level": "INFO"},
        "evaluation": {"save_plots": True},
    }
    run_dirs = create_run_dirs(config["output"]["results_dir"], "toy_run")
    save_run_metadata(run_dirs, config, "toy_run")

    summary = run_full_experiment(config, run_dirs, "toy_run")

    assert summary["rounds_completed"] == 2
    assert summary["global_model"]["round"] == 2
    assert len(summary["global_accuracy_per_round"]) == 2
    assert summary["feature_config"]["target_column"] == "label"
    assert len(summary["feature_importance"]["features"]) == 3
    assert len(summary["local_explanation"]["contributions"]) == 3

    with open(os.path.join(run_dirs["logs_dir"], "toy_run_per_round.csv"), encoding="utf-8") as f:
        rows = list(csv.DictReader(f))
    assert len(rows) == 6
    assert {r["participant"] for r in rows} == {"Client_Alpha", "Client_Beta", "Client_Gamma"}

    with open(os.path.join(run_dirs["summaries_dir"], "toy_run_final_summary.json"), encoding="utf-8") as f:
        saved = json.load(f)
    assert saved["dataset_sha256"] == summary["dataset_sha256"]

    for name in ("global_accuracy", "participant_accuracy", "feature_importance"):
        assert os.path.isfile(os.path.join(run_dirs["summaries_dir"], f"toy_run_{name}.png"))
    assert os.path.isfile(os.path.join(run_dirs["artifacts_dir"], "run_config.json"))
