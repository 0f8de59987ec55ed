import os
import csv
import json
import random
import asyncio
from typing import Dict, Any, List, Optional
import numpy as np
import torch
import matplotlib

matplotlib.use("Agg")
import matplotlib.pyplot as plt
import seaborn as sns

from ..data.loader import load_records
from ..data.preprocess import class_distribution_report, preprocess_records
from ..session import Session
from ..types import GlobalExplanation, RoundOutcome, RoundStatus
from ..utils.config import (
    explain_settings_from_dict,
    feature_config_from_dict,
    federation_settings_from_dict,
    hyperparameters_from_dict,
)
from ..utils.logging_utils import get_logger, hash_file
from ..utils.metrics import fairness_stats


def _fix_seeds(seed: int) -> None:
    random.seed(seed)
    np.random.seed(seed)
    torch.manual_seed(seed)
    torch.cuda.manual_seed_all(seed)


def run_full_experiment(
    config: Dict[str, Any],
    run_dirs: Dict[str, str],
    exp_name: str,
) -> Dict[str, Any]:
    logger = get_logger(__name__)

    seed = config["experiment"]["seed"]
    if seed is not None:
        _fix_seeds(seed)

    csv_path = config["data"]["csv_path"]
    logger.info(f"Loading dataset from {csv_path}...")
    records = load_records(csv_path)

    with Session.create(
        records,
        feature_config=feature_config_from_dict(config),
        hyperparameters=hyperparameters_from_dict(config),
        federation=federation_settings_from_dict(config),
        explain=explain_settings_from_dict(config),
        architecture=config["federation"]["architecture"],
    ) as session:
        feature_config = session.feature_config

        # class distribution of the full dataset, for the summaries dir
        data = preprocess_records(records, feature_config.feature_columns, feature_config.target_column)
        report_path = os.path.join(run_dirs["summaries_dir"], f"{exp_name}_class_distribution.txt")
        with open(report_path, "w", encoding="utf-8") as f_rep:
            f_rep.write(class_distribution_report(data))

        # per-round CSV log
        per_round_csv_path = os.path.join(
            run_dirs["logs_dir"], f"{exp_name}_per_round.csv"
        )
        csv_fieldnames = [
            "round",
            "status",
            "seed",
            "participant",
            "participant_size",
            "participant_accuracy",
            "participant_loss",
            "global_accuracy",
            "contributors",
            "total_update_bytes",
        ]
        with open(per_round_csv_path, "w", newline="", encoding="utf-8") as f_csv:
            writer = csv.DictWriter(f_csv, fieldnames=csv_fieldnames)
            writer.writeheader()

        def per_round_logger(outcome: RoundOutcome) -> None:
            with open(per_round_csv_path, "a", newline="", encoding="utf-8") as f_csv:
                writer = csv.DictWriter(f_csv, fieldnames=csv_fieldnames)
                for name in sorted(outcome.participant_metrics.keys()):
                    mets = outcome.participant_metrics[name]
                    writer.writerow({
                        "round": outcome.round,
                        "status": outcome.status.value,
                        "seed": seed,
                        "participant": name,
                        "participant_size": int(mets["sample_count"]),
                        "participant_accuracy": mets["accuracy"],
                        "participant_loss": mets["loss"],
                        "global_accuracy": outcome.accuracy,
                        "contributors": outcome.contributors,
                        "total_update_bytes": outcome.update_bytes,
                    })

        # federated rounds
        rounds = int(config["experiment"]["rounds"])
        outcomes = asyncio.run(session.orchestrator.run_rounds(rounds, per_round_logger=per_round_logger))
        completed = [o for o in outcomes if o.status is RoundStatus.COMPLETED]
        global_accuracy_per_round = [o.accuracy for o in completed]
        last_participant_metrics = completed[-1].participant_metrics if completed else {}
        acc_fairness = fairness_stats(last_participant_metrics, "accuracy")

        if completed:
            torch.save(
                session.orchestrator.state.weights,
                os.path.join(run_dirs["artifacts_dir"], "federated_global_weights.pt"),
            )

        # centralised model + explanations
        source = config["explain"].get("model_source", "centralized")
        if source == "federated" and completed:
            model = session.use_federated_model()
        else:
            model = session.train_model(seed=seed)
            torch.save(model.weights, os.path.join(run_dirs["artifacts_dir"], "centralized_weights.pt"))

        importance = session.explain_global()
        explanation = session.explain_local(config["explain"].get("record_index"))

        summary_obj = {
            "experiment_name": exp_name,
            "seed": seed,
            "dataset_sha256": hash_file(csv_path),
            "feature_config": feature_config.to_dict(),
            "architecture": session.architecture.value,
            "rounds_requested": rounds,
            "rounds_completed": len(completed),
            "global_accuracy_per_round": global_accuracy_per_round,
            "global_model": session.orchestrator.state.snapshot(),
            "participants": session.orchestrator.participants_snapshot(),
            "accuracy_fairness": acc_fairness,
            "model_source": source,
            "model_metrics": model.metrics,
            "label_map": {str(k): v for k, v in model.label_map.items()},
            "feature_importance": _importance_to_dict(importance),
            "local_explanation": None if explanation is None else {
                "instance_prediction": explanation.instance_prediction,
                "contributions": [
                    {"feature": c.feature_name, "coefficient": c.coefficient}
                    for c in explanation.contributions
                ],
            },
            "config_snapshot": config,
        }

        final_json_path = os.path.join(
            run_dirs["summaries_dir"],
            f"{exp_name}_final_summary.json",
        )
        with open(final_json_path, "w", encoding="utf-8") as f_json:
            json.dump(summary_obj, f_json, indent=2, default=str)

        final_txt_path = os.path.join(
            run_dirs["summaries_dir"],
            f"{exp_name}_final_summary.txt",
        )
        with open(final_txt_path, "w", encoding="utf-8") as f_txt:
            f_txt.write("FINAL EVALUATION SUMMARY\n")
            f_txt.write("========================\n\n")
            f_txt.write(f"Experiment: {exp_name}\n")
            f_txt.write(f"Seed:       {seed}\n")
            f_txt.write(f"Target:     {feature_config.target_column}\n")
            f_txt.write(f"Features:   {', '.join(feature_config.feature_columns)}\n\n")

            f_txt.write(f"Federated rounds completed: {len(completed)}/{rounds}\n")
            for i, acc in enumerate(global_accuracy_per_round, start=1):
                f_txt.write(f"  round {i}: global accuracy {acc:.4f}\n")

            f_txt.write(f"\nModel metrics ({source}):\n")
            for k, v in model.metrics.items():
                f_txt.write(f"    {k}: {v}\n")

            f_txt.write("\nPermutation feature importance:\n")
            if importance is not None:
                for e in importance.features:
                    f_txt.write(
                        f"  {e.feature_name}: raw={e.raw_importance:.4f} "
                        f"normalized={e.normalized_importance:.4f}\n"
                    )

            f_txt.write("\nLocal explanation (LIME):\n")
            if explanation is not None:
                f_txt.write(f"  prediction: {explanation.instance_prediction:.4f}\n")
                for c in explanation.top(5):
                    f_txt.write(f"  {c.feature_name}: {c.coefficient:.4f}\n")

            f_txt.write("\nAccuracy disparity:\n")
            f_txt.write(json.dumps(acc_fairness, indent=2))
            f_txt.write("\n")

        if config["evaluation"]["save_plots"]:
            if global_accuracy_per_round:
                _plot_global_accuracy(
                    global_accuracy_per_round,
                    out_path=os.path.join(
                        run_dirs["summaries_dir"],
                        f"{exp_name}_global_accuracy.png",
                    ),
                    title="Global Accuracy vs Round (FedAvg)",
                )

            if last_participant_metrics:
                _plot_participant_heatmap(
                    last_participant_metrics,
                    out_path=os.path.join(
                        run_dirs["summaries_dir"],
                        f"{exp_name}_participant_accuracy.png",
                    ),
                    title="Final Local Accuracy per Participant",
                )

            if importance is not None and importance.features:
                _plot_importance(
                    importance,
                    out_path=os.path.join(
                        run_dirs["summaries_dir"],
                        f"{exp_name}_feature_importance.png",
                    ),
                    title="Permutation Feature Importance",
                )

    return summary_obj


def _importance_to_dict(importance: Optional[GlobalExplanation]) -> Optional[Dict[str, Any]]:
    if importance is None:
        return None
    return {
        "model_accuracy": importance.model_accuracy,
        "features": [
            {
                "feature": e.feature_name,
                "raw": e.raw_importance,
                "normalized": e.normalized_importance,
            }
            for e in importance.features
        ],
    }


def _plot_global_accuracy(accuracies: List[float], out_path, title) -> None:
    plt.figure()
    plt.plot(range(1, len(accuracies) + 1), accuracies, marker="o")
    plt.xlabel("Round")
    plt.ylabel("Global Accuracy")
    plt.title(title)
    plt.tight_layout()
    plt.savefig(out_path)
    plt.close()


def _plot_participant_heatmap(participant_metrics, out_path, title) -> None:
    names = sorted(participant_metrics.keys())
    accs = [participant_metrics[n]["accuracy"] for n in names]
    mat = np.array(accs).reshape(-1, 1)

    plt.figure()
    sns.heatmap(mat, annot=True, fmt=".3f", yticklabels=names, xticklabels=["acc"])
    plt.title(title)
    plt.tight_layout()
    plt.savefig(out_path)
    plt.close()


def _plot_importance(importance: GlobalExplanation, out_path, title) -> None:
    names = [e.feature_name for e in importance.features]
    values = [e.normalized_importance for e in importance.features]

    plt.figure()
    sns.barplot(x=values, y=names, orient="h")
    plt.xlabel("Normalized Importance")
    plt.title(title)
    plt.tight_layout()
    plt.savefig(out_path)
    plt.close()
