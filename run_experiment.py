import argparse
import os
import time
from typing import Any, Dict

from fedexplain.utils.config import load_config, override_config
from fedexplain.utils.logging_utils import (
    init_logging,
    create_run_dirs,
    get_logger,
    save_run_metadata,
)
from fedexplain.experiments.runner import run_full_experiment


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Simulate federated rounds on a tabular CSV and explain the trained model."
    )

    parser.add_argument(
        "--config",
        type=str,
        default="configs/default.yaml",
        help="Path to YAML config file.",
    )
    parser.add_argument(
        "--csv",
        type=str,
        default=None,
        help="Override: path to the dataset CSV.",
    )
    parser.add_argument(
        "--target",
        type=str,
        default=None,
        help="Override: target (label) column.",
    )
    parser.add_argument(
        "--features",
        type=str,
        default=None,
        help="Override: comma-separated numeric feature columns.",
    )
    parser.add_argument(
        "--architecture",
        type=str,
        default=None,
        help="Override: model architecture ('logistic' or 'deep').",
    )
    parser.add_argument(
        "--rounds",
        type=int,
        default=None,
        help="Override: number of federated rounds.",
    )
    parser.add_argument(
        "--local-epochs",
        type=int,
        default=None,
        dest="local_epochs",
        help="Override: local epochs per round.",
    )
    parser.add_argument(
        "--epochs",
        type=int,
        default=None,
        help="Override: epochs for the centralised model.",
    )
    parser.add_argument(
        "--batch-size",
        type=int,
        default=None,
        dest="batch_size",
        help="Override: training batch size.",
    )
    parser.add_argument(
        "--lr",
        type=float,
        default=None,
        help="Override: learning rate.",
    )
    parser.add_argument(
        "--seed",
        type=int,
        default=None,
        help="Override: random seed.",
    )

    return parser.parse_args()


def main() -> None:
    args = parse_args()

    # 1. load base config
    config = load_config(args.config)

    # 2. apply overrides
    cli_overrides: Dict[str, Any] = {}
    if args.csv is not None:
        cli_overrides["data.csv_path"] = args.csv
    if args.target is not None:
        cli_overrides["data.target_column"] = args.target
    if args.features is not None:
        cli_overrides["data.feature_columns"] = [
            c.strip() for c in args.features.split(",") if c.strip()
        ]
    if args.architecture is not None:
        cli_overrides["federation.architecture"] = args.architecture
    if args.rounds is not None:
        cli_overrides["experiment.rounds"] = args.rounds
    if args.local_epochs is not None:
        cli_overrides["federation.local_epochs"] = args.local_epochs
    if args.epochs is not None:
        cli_overrides["training.epochs"] = args.epochs
    if args.batch_size is not None:
        cli_overrides["training.batch_size"] = args.batch_size
    if args.lr is not None:
        cli_overrides["training.learning_rate"] = args.lr
    if args.seed is not None:
        cli_overrides["experiment.seed"] = args.seed

    config = override_config(config, cli_overrides)

    # 3. prepare output dirs
    ts = time.strftime("%Y%m%d_%H%M%S")
    exp_name = f"{config['experiment']['name']}_{config['federation']['architecture']}_seed{config['experiment']['seed']}_{ts}"

    run_dirs = create_run_dirs(
        base_results_dir=config["output"]["results_dir"],
        exp_name=exp_name,
    )

    # 4. init logger
    init_logging(
        log_level=config["logging"]["log_level"],
        log_file=os.path.join(
            run_dirs["logs_dir"],
            f"{ts}_{config['federation']['architecture']}_{config['experiment']['seed']}.log",
        ),
    )
    logger = get_logger(__name__)
    logger.info("Starting federated explainability run.")
    logger.info("Resolved configuration:")
    logger.info(config)

    # 5. write run metadata for reproducibility
    save_run_metadata(
        run_dirs=run_dirs,
        config=config,
        exp_name=exp_name,
    )

    # 6. run experiment orchestration
    run_full_experiment(
        config=config,
        run_dirs=run_dirs,
        exp_name=exp_name,
    )

    logger.info("Experiment complete.")


if __name__ == "__main__":
    main()
