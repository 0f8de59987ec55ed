import logging
import os
import json
import hashlib
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List


_LOGGER_NAME = "fedexplain"
_FORMAT = "[%(asctime)s] [%(levelname)s] %(message)s"
_DATEFMT = "%Y-%m-%d %H:%M:%S"


def init_logging(log_level: str, log_file: str) -> None:
    os.makedirs(os.path.dirname(log_file), exist_ok=True)

    logger = logging.getLogger(_LOGGER_NAME)
    logger.setLevel(getattr(logging, log_level.upper(), logging.INFO))

    ch = logging.StreamHandler()
    ch.setLevel(getattr(logging, log_level.upper(), logging.INFO))
    ch.setFormatter(logging.Formatter(_FORMAT, _DATEFMT))

    fh = logging.FileHandler(log_file)
    fh.setLevel(getattr(logging, log_level.upper(), logging.INFO))
    fh.setFormatter(logging.Formatter(_FORMAT, _DATEFMT))

    # keep any in-memory event log handlers attached by live sessions
    for h in list(logger.handlers):
        if not isinstance(h, EventLogHandler):
            logger.removeHandler(h)

    logger.addHandler(ch)
    logger.addHandler(fh)


def get_logger(name: str) -> logging.Logger:
    if name == _LOGGER_NAME or name.startswith(_LOGGER_NAME + "."):
        return logging.getLogger(name)
    return logging.getLogger(_LOGGER_NAME).getChild(name)


@dataclass(frozen=True)
class LogEntry:
    timestamp: datetime
    level: str
    message: str

    def to_dict(self) -> Dict[str, str]:
        return {
            "timestamp": self.timestamp.strftime("%H:%M:%S"),
            "level": self.level,
            "message": self.message,
        }


class EventLogHandler(logging.Handler):
    """
    Collects log records as timestamped LogEntry objects.

    This is the log console the UI renders: attach it to the package logger
    and read ``entries`` back. Only the message text is kept, not the
    formatted line.
    """

    def __init__(self, level: int = logging.INFO):
        super().__init__(level)
        self.entries: List[LogEntry] = []

    def emit(self, record: logging.LogRecord) -> None:
        try:
            self.entries.append(
                LogEntry(
                    timestamp=datetime.fromtimestamp(record.created),
                    level=record.levelname,
                    message=record.getMessage(),
                )
            )
        except Exception:
            self.handleError(record)

    def clear(self) -> None:
        self.entries.clear()

    def attach(self) -> "EventLogHandler":
        logger = logging.getLogger(_LOGGER_NAME)
        if logger.level == logging.NOTSET or logger.level > self.level:
            logger.setLevel(self.level)
        logger.addHandler(self)
        return self

    def detach(self) -> None:
        logging.getLogger(_LOGGER_NAME).removeHandler(self)


def create_run_dirs(
    base_results_dir: str,
    exp_name: str,
) -> Dict[str, str]:
    run_root = os.path.join(base_results_dir, exp_name)
    run_logs = os.path.join(run_root, "logs")
    run_summaries = os.path.join(run_root, "summaries")
    run_artifacts = os.path.join(run_root, "artifacts")

    os.makedirs(run_root, exist_ok=True)
    os.makedirs(run_logs, exist_ok=True)
    os.makedirs(run_summaries, exist_ok=True)
    os.makedirs(run_artifacts, exist_ok=True)

    return {
        "root_dir": run_root,
        "logs_dir": run_logs,
        "summaries_dir": run_summaries,
        "artifacts_dir": run_artifacts,
    }


def save_run_metadata(
    run_dirs: Dict[str, str],
    config: Dict[str, Any],
    exp_name: str,
) -> None:
    meta_path = os.path.join(run_dirs["artifacts_dir"], "run_config.json")
    with open(meta_path, "w", encoding="utf-8") as f:
        json.dump(config, f, indent=2, default=str)

    repro_path = os.path.join(run_dirs["artifacts_dir"], "README_reproducibility.txt")
    with open(repro_path, "w", encoding="utf-8") as f:
        f.write(
            "Reproducibility Notes\n"
            "=====================\n\n"
            f"Experiment name: {exp_name}\n\n"
            "To reproduce this run:\n"
            "1. Use the same input CSV (its sha256 is in the final summary)\n"
            "2. Use the saved config snapshot run_config.json\n"
            "3. Run `python run_experiment.py --config <copied_config.yaml>`\n"
            "4. Ensure same seeds and same PyTorch / numpy versions.\n"
        )


def hash_file(path: str) -> str:
    h = hashlib.sha256()
    with open(path, "rb") as f:
        for chunk in iter(lambda: f.read(8192), b""):
            h.update(chunk)
    return h.hexdigest()
