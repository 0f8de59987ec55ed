"""
Domain exceptions raised by the federation and explainability code.

Per-participant and per-explanation failures (PreprocessingError) are
contained by their caller; round-level failures (AggregationError and its
subclasses) abort the round and propagate to whoever called ``start``.
"""

from typing import Any, Dict, Optional


class FedExplainError(Exception):
    """Base exception for all fedexplain domain errors."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error": self.__class__.__name__,
            "message": self.message,
            "details": self.details,
        }


class PreprocessingError(FedExplainError, ValueError):
    """
    No usable feature matrix could be built (no valid rows, no features
    selected, or no target selected).
    """


class AggregationError(FedExplainError):
    """Aggregation could not produce a global WeightSet."""


class ShapeMismatchError(AggregationError):
    def __init__(self, index: int, expected: Any, got: Any):
        self.index = index
        super().__init__(
            f"Shape mismatch in contribution {index}: expected {expected}, got {got}",
            {"index": index, "expected": str(expected), "got": str(got)},
        )


class NoContributorsError(AggregationError):
    def __init__(self, message: str = "No participant contributed any samples this round"):
        super().__init__(message)


class RoundInProgressError(FedExplainError):
    """A round was started while another one is still active."""


class RoundCancelled(FedExplainError):
    """
    Raised inside a participant task when a stop request is observed at an
    epoch boundary. The orchestrator converts it into a cancelled outcome.
    """
