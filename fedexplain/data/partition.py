import logging
from typing import Any, Dict, List, Sequence

from ..types import Participant
from ..utils.config import DEFAULT_PARTICIPANT_NAMES


LOGGER = logging.getLogger(__name__)


def partition_dataset(
    records: Sequence[Dict[str, Any]],
    participant_names: Sequence[str] = DEFAULT_PARTICIPANT_NAMES,
) -> List[Participant]:
    """
    Split the dataset into contiguous, disjoint blocks, one per participant.

    block_size = floor(N / K); participant i gets rows
    [i * block_size, (i + 1) * block_size). The N mod K trailing rows are
    not assigned to anyone. Names are assigned in the given order and
    participant ids are their positions.

    Returns an empty list for an empty dataset or when no participants
    are requested.
    """
    n = len(records)
    k = len(participant_names)
    if n == 0 or k <= 0:
        LOGGER.warning(
            f"[partition_dataset] nothing to partition (records={n}, participants={k})"
        )
        return []

    block_size = n // k
    participants = []
    for i, name in enumerate(participant_names):
        start = i * block_size
        end = (i + 1) * block_size
        participants.append(
            Participant(participant_id=i, name=name, records=list(records[start:end]))
        )

    dropped = n - k * block_size
    LOGGER.info(
        f"[partition_dataset] {k} participants initialized with {block_size} samples each"
        + (f" ({dropped} trailing rows unassigned)" if dropped else "")
    )
    return participants

