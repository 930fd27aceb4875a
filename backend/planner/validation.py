"""Validation and normalization of raw model output.

Each draft is checked with ``TaskDraftSerializer``; its dependency indices are
reduced to the unique, in-range, non-self positions of the same batch, and
its ``order_index`` is its position in the batch.
"""

import logging
from dataclasses import dataclass
from typing import Any, Iterable, List, Sequence, Tuple

from .errors import InvalidPlan
from .serializers import TaskDraftSerializer

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PlannedTask:
    title: str
    description: str
    estimated_hours: float
    priority: str
    dependencies: Tuple[int, ...]
    order_index: int


def normalize_dependencies(indices: Iterable[int], position: int, size: int) -> Tuple[int, ...]:
    """Return the sorted unique indices in ``[0, size)`` other than ``position``."""
    kept = set()
    for index in indices:
        if index == position:
            logger.warning(f"Task {position}: dropping self dependency.")
            continue
        if index < 0 or index >= size:
            logger.warning(f"Task {position}: dropping out-of-range dependency {index} (batch size {size}).")
            continue
        kept.add(index)
    return tuple(sorted(kept))


def validate_plan(drafts: Sequence[Any]) -> List[PlannedTask]:
    """Validate a batch of task drafts.

    An empty batch gives an empty plan; deciding whether that is acceptable
    is left to the caller.

    Raises:
        InvalidPlan: on the first draft with an empty title, a non-positive
            or non-finite estimate, an unknown priority or malformed fields.
    """
    if not isinstance(drafts, (list, tuple)):
        raise InvalidPlan(f"Expected a list of tasks, got {type(drafts).__name__}")

    size = len(drafts)
    planned: List[PlannedTask] = []
    for position, raw in enumerate(drafts):
        serializer = TaskDraftSerializer(data=raw)
        if not serializer.is_valid():
            raise InvalidPlan(f"Task {position} is invalid: {dict(serializer.errors)}")
        data = serializer.validated_data
        planned.append(PlannedTask(
            title=data["title"],
            description=data["description"],
            estimated_hours=data["estimated_hours"],
            priority=data["priority"],
            dependencies=normalize_dependencies(data["dependencies"], position, size),
            order_index=position,
        ))
    return planned
