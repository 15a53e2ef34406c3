"""
Position allocation within a (workspace, status) partition.

Positions are spaced 1000 apart and clamped to [1000, 1_000_000]. A
partition with more than 1000 tasks collides at the ceiling; the clamp is
intentional and the collision is tolerated until the next renumber.
"""
from typing import List, Optional, Sequence

from .schema import PositionUpdate, Task, TaskStatus

POSITION_STEP = 1000
MIN_POSITION = 1000
MAX_POSITION = 1_000_000


def clamp_position(value: int) -> int:
    return max(MIN_POSITION, min(int(value), MAX_POSITION))


def position_for_index(index: int) -> int:
    """Desired position for the task at ``index`` (0-based) of a partition."""
    return clamp_position((index + 1) * POSITION_STEP)


def next_position(highest: Optional[int]) -> int:
    """Position for a task appended after ``highest`` (None for an empty partition)."""
    if highest is None:
        return MIN_POSITION
    return clamp_position(highest + POSITION_STEP)


def renumber(
    partition: Sequence[Task],
    status: TaskStatus,
    always: Optional[str] = None,
) -> List[PositionUpdate]:
    """Instructions that make ``partition`` contiguous (1000, 2000, ...) in ``status``.

    Only tasks whose stored position or status differs are emitted, plus the
    task with id ``always`` if given.
    """
    updates = []
    for index, task in enumerate(partition):
        desired = position_for_index(index)
        if task.id == always or task.position != desired or task.status != status:
            updates.append(PositionUpdate(id=task.id, status=status, position=desired))
    return updates


def rebalance(
    destination: Sequence[Task],
    destination_status: TaskStatus,
    source: Optional[Sequence[Task]] = None,
    source_status: Optional[TaskStatus] = None,
    moved_id: Optional[str] = None,
) -> List[PositionUpdate]:
    """
    Update instructions after a drag.

    Args:
        destination: destination partition with the moved task already spliced in
        destination_status: status of the destination column
        source: remainder of the source partition (cross-column moves only)
        source_status: status of the source column
        moved_id: the dragged task; always emitted so a status change reaches
            the server even when its position happens to be unchanged

    Returns:
        Destination instructions first, then source instructions.
    """
    updates = renumber(destination, destination_status, always=moved_id)
    if source is not None and source_status is not None and source_status != destination_status:
        updates.extend(renumber(source, source_status))
    return updates


def apply_updates(tasks: Sequence[Task], updates: Sequence[PositionUpdate]) -> None:
    """Apply instructions in place to the matching tasks."""
    by_id = {u.id: u for u in updates}
    for task in tasks:
        update = by_id.get(task.id)
        if update is not None:
            task.status = update.status
            task.position = update.position
