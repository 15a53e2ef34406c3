"""
Time tracking driven by status transitions.

Rules:
  * → IN_PROGRESS    close any open entry (should not exist), open a new one
  IN_PROGRESS → *    close the open entry (no-op if there is none)
  anything else      no change

Creation directly in IN_PROGRESS is the transition None → IN_PROGRESS.
"""
import uuid
from datetime import datetime
from typing import List, Optional, Sequence

from .schema import TaskStatus, TimeLog, utc_now


def open_entry(logs: Sequence[TimeLog]) -> Optional[TimeLog]:
    """The most recent entry without ``ended_at``, if any."""
    for log in reversed(logs):
        if log.is_open:
            return log
    return None


def apply_transition(
    logs: Sequence[TimeLog],
    old_status: Optional[TaskStatus],
    new_status: TaskStatus,
    now: Optional[datetime] = None,
) -> List[TimeLog]:
    """
    Return the time-log list after ``old_status → new_status``.

    The input list is not modified; entries that change are replaced with
    closed copies so callers can diff before/after.
    """
    now = now or utc_now()
    result = list(logs)

    if old_status == new_status:
        return result

    if new_status == TaskStatus.IN_PROGRESS:
        result = _close_open(result, now)
        result.append(TimeLog(id=uuid.uuid4().hex, started_at=now))
    elif old_status == TaskStatus.IN_PROGRESS:
        result = _close_open(result, now)

    return result


def _close_open(logs: List[TimeLog], now: datetime) -> List[TimeLog]:
    closed = []
    for log in logs:
        if log.is_open:
            # Clock skew between writers must not yield a negative interval
            ended = now if now >= log.started_at else log.started_at
            log = TimeLog(id=log.id, started_at=log.started_at, ended_at=ended)
        closed.append(log)
    return closed


def total_time_spent(logs: Sequence[TimeLog]) -> int:
    """Whole seconds over closed entries; open entries contribute nothing."""
    return int(sum(log.duration_seconds() for log in logs if not log.is_open))


def format_duration(seconds: float) -> str:
    """``"2h 5m"`` or ``"5m"``."""
    seconds = int(seconds)
    hours = seconds // 3600
    minutes = (seconds % 3600) // 60
    if hours > 0:
        return f"{hours}h {minutes}m"
    return f"{minutes}m"
