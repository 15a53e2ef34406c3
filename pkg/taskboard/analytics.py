"""
Per-member time analytics.

Logged time comes from each task's time logs; an open entry counts up to
``now``. A task's time is split evenly among its assignees, and intervals
that cross midnight (UTC) are split across the days they cover.
"""
from collections import defaultdict
from datetime import date, datetime, time, timedelta, timezone
from typing import Any, Dict, Iterable, Iterator, List, Tuple

from .schema import Member, Task, TimeLog, utc_now
from .timelog import format_duration


def _day_slices(log: TimeLog, now: datetime) -> Iterator[Tuple[date, float]]:
    """Yield (day, seconds) for each calendar day a log entry covers."""
    start = log.started_at
    end = log.ended_at or now
    while start < end:
        midnight = datetime.combine(start.date() + timedelta(days=1), time.min, tzinfo=timezone.utc)
        stop = min(end, midnight)
        yield start.date(), (stop - start).total_seconds()
        start = stop


def member_time_analytics(
    tasks: Iterable[Task],
    members: Iterable[Member],
    now: datetime = None,
    days: int = 7,
) -> Dict[str, Any]:
    """
    Total and per-day seconds for every member.

    Returns:
        {"days": [...], "members": [{memberId, userId, name, totalSeconds,
        totalFormatted, daily: [{date, seconds}]}]}, members ordered by
        total time descending.
    """
    now = now or utc_now()
    members = list(members)
    known = {m.id for m in members}
    per_day: Dict[str, Dict[date, float]] = defaultdict(lambda: defaultdict(float))

    for task in tasks:
        if not task.assignee_ids:
            continue
        share = 1.0 / len(task.assignee_ids)
        for log in task.time_logs:
            for day, seconds in _day_slices(log, now):
                for assignee_id in task.assignee_ids:
                    if assignee_id in known:
                        per_day[assignee_id][day] += seconds * share

    window = [now.date() - timedelta(days=offset) for offset in range(days - 1, -1, -1)]
    all_days = sorted(set(window).union(*(d.keys() for d in per_day.values())))

    report: List[Dict[str, Any]] = []
    for member in members:
        daily = per_day.get(member.id, {})
        total = int(round(sum(daily.values())))
        report.append({
            "memberId": member.id,
            "userId": member.user_id,
            "name": member.name or member.email,
            "totalSeconds": total,
            "totalFormatted": format_duration(total),
            "daily": [
                {"date": day.isoformat(), "seconds": int(round(daily.get(day, 0.0)))}
                for day in all_days
            ],
        })

    report.sort(key=lambda r: (-r["totalSeconds"], r["name"]))
    return {"days": [d.isoformat() for d in all_days], "members": report}
