"""
Client-side board state and reconciliation.

Holds one ordered partition per column. Local drags are applied
optimistically and tagged pending; broadcast events are merged by task id,
so duplicate or echoed deliveries converge to the same state.

Invariant: after every operation, each partition is sorted ascending by
position.
"""
import copy
import logging
import threading
import time
from typing import Callable, Dict, Iterable, List, Optional

from .errors import Unauthorized
from .events import EventType
from .permissions import can_mutate
from .positions import apply_updates, rebalance
from .schema import BOARD_COLUMNS, MemberRole, PositionUpdate, Task, TaskStatus

logger = logging.getLogger(__name__)

Partitions = Dict[TaskStatus, List[Task]]


def _empty_partitions() -> Partitions:
    return {status: [] for status in BOARD_COLUMNS}


def _sort(partition: List[Task]) -> None:
    partition.sort(key=lambda t: t.position)


class BoardState:
    """
    Per-client reconciler.

    Owned by the composition root (a BoardSession or a test) and shared by
    reference. Consumers observe changes through subscribe()/unsubscribe();
    listeners are called with the BoardState after each change.

    A board bound to ``workspace_id`` ignores events about other workspaces'
    tasks.
    """

    def __init__(
        self,
        workspace_id: Optional[str] = None,
        actor_id: Optional[str] = None,
        role: Optional[MemberRole] = None,
        pending_ttl: float = 30.0,
        clock: Callable[[], float] = time.monotonic,
        tasks: Iterable[Task] = (),
    ):
        self.workspace_id = workspace_id
        self.actor_id = actor_id
        self.role = role
        self.pending_ttl = pending_ttl
        self.clock = clock
        self._partitions: Partitions = _empty_partitions()
        self._pending: Dict[str, float] = {}  # task id → time of the optimistic change
        self._listeners: List[Callable[["BoardState"], None]] = []
        self._lock = threading.RLock()
        self._seed(tasks)

    # ── Reads ────────────────────────────────────────────────────────────────

    def partition(self, status: TaskStatus) -> List[Task]:
        """A copy of one column, in display order."""
        with self._lock:
            return list(self._partitions[status])

    def ids(self, status: TaskStatus) -> List[str]:
        with self._lock:
            return [t.id for t in self._partitions[status]]

    def find(self, task_id: str) -> Optional[Task]:
        with self._lock:
            for partition in self._partitions.values():
                for task in partition:
                    if task.id == task_id:
                        return task
        return None

    @property
    def pending(self) -> Dict[str, float]:
        with self._lock:
            return dict(self._pending)

    def snapshot(self) -> Partitions:
        """Deep copy of all partitions, for reverting a rejected drag."""
        with self._lock:
            return copy.deepcopy(self._partitions)

    # ── Listeners ────────────────────────────────────────────────────────────

    def subscribe(self, listener: Callable[["BoardState"], None]) -> None:
        with self._lock:
            if listener not in self._listeners:
                self._listeners.append(listener)

    def unsubscribe(self, listener: Callable[["BoardState"], None]) -> None:
        with self._lock:
            if listener in self._listeners:
                self._listeners.remove(listener)

    def _notify(self) -> None:
        with self._lock:
            listeners = list(self._listeners)
        for listener in listeners:
            try:
                listener(self)
            except Exception as e:
                logger.error(f"Board listener failed: {e}")

    # ── Seeding ──────────────────────────────────────────────────────────────

    def _seed(self, tasks: Iterable[Task]) -> None:
        partitions = _empty_partitions()
        for task in tasks:
            partitions[task.status].append(task)
        for partition in partitions.values():
            _sort(partition)
        self._partitions = partitions

    def reset(self, tasks: Iterable[Task]) -> None:
        """Replace all state with a fresh query result; drops pending markers."""
        with self._lock:
            self._seed(tasks)
            self._pending.clear()
        self._notify()

    def restore(self, snapshot: Partitions) -> None:
        """Put back a snapshot taken before a drag (the drag is reverted)."""
        with self._lock:
            self._partitions = copy.deepcopy(snapshot)
            for partition in self._partitions.values():
                _sort(partition)
        self._notify()

    # ── Local drag ───────────────────────────────────────────────────────────

    def local_drag(
        self,
        source_status: TaskStatus,
        source_index: int,
        destination_status: TaskStatus,
        destination_index: int,
    ) -> List[PositionUpdate]:
        """
        Move a card and return the instructions to submit to bulk update.

        Raises:
            Unauthorized: the actor may not move this task; nothing changed.
        """
        with self._lock:
            source = self._partitions[source_status]
            if not 0 <= source_index < len(source):
                logger.warning(f"No task at {source_status.value}[{source_index}]")
                return []
            moved = source[source_index]

            if not can_mutate(self.actor_id, moved.assignees or moved.assignee_ids, self.role):
                raise Unauthorized("Only assignees can move this task.")

            source_column = list(source)
            source_column.pop(source_index)
            if source_status == destination_status:
                destination_column = source_column
            else:
                destination_column = list(self._partitions[destination_status])
            index = max(0, min(destination_index, len(destination_column)))
            destination_column.insert(index, moved)
            moved.status = destination_status

            updates = rebalance(
                destination_column,
                destination_status,
                source=source_column if source_status != destination_status else None,
                source_status=source_status,
                moved_id=moved.id,
            )
            apply_updates(destination_column, updates)
            if source_status != destination_status:
                apply_updates(source_column, updates)
                self._partitions[source_status] = source_column
            self._partitions[destination_status] = destination_column
            _sort(destination_column)

            stamp = self.clock()
            for update in updates:
                self._pending[update.id] = stamp

        self._notify()
        return updates

    # ── Remote events ────────────────────────────────────────────────────────

    def apply_event(self, event_type: str, data: dict) -> None:
        """Merge one broadcast event. Unknown, malformed or foreign events are ignored."""
        if not isinstance(data, dict):
            return
        try:
            if event_type in (EventType.TASK_CREATED, EventType.TASK_UPDATED):
                tasks = [Task.from_dict(data["task"])] if data.get("task") else []
            elif event_type == EventType.TASKS_BULK_UPDATED:
                raw = data.get("tasks")
                tasks = [Task.from_dict(t) for t in raw] if isinstance(raw, list) else []
            elif event_type == EventType.TASK_DELETED:
                tasks = []
            else:
                logger.debug(f"Ignoring event {event_type}")
                return
        except (KeyError, ValueError, TypeError, AttributeError) as e:
            logger.warning(f"Dropping malformed {event_type} event: {type(e).__name__}: {e}")
            return

        if event_type == EventType.TASK_DELETED:
            last = data.get("task")
            if isinstance(last, dict) and not self._in_scope_id(last.get("workspaceId")):
                return
            if data.get("taskId"):
                self.remove(data["taskId"])
            return

        tasks = [t for t in tasks if self._in_scope(t)]
        if event_type == EventType.TASKS_BULK_UPDATED:
            if tasks:
                self.bulk_upsert(tasks)
        elif tasks:
            self.upsert(tasks[0])

    def _in_scope(self, task: Task) -> bool:
        return self._in_scope_id(task.workspace_id)

    def _in_scope_id(self, workspace_id: Optional[str]) -> bool:
        return self.workspace_id is None or workspace_id == self.workspace_id

    def upsert(self, task: Task) -> None:
        """Remove ``task.id`` everywhere, insert into its column, re-sort that column."""
        with self._lock:
            self._remove_ids({task.id})
            partition = self._partitions[task.status]
            partition.append(task)
            _sort(partition)
            self._pending.pop(task.id, None)
        self._notify()

    def remove(self, task_id: str) -> None:
        with self._lock:
            self._remove_ids({task_id})
            self._pending.pop(task_id, None)
        self._notify()

    def bulk_upsert(self, tasks: Iterable[Task]) -> None:
        """Batch upsert: remove all ids first, reinsert, sort each touched column once."""
        tasks = list(tasks)
        with self._lock:
            self._remove_ids({t.id for t in tasks})
            touched = set()
            for task in tasks:
                self._partitions[task.status].append(task)
                touched.add(task.status)
                self._pending.pop(task.id, None)
            for status in touched:
                _sort(self._partitions[status])
        self._notify()

    def _remove_ids(self, ids: set) -> None:
        for status, partition in self._partitions.items():
            self._partitions[status] = [t for t in partition if t.id not in ids]

    # ── Pending markers ──────────────────────────────────────────────────────

    def expire_pending(self, now: Optional[float] = None) -> List[str]:
        """Drop pending markers older than ``pending_ttl``; returns the expired ids."""
        now = self.clock() if now is None else now
        with self._lock:
            expired = [
                task_id for task_id, stamp in self._pending.items()
                if now - stamp >= self.pending_ttl
            ]
            for task_id in expired:
                del self._pending[task_id]
        if expired:
            logger.info(f"{len(expired)} optimistic change(s) unconfirmed after {self.pending_ttl}s")
        return expired
