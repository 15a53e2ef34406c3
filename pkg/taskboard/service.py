"""
Authoritative task mutations.

Each operation is one independent read-modify-write against the store:
validate → load → authorize → time logs → positions → persist → broadcast.
Validation and authorization always happen before the first write. The
broadcast is fire-and-forget and never undoes a committed write.
"""
import logging
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from .analytics import member_time_analytics
from .errors import NotFound, PersistenceFailure, Unauthorized, ValidationError
from .events import Broadcaster, EventType
from .permissions import can_mutate
from .positions import next_position
from .schema import Member, Task, make_id, utc_now
from .store import TaskStore
from .timelog import apply_transition
from .validation import validate_bulk, validate_create, validate_list_query, validate_patch

logger = logging.getLogger(__name__)

_PATCH_FIELDS = {
    "name": "name",
    "projectId": "project_id",
    "dueDate": "due_date",
    "assigneeId": "assignee_ids",
    "description": "description",
}


class TaskMutationService:
    """Create, patch, delete and bulk-reorder tasks; list and fetch them."""

    def __init__(
        self,
        store: TaskStore,
        broadcaster: Broadcaster,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.store = store
        self.broadcaster = broadcaster
        self.clock = clock

    # ── Queries ──────────────────────────────────────────────────────────────

    def list_tasks(self, actor_id: str, params: Dict[str, Any]) -> Dict[str, Any]:
        """Filtered, paginated, denormalized task listing for one workspace."""
        query = validate_list_query(params)
        self._require_member(query["workspaceId"], actor_id)

        due = query.get("dueDate")
        tasks, total = self.store.query(
            workspace_id=query["workspaceId"],
            project_id=query.get("projectId"),
            status=query.get("status"),
            assignee_id=query.get("assigneeId"),
            due_date=due.date().isoformat() if due else None,
            search=query.get("search"),
            page=query["page"],
            limit=query["limit"],
        )
        self._denormalize(tasks)
        return {
            "documents": [t.to_public_dict() for t in tasks],
            "total": total,
            "page": query["page"],
            "limit": query["limit"],
        }

    def get_task(self, actor_id: str, task_id: str) -> Task:
        task = self._load(task_id)
        self._require_member(task.workspace_id, actor_id)
        self._denormalize([task])
        return task

    def current_member(self, actor_id: str, workspace_id: str) -> Member:
        return self._require_member(workspace_id, actor_id)

    def time_analytics(self, actor_id: str, workspace_id: str, days: int = 7) -> Dict[str, Any]:
        """Per-member logged time for a workspace (see analytics.member_time_analytics)."""
        self._require_member(workspace_id, actor_id)
        if not 1 <= days <= 90:
            raise ValidationError(f"Field days must be between 1 and 90, got: {days}")
        return member_time_analytics(
            self.store.list_workspace(workspace_id),
            self.store.list_members(workspace_id),
            now=self.clock(),
            days=days,
        )

    # ── Mutations ────────────────────────────────────────────────────────────

    def create(self, actor_id: str, payload: Dict[str, Any]) -> Task:
        """Create a task at the end of its column and broadcast task-created."""
        data = validate_create(payload)
        workspace_id = data["workspaceId"]
        self._require_member(workspace_id, actor_id)
        self._check_assignees(workspace_id, data["assigneeId"])
        self._check_project(workspace_id, data["projectId"])

        now = self.clock()
        status = data["status"]
        highest = self.store.highest_position(workspace_id, status)
        task = Task(
            id=make_id("task"),
            workspace_id=workspace_id,
            name=data["name"],
            status=status,
            project_id=data["projectId"],
            assignee_ids=data["assigneeId"],
            due_date=data["dueDate"],
            description=data.get("description"),
            position=next_position(highest),
            time_logs=apply_transition([], None, status, now),
            last_active_at=now,
            created_at=now,
            updated_at=now,
        )
        self.store.save(task)
        logger.info(f"Task created: {task.id} in {workspace_id}/{status.value} at {task.position}")

        self._denormalize([task])
        self._broadcast(EventType.TASK_CREATED, {"task": task.to_public_dict()})
        return task

    def patch(self, actor_id: str, task_id: str, payload: Dict[str, Any]) -> Task:
        """Merge the given fields into a task and broadcast task-updated."""
        data = validate_patch(payload)
        task = self._load(task_id)
        member = self._require_member(task.workspace_id, actor_id)
        self._authorize(task, actor_id, member)
        if "assigneeId" in data:
            self._check_assignees(task.workspace_id, data["assigneeId"])
        if "projectId" in data:
            self._check_project(task.workspace_id, data["projectId"])

        now = self.clock()
        for key, attr in _PATCH_FIELDS.items():
            if key in data:
                setattr(task, attr, data[key])

        new_status = data.get("status")
        if new_status is not None and new_status != task.status:
            old_status = task.status
            task.time_logs = apply_transition(task.time_logs, old_status, new_status, now)
            task.position = next_position(
                self.store.highest_position(task.workspace_id, new_status)
            )
            task.status = new_status
            task.last_active_at = now
            logger.info(f"Task {task.id}: {old_status.value} → {new_status.value}")

        task.updated_at = now
        self.store.save(task)

        self._denormalize([task])
        self._broadcast(EventType.TASK_UPDATED, {"task": task.to_public_dict()})
        return task

    def delete(self, actor_id: str, task_id: str) -> Task:
        """Delete a task and broadcast task-deleted with its last state."""
        task = self._load(task_id)
        member = self._require_member(task.workspace_id, actor_id)
        self._denormalize([task])
        self._authorize(task, actor_id, member)

        if not self.store.delete(task_id):
            # Lost a race with another delete
            raise NotFound(f"Task {task_id} not found")
        logger.info(f"Task deleted: {task_id}")

        self._broadcast(EventType.TASK_DELETED, {"taskId": task_id, "task": task.to_public_dict()})
        return task

    def bulk_update(self, actor_id: str, payload: Any) -> List[Task]:
        """
        Apply ``{id, status, position}`` instructions (a drag's rebalance).

        Every referenced task must exist and all must share one workspace;
        both are checked before any write. Each task is then written on its
        own: if a write fails part way, the tasks already written are still
        broadcast and the PersistenceFailure is re-raised.
        """
        updates = validate_bulk(payload)
        existing = self.store.get_many(u.id for u in updates)

        missing = [u.id for u in updates if u.id not in existing]
        if missing:
            raise NotFound(f"Tasks not found: {', '.join(missing)}")

        workspaces = {t.workspace_id for t in existing.values()}
        if len(workspaces) != 1:
            raise ValidationError("All tasks in a bulk update must belong to the same workspace")
        workspace_id = workspaces.pop()
        self._require_member(workspace_id, actor_id)

        now = self.clock()
        written: List[Task] = []
        failure: Optional[PersistenceFailure] = None
        for update in updates:
            task = existing[update.id]
            if task.status == update.status and task.position == update.position:
                written.append(task)
                continue
            if task.status != update.status:
                task.time_logs = apply_transition(task.time_logs, task.status, update.status, now)
                task.last_active_at = now
            task.status = update.status
            task.position = update.position
            task.updated_at = now
            try:
                self.store.save(task)
            except PersistenceFailure as e:
                logger.error(
                    f"Bulk update stopped at {task.id}: "
                    f"{len(written)}/{len(updates)} applied"
                )
                failure = e
                break
            written.append(task)

        if written:
            self._denormalize(written)
            self._broadcast(
                EventType.TASKS_BULK_UPDATED,
                {"tasks": [t.to_public_dict() for t in written]},
            )
        if failure is not None:
            raise failure
        logger.info(f"Bulk update: {len(written)} task(s) in {workspace_id}")
        return written

    # ── Helpers ──────────────────────────────────────────────────────────────

    def _load(self, task_id: str) -> Task:
        task = self.store.get(task_id)
        if task is None:
            raise NotFound(f"Task {task_id} not found")
        return task

    def _require_member(self, workspace_id: str, actor_id: Optional[str]) -> Member:
        if not actor_id:
            raise Unauthorized("Unauthorized")
        member = self.store.get_member(workspace_id, actor_id)
        if member is None:
            logger.warning(f"Rejected non-member {actor_id} for workspace {workspace_id}")
            raise Unauthorized("Unauthorized")
        return member

    def _authorize(self, task: Task, actor_id: str, member: Member) -> None:
        assignees = task.assignees or list(self.store.members_by_ids(task.assignee_ids).values())
        if not can_mutate(actor_id, assignees, member.role):
            logger.warning(f"Rejected {actor_id}: not an assignee of {task.id}")
            raise Unauthorized("Only assignees or admins can modify this task")

    def _check_assignees(self, workspace_id: str, assignee_ids: List[str]) -> None:
        members = self.store.members_by_ids(assignee_ids)
        unknown = [
            i for i in assignee_ids
            if i not in members or members[i].workspace_id != workspace_id
        ]
        if unknown:
            raise ValidationError(f"Unknown assignees: {', '.join(unknown)}")

    def _check_project(self, workspace_id: str, project_id: Optional[str]) -> None:
        if not project_id:
            return
        project = self.store.projects_by_ids([project_id]).get(project_id)
        if project is None or project.workspace_id != workspace_id:
            raise ValidationError(f"Unknown project: {project_id}")

    def _denormalize(self, tasks: List[Task]) -> None:
        """Attach project and assignee records, resolved in two batched lookups."""
        projects = self.store.projects_by_ids(t.project_id for t in tasks if t.project_id)
        members = self.store.members_by_ids(i for t in tasks for i in t.assignee_ids)
        for task in tasks:
            task.project = projects.get(task.project_id)
            task.assignees = [members[i] for i in task.assignee_ids if i in members]

    def _broadcast(self, event_type: str, data: Dict[str, Any]) -> None:
        if self.broadcaster.publish(event_type, data) is None:
            logger.warning(f"Broadcast of {event_type} dropped; clients resync on refresh")
