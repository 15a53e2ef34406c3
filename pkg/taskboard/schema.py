"""
Task board data model.

Column order:
  Backlog → Todo → In Progress → In Review → Done

Tasks are ordered inside a (workspace, status) partition by an integer
position. Time logs are append-only; only the most recent open entry is
ever mutated (to close it).
"""
from enum import Enum
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional, List, Dict, Any
import json
import time
import uuid


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def iso(value: Optional[datetime]) -> Optional[str]:
    """ISO-8601 string for a datetime, passing None through."""
    if value is None:
        return None
    return value.isoformat()


def parse_ts(value) -> Optional[datetime]:
    """Parse an ISO-8601 timestamp (``Z`` suffix allowed). Naive values are UTC."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        text = str(value)
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        parsed = datetime.fromisoformat(text)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def make_id(prefix: str = "task") -> str:
    """Generate a sortable unique ID (ms-precision timestamp + random hex)."""
    ts = int(time.time() * 1000)
    rand = uuid.uuid4().hex[:8]
    return f"{prefix}-{ts}-{rand}"


class TaskStatus(Enum):
    """Board columns, in display order."""
    BACKLOG = "BACKLOG"
    TODO = "TODO"
    IN_PROGRESS = "IN_PROGRESS"
    IN_REVIEW = "IN_REVIEW"
    DONE = "DONE"

    @classmethod
    def from_str(cls, value) -> "TaskStatus":
        """Strict lookup; raises ValueError for anything that is not a column."""
        if isinstance(value, cls):
            return value
        try:
            return cls[str(value).strip().upper()]
        except KeyError:
            raise ValueError(f"Invalid status: {value}")


BOARD_COLUMNS: List[TaskStatus] = list(TaskStatus)


class MemberRole(Enum):
    ADMIN = "ADMIN"
    MEMBER = "MEMBER"

    @classmethod
    def from_str(cls, value: str) -> "MemberRole":
        try:
            return cls[str(value).upper()]
        except KeyError:
            return cls.MEMBER


@dataclass
class TimeLog:
    """One work interval. ``ended_at`` of None means the interval is still open."""
    id: str
    started_at: datetime
    ended_at: Optional[datetime] = None

    @property
    def is_open(self) -> bool:
        return self.ended_at is None

    def duration_seconds(self) -> float:
        if self.ended_at is None:
            return 0.0
        return (self.ended_at - self.started_at).total_seconds()

    def to_dict(self) -> Dict[str, Any]:
        data = {"id": self.id, "started_at": iso(self.started_at)}
        if self.ended_at is not None:
            data["ended_at"] = iso(self.ended_at)
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TimeLog":
        return cls(
            id=data.get("id") or uuid.uuid4().hex,
            started_at=parse_ts(data["started_at"]),
            ended_at=parse_ts(data.get("ended_at")),
        )


@dataclass
class Member:
    """Workspace membership record, denormalized with the user's display fields."""
    id: str
    workspace_id: str
    user_id: str
    role: MemberRole = MemberRole.MEMBER
    name: str = ""
    email: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "workspaceId": self.workspace_id,
            "userId": self.user_id,
            "role": self.role.value,
            "name": self.name or self.email,
            "email": self.email,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Member":
        return cls(
            id=data["id"],
            workspace_id=data.get("workspaceId", data.get("workspace_id", "")),
            user_id=data.get("userId", data.get("user_id", "")),
            role=MemberRole.from_str(data.get("role", "MEMBER")),
            name=data.get("name", ""),
            email=data.get("email", ""),
        )


@dataclass
class Project:
    id: str
    workspace_id: str
    name: str
    image_url: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "workspaceId": self.workspace_id,
            "name": self.name,
            "imageUrl": self.image_url,
        }


@dataclass
class PositionUpdate:
    """One bulk-update instruction: put task ``id`` at ``position`` in ``status``."""
    id: str
    status: TaskStatus
    position: int

    def to_dict(self) -> Dict[str, Any]:
        return {"id": self.id, "status": self.status.value, "position": self.position}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PositionUpdate":
        return cls(
            id=data["id"],
            status=TaskStatus.from_str(data["status"]),
            position=int(data["position"]),
        )


@dataclass
class Task:
    """A card on the board."""

    # Identity
    id: str
    workspace_id: str

    # Content
    name: str
    status: TaskStatus = TaskStatus.BACKLOG
    project_id: Optional[str] = None
    assignee_ids: List[str] = field(default_factory=list)
    due_date: Optional[datetime] = None
    description: Optional[str] = None

    # Ordering within (workspace_id, status)
    position: int = 1000

    # Time tracking
    time_logs: List[TimeLog] = field(default_factory=list)
    last_active_at: Optional[datetime] = None

    # Metadata
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)

    # Denormalized for responses/broadcasts; never persisted
    assignees: List[Member] = field(default_factory=list, repr=False)
    project: Optional[Project] = field(default=None, repr=False)

    @property
    def total_time_spent(self) -> int:
        """Whole seconds across closed time logs."""
        from .timelog import total_time_spent
        return total_time_spent(self.time_logs)

    def to_dict(self) -> Dict[str, Any]:
        """Serialize to the wire shape (camelCase, ISO timestamps)."""
        return {
            "id": self.id,
            "name": self.name,
            "status": self.status.value,
            "workspaceId": self.workspace_id,
            "projectId": self.project_id,
            "assigneeId": list(self.assignee_ids),
            "dueDate": iso(self.due_date),
            "description": self.description,
            "position": self.position,
            "timeLogs": [log.to_dict() for log in self.time_logs],
            "totalTimeSpent": self.total_time_spent,
            "lastActiveAt": iso(self.last_active_at),
            "createdAt": iso(self.created_at),
            "updatedAt": iso(self.updated_at),
        }

    def to_public_dict(self) -> Dict[str, Any]:
        """Wire shape plus the resolved project and assignee records."""
        data = self.to_dict()
        data["project"] = self.project.to_dict() if self.project else None
        data["assignees"] = [m.to_dict() for m in self.assignees]
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Task":
        """Deserialize the wire shape (as produced by to_dict / to_public_dict)."""
        time_logs = data.get("timeLogs") or []
        if isinstance(time_logs, str):
            try:
                time_logs = json.loads(time_logs)
            except json.JSONDecodeError:
                time_logs = []

        task = cls(
            id=data["id"],
            workspace_id=data.get("workspaceId", ""),
            name=data.get("name", ""),
            status=TaskStatus.from_str(data.get("status", "BACKLOG")),
            project_id=data.get("projectId"),
            assignee_ids=list(data.get("assigneeId") or []),
            due_date=parse_ts(data.get("dueDate")),
            description=data.get("description"),
            position=int(data.get("position") or 1000),
            time_logs=[TimeLog.from_dict(log) for log in time_logs],
            last_active_at=parse_ts(data.get("lastActiveAt")),
            created_at=parse_ts(data.get("createdAt")) or utc_now(),
            updated_at=parse_ts(data.get("updatedAt")) or utc_now(),
        )
        task.assignees = [Member.from_dict(m) for m in data.get("assignees") or []]
        project = data.get("project")
        if project:
            task.project = Project(
                id=project["id"],
                workspace_id=project.get("workspaceId", task.workspace_id),
                name=project.get("name", ""),
                image_url=project.get("imageUrl", ""),
            )
        return task
