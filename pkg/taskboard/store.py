"""
Task board storage backend (SQLite).

Holds tasks plus the two lookup collections the board needs: workspace
members (for authorization and assignee display) and projects. Every
sqlite3 error is logged and re-raised as PersistenceFailure.
"""
import json
import logging
import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Dict, Iterable, Iterator, List, Optional, Tuple

from .errors import PersistenceFailure
from .schema import (
    Member, MemberRole, Project, Task, TaskStatus, TimeLog, iso, parse_ts,
)

logger = logging.getLogger(__name__)


def _connect(db_path: str) -> sqlite3.Connection:
    """Open a connection with FK enforcement and WAL mode."""
    conn = sqlite3.connect(db_path)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys = ON")
    conn.execute("PRAGMA journal_mode = WAL")
    return conn


class TaskStore:
    """SQLite-backed store for tasks, members and projects."""

    def __init__(self, db_path: str = None):
        """Initialize store and create tables if needed."""
        if db_path is None:
            db_path = str(Path.home() / ".local" / "share" / "taskboard" / "board.db")
        self.db_path = db_path
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        self._init_schema()

    @contextmanager
    def _session(self, action: str) -> Iterator[sqlite3.Connection]:
        """One connection per unit of work; commits on success, always closes."""
        conn = None
        try:
            conn = _connect(self.db_path)
            yield conn
            conn.commit()
        except sqlite3.Error as e:
            logger.error(f"Store error during {action}: {e}")
            raise PersistenceFailure(f"Task store unavailable ({action})") from e
        finally:
            if conn is not None:
                conn.close()

    def _init_schema(self):
        """Create tables if they don't exist."""
        with self._session("init schema") as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS tasks (
                    id TEXT PRIMARY KEY,
                    workspace_id TEXT NOT NULL,
                    name TEXT NOT NULL,
                    status TEXT NOT NULL,
                    project_id TEXT,
                    assignee_ids TEXT NOT NULL DEFAULT '[]',  -- JSON list of member ids
                    due_date TEXT,
                    description TEXT,
                    position INTEGER NOT NULL,
                    time_logs TEXT NOT NULL DEFAULT '[]',     -- JSON list of TimeLog dicts
                    last_active_at TEXT,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
            """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS members (
                    id TEXT PRIMARY KEY,
                    workspace_id TEXT NOT NULL,
                    user_id TEXT NOT NULL,
                    role TEXT NOT NULL DEFAULT 'MEMBER',
                    name TEXT DEFAULT '',
                    email TEXT DEFAULT '',
                    UNIQUE (workspace_id, user_id)
                )
            """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS projects (
                    id TEXT PRIMARY KEY,
                    workspace_id TEXT NOT NULL,
                    name TEXT NOT NULL,
                    image_url TEXT DEFAULT ''
                )
            """)
            # Partition lookups and the default listing order
            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_tasks_partition "
                "ON tasks(workspace_id, status, position)"
            )
            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_tasks_created "
                "ON tasks(workspace_id, created_at)"
            )
            conn.execute("CREATE INDEX IF NOT EXISTS idx_members_workspace ON members(workspace_id)")

    # ── Tasks ────────────────────────────────────────────────────────────────

    def save(self, task: Task) -> Task:
        """Insert or replace a task."""
        with self._session(f"save {task.id}") as conn:
            conn.execute("""
                INSERT OR REPLACE INTO tasks
                (id, workspace_id, name, status, project_id, assignee_ids, due_date,
                 description, position, time_logs, last_active_at, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """, (
                task.id,
                task.workspace_id,
                task.name,
                task.status.value,
                task.project_id,
                json.dumps(task.assignee_ids),
                iso(task.due_date),
                task.description,
                task.position,
                json.dumps([log.to_dict() for log in task.time_logs]),
                iso(task.last_active_at),
                iso(task.created_at),
                iso(task.updated_at),
            ))
        return task

    def get(self, task_id: str) -> Optional[Task]:
        """Retrieve a task by ID."""
        with self._session(f"get {task_id}") as conn:
            row = conn.execute("SELECT * FROM tasks WHERE id = ?", (task_id,)).fetchone()
        return self._row_to_task(row) if row else None

    def get_many(self, task_ids: Iterable[str]) -> Dict[str, Task]:
        """Tasks by id; missing ids are simply absent from the result."""
        ids = list(dict.fromkeys(task_ids))
        if not ids:
            return {}
        placeholders = ",".join("?" * len(ids))
        with self._session("get many") as conn:
            rows = conn.execute(
                f"SELECT * FROM tasks WHERE id IN ({placeholders})", ids
            ).fetchall()
        return {row["id"]: self._row_to_task(row) for row in rows}

    def delete(self, task_id: str) -> bool:
        """Delete a task (its time logs go with it). Returns False if it was absent."""
        with self._session(f"delete {task_id}") as conn:
            cursor = conn.execute("DELETE FROM tasks WHERE id = ?", (task_id,))
        return cursor.rowcount > 0

    def highest_position(self, workspace_id: str, status: TaskStatus) -> Optional[int]:
        """Largest position in a partition, or None if the partition is empty."""
        with self._session("highest position") as conn:
            row = conn.execute(
                "SELECT MAX(position) FROM tasks WHERE workspace_id = ? AND status = ?",
                (workspace_id, status.value),
            ).fetchone()
        return row[0] if row and row[0] is not None else None

    def list_partition(self, workspace_id: str, status: TaskStatus) -> List[Task]:
        """All tasks of one column, ordered by position."""
        with self._session("list partition") as conn:
            rows = conn.execute(
                "SELECT * FROM tasks WHERE workspace_id = ? AND status = ? "
                "ORDER BY position ASC, created_at ASC",
                (workspace_id, status.value),
            ).fetchall()
        return [self._row_to_task(row) for row in rows]

    def list_workspace(self, workspace_id: str) -> List[Task]:
        with self._session("list workspace") as conn:
            rows = conn.execute(
                "SELECT * FROM tasks WHERE workspace_id = ? ORDER BY created_at DESC",
                (workspace_id,),
            ).fetchall()
        return [self._row_to_task(row) for row in rows]

    def query(
        self,
        workspace_id: str,
        project_id: Optional[str] = None,
        status: Optional[TaskStatus] = None,
        assignee_id: Optional[str] = None,
        due_date: Optional[str] = None,
        search: Optional[str] = None,
        page: int = 1,
        limit: int = 100,
    ) -> Tuple[List[Task], int]:
        """
        Filtered, paginated listing (newest first).

        Args:
            due_date: calendar day, YYYY-MM-DD
            search: case-insensitive substring of the task name

        Returns:
            (tasks on this page, total matching tasks)
        """
        clauses = ["workspace_id = ?"]
        params: list = [workspace_id]
        if project_id:
            clauses.append("project_id = ?")
            params.append(project_id)
        if status:
            clauses.append("status = ?")
            params.append(status.value)
        if assignee_id:
            clauses.append(
                "EXISTS (SELECT 1 FROM json_each(tasks.assignee_ids) WHERE value = ?)"
            )
            params.append(assignee_id)
        if due_date:
            clauses.append("substr(due_date, 1, 10) = ?")
            params.append(due_date)
        if search:
            escaped = search.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
            clauses.append("name LIKE ? ESCAPE '\\'")
            params.append(f"%{escaped}%")

        where = " AND ".join(clauses)
        offset = (page - 1) * limit
        with self._session("query") as conn:
            total = conn.execute(f"SELECT COUNT(*) FROM tasks WHERE {where}", params).fetchone()[0]
            rows = conn.execute(
                f"SELECT * FROM tasks WHERE {where} "
                "ORDER BY created_at DESC, rowid DESC LIMIT ? OFFSET ?",
                params + [limit, offset],
            ).fetchall()
        return [self._row_to_task(row) for row in rows], total

    def _row_to_task(self, row: sqlite3.Row) -> Task:
        """Convert a database row to a Task."""
        data = dict(row)
        try:
            assignee_ids = json.loads(data.get("assignee_ids") or "[]")
        except (json.JSONDecodeError, TypeError):
            logger.warning(f"Task {data['id']}: unreadable assignee list")
            assignee_ids = []
        try:
            raw_logs = json.loads(data.get("time_logs") or "[]")
        except (json.JSONDecodeError, TypeError):
            logger.warning(f"Task {data['id']}: unreadable time logs")
            raw_logs = []

        return Task(
            id=data["id"],
            workspace_id=data["workspace_id"],
            name=data["name"],
            status=TaskStatus.from_str(data["status"]),
            project_id=data.get("project_id"),
            assignee_ids=assignee_ids,
            due_date=parse_ts(data.get("due_date")),
            description=data.get("description"),
            position=data["position"],
            time_logs=[TimeLog.from_dict(log) for log in raw_logs],
            last_active_at=parse_ts(data.get("last_active_at")),
            created_at=parse_ts(data["created_at"]),
            updated_at=parse_ts(data["updated_at"]),
        )

    # ── Members ──────────────────────────────────────────────────────────────

    def save_member(self, member: Member) -> Member:
        with self._session(f"save member {member.id}") as conn:
            conn.execute("""
                INSERT OR REPLACE INTO members (id, workspace_id, user_id, role, name, email)
                VALUES (?, ?, ?, ?, ?, ?)
            """, (
                member.id, member.workspace_id, member.user_id,
                member.role.value, member.name, member.email,
            ))
        return member

    def get_member(self, workspace_id: str, user_id: str) -> Optional[Member]:
        """Membership of ``user_id`` in ``workspace_id``, or None."""
        with self._session("get member") as conn:
            row = conn.execute(
                "SELECT * FROM members WHERE workspace_id = ? AND user_id = ?",
                (workspace_id, user_id),
            ).fetchone()
        return self._row_to_member(row) if row else None

    def members_by_ids(self, member_ids: Iterable[str]) -> Dict[str, Member]:
        ids = list(dict.fromkeys(member_ids))
        if not ids:
            return {}
        placeholders = ",".join("?" * len(ids))
        with self._session("members by ids") as conn:
            rows = conn.execute(
                f"SELECT * FROM members WHERE id IN ({placeholders})", ids
            ).fetchall()
        return {row["id"]: self._row_to_member(row) for row in rows}

    def list_members(self, workspace_id: str) -> List[Member]:
        with self._session("list members") as conn:
            rows = conn.execute(
                "SELECT * FROM members WHERE workspace_id = ? ORDER BY name ASC",
                (workspace_id,),
            ).fetchall()
        return [self._row_to_member(row) for row in rows]

    def _row_to_member(self, row: sqlite3.Row) -> Member:
        return Member(
            id=row["id"],
            workspace_id=row["workspace_id"],
            user_id=row["user_id"],
            role=MemberRole.from_str(row["role"]),
            name=row["name"] or "",
            email=row["email"] or "",
        )

    # ── Projects ─────────────────────────────────────────────────────────────

    def save_project(self, project: Project) -> Project:
        with self._session(f"save project {project.id}") as conn:
            conn.execute(
                "INSERT OR REPLACE INTO projects (id, workspace_id, name, image_url) "
                "VALUES (?, ?, ?, ?)",
                (project.id, project.workspace_id, project.name, project.image_url),
            )
        return project

    def projects_by_ids(self, project_ids: Iterable[str]) -> Dict[str, Project]:
        ids = [i for i in dict.fromkeys(project_ids) if i]
        if not ids:
            return {}
        placeholders = ",".join("?" * len(ids))
        with self._session("projects by ids") as conn:
            rows = conn.execute(
                f"SELECT * FROM projects WHERE id IN ({placeholders})", ids
            ).fetchall()
        return {
            row["id"]: Project(
                id=row["id"],
                workspace_id=row["workspace_id"],
                name=row["name"],
                image_url=row["image_url"] or "",
            )
            for row in rows
        }
