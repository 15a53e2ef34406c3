"""
Board client: HTTP access to the server plus the client-side session.

BoardClient   thin requests wrapper; maps HTTP errors back to BoardError types
BoardSession  composition root for one connected client: owns a BoardState,
              applies drags optimistically, submits them in the background,
              polls the event feed, and recovers from failures by policy.
"""
import logging
import threading
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Tuple

import requests

from .config import Config
from .errors import (
    BoardError, NotFound, PersistenceFailure, Unauthorized, ValidationError,
    error_for_status,
)
from .reconciler import BoardState
from .schema import MemberRole, PositionUpdate, Task, TaskStatus

logger = logging.getLogger(__name__)


class BoardClient:
    """HTTP client for the board server API."""

    def __init__(
        self,
        base_url: str,
        api_key: str,
        user_id: str,
        timeout: float = 5.0,
        session: Optional[requests.Session] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.http = session or requests.Session()
        self.http.headers.update({"X-API-Key": api_key, "X-User-Id": user_id})

    @classmethod
    def from_config(cls, config: Config, user_id: str, **kwargs) -> "BoardClient":
        """Client for the server described by ``config`` (its host, port and secret)."""
        return cls(f"http://{config.host}:{config.port}", config.api_secret, user_id, **kwargs)

    def _request(self, method: str, path: str, **kwargs) -> Any:
        """Perform one call and return the ``data`` member of the response."""
        url = f"{self.base_url}{path}"
        try:
            r = self.http.request(method, url, timeout=self.timeout, **kwargs)
        except requests.RequestException as e:
            logger.warning(f"{method} {path} failed: {e}")
            raise PersistenceFailure(f"Board server unreachable: {e}") from e

        try:
            body = r.json()
        except ValueError:
            body = {}
        if not r.ok:
            raise error_for_status(r.status_code, body.get("error", r.reason or ""))
        return body.get("data")

    def current_member(self, workspace_id: str) -> Dict[str, Any]:
        return self._request("GET", "/api/members/current", params={"workspaceId": workspace_id})

    def list_tasks(self, workspace_id: str, page_size: int = 500, **filters) -> List[Task]:
        """All tasks matching the filters, following pagination."""
        tasks: List[Task] = []
        page = 1
        while True:
            params = {"workspaceId": workspace_id, "page": page, "limit": page_size}
            params.update({k: v for k, v in filters.items() if v is not None})
            data = self._request("GET", "/api/tasks", params=params)
            tasks.extend(Task.from_dict(d) for d in data["documents"])
            if not data["documents"] or len(tasks) >= data["total"]:
                return tasks
            page += 1

    def get_task(self, task_id: str) -> Task:
        return Task.from_dict(self._request("GET", f"/api/tasks/{task_id}"))

    def create_task(self, payload: Dict[str, Any]) -> Task:
        return Task.from_dict(self._request("POST", "/api/tasks", json=payload))

    def patch_task(self, task_id: str, payload: Dict[str, Any]) -> Task:
        return Task.from_dict(self._request("PATCH", f"/api/tasks/{task_id}", json=payload))

    def delete_task(self, task_id: str) -> str:
        return self._request("DELETE", f"/api/tasks/{task_id}")["id"]

    def bulk_update(self, updates: List[PositionUpdate]) -> List[Task]:
        data = self._request(
            "POST", "/api/tasks/bulk-update",
            json={"tasks": [u.to_dict() for u in updates]},
        )
        return [Task.from_dict(d) for d in data]

    def events(self, workspace_id: str, since: int = 0) -> Tuple[List[Dict[str, Any]], int, int]:
        """
        One workspace's events after ``since``.

        Returns:
            (events, lastSeq, firstSeq): the server's newest sequence number and
            the oldest one still in its replay buffer.
        """
        data = self._request(
            "GET", "/api/events", params={"workspaceId": workspace_id, "since": since},
        )
        return data["events"], data["lastSeq"], data.get("firstSeq", 0)

    def latest_seq(self, workspace_id: str) -> int:
        params = {"workspaceId": workspace_id, "since": -1}
        return self._request("GET", "/api/events", params=params)["lastSeq"]


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Failure handling
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


@dataclass
class Outcome:
    """Result of one guarded step: either a value or a categorized error."""
    ok: bool
    value: Any = None
    error: Optional[BaseException] = None

    @property
    def category(self) -> str:
        if self.ok:
            return "ok"
        if isinstance(self.error, BoardError):
            return self.error.category
        return "error"


def guarded(step: Callable[[], Any]) -> Outcome:
    """Run ``step`` and capture any failure as an Outcome instead of raising."""
    try:
        return Outcome(ok=True, value=step())
    except Exception as e:
        logger.warning(f"Step failed ({type(e).__name__}): {e}")
        return Outcome(ok=False, error=e)


REVERT = "revert"
REFRESH = "refresh"
KEEP = "keep"

# Failure category → recovery action
RECOVERY_POLICY = {
    Unauthorized.category: REVERT,
    NotFound.category: REFRESH,
    ValidationError.category: REFRESH,
    PersistenceFailure.category: KEEP,
}


class BoardSession:
    """
    One connected client.

    Args:
        client: BoardClient for the server
        workspace_id: workspace whose board is shown
        notify: receives user-facing messages (non-blocking toasts)
        pending_ttl: seconds before an unconfirmed optimistic change triggers a refresh
        background: submit drags on a worker thread (False runs inline)
    """

    def __init__(
        self,
        client: BoardClient,
        workspace_id: str,
        notify: Optional[Callable[[str], None]] = None,
        pending_ttl: float = 30.0,
        background: bool = True,
    ):
        self.client = client
        self.workspace_id = workspace_id
        self.notify = notify or (lambda message: logger.info(f"[notify] {message}"))
        self.background = background
        self.state = BoardState(workspace_id=workspace_id, pending_ttl=pending_ttl)
        self.last_seq = 0
        self._threads: List[threading.Thread] = []

    @classmethod
    def from_config(
        cls,
        client: BoardClient,
        workspace_id: str,
        config: Config,
        notify: Optional[Callable[[str], None]] = None,
        background: bool = True,
    ) -> "BoardSession":
        return cls(
            client,
            workspace_id,
            notify=notify,
            pending_ttl=config.pending_ttl_secs,
            background=background,
        )

    # ── Loading ──────────────────────────────────────────────────────────────

    def load(self) -> Outcome:
        """Fetch identity and the full board. Events after this point apply on top."""
        outcome = guarded(self._load)
        if not outcome.ok:
            self.notify(f"Could not load board: {outcome.error}")
        return outcome

    def _load(self) -> int:
        member = self.client.current_member(self.workspace_id)
        self.state.actor_id = member["userId"]
        self.state.role = MemberRole.from_str(member.get("role", "MEMBER"))
        # Sequence first, so nothing published during the listing is missed
        self.last_seq = self.client.latest_seq(self.workspace_id)
        tasks = self.client.list_tasks(self.workspace_id)
        self.state.reset(tasks)
        return len(tasks)

    def refresh(self) -> Outcome:
        return guarded(self._load)

    # ── Drags ────────────────────────────────────────────────────────────────

    def drag(
        self,
        source_status: TaskStatus,
        source_index: int,
        destination_status: TaskStatus,
        destination_index: int,
    ) -> Outcome:
        """Apply a drag locally and submit it. Returns the local outcome."""
        snapshot = self.state.snapshot()
        outcome = guarded(lambda: self.state.local_drag(
            source_status, source_index, destination_status, destination_index,
        ))
        if not outcome.ok:
            self.notify(str(outcome.error))
            return outcome
        if outcome.value:
            self._dispatch(outcome.value, snapshot)
        return outcome

    def _dispatch(self, updates: List[PositionUpdate], snapshot) -> None:
        if not self.background:
            self._submit(updates, snapshot)
            return
        worker = threading.Thread(target=self._submit, args=(updates, snapshot), daemon=True)
        self._threads = [t for t in self._threads if t.is_alive()]
        self._threads.append(worker)
        worker.start()

    def _submit(self, updates: List[PositionUpdate], snapshot) -> Outcome:
        outcome = guarded(lambda: self.client.bulk_update(updates))
        if not outcome.ok:
            self.recover(outcome, snapshot)
        return outcome

    def recover(self, outcome: Outcome, snapshot=None) -> str:
        """Apply the policy action for a failed outcome; returns the action taken."""
        action = RECOVERY_POLICY.get(outcome.category, KEEP)
        self.notify(f"Failed to update tasks: {outcome.error}")
        if action == REVERT and snapshot is not None:
            self.state.restore(snapshot)
        elif action == REFRESH:
            refreshed = self.refresh()
            if not refreshed.ok:
                logger.warning(f"Refresh after {outcome.category} failed: {refreshed.error}")
        return action

    def wait(self, timeout: Optional[float] = None) -> None:
        """Join outstanding background submissions."""
        for worker in list(self._threads):
            worker.join(timeout)
        self._threads = [t for t in self._threads if t.is_alive()]

    # ── Event feed ───────────────────────────────────────────────────────────

    def poll_once(self) -> int:
        """Apply new events, then expire stale optimistic changes. Returns events applied."""
        since = self.last_seq
        outcome = guarded(lambda: self.client.events(self.workspace_id, since=since))
        applied = 0
        if outcome.ok:
            events, last_seq, first_seq = outcome.value
            if last_seq < since:
                # Server restarted; its buffer no longer covers our position
                logger.info("Event sequence reset by server, reloading board")
                self.refresh()
                return applied
            if first_seq > since + 1:
                # Events after our position were evicted from the replay buffer
                logger.info(f"Missed events {since + 1}..{first_seq - 1}, reloading board")
                self.refresh()
                return applied
            for event in events:
                self.state.apply_event(event["event"], event["data"])
                self.last_seq = max(self.last_seq, event["seq"])
                applied += 1

        if self.state.expire_pending():
            self.refresh()
        return applied

    def run(self, stop: threading.Event, max_interval: float = 3.0) -> None:
        """Poll until ``stop`` is set. Backoff: 0.5s → ×1.5 → max_interval, reset on activity."""
        interval = 0.5
        while not stop.is_set():
            if self.poll_once():
                interval = 0.5
            else:
                interval = min(interval * 1.5, max_interval)
            stop.wait(interval)
