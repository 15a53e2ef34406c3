"""
Broadcast channel for task mutations.

The service publishes one event per committed mutation. Delivery goes to:
  1. in-process subscribers (callbacks, e.g. a reconciler in the same process)
  2. a bounded replay buffer, served to remote clients over /api/events
  3. an optional HTTP relay (an external pub/sub endpoint)

Publishing is fire-and-forget: nothing here ever raises into the caller.
A failure is logged as a BroadcastFailure and kept in ``last_failure``;
the store is already correct.
"""
import itertools
import json
import logging
import threading
from collections import deque
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Set

import requests

from .errors import BroadcastFailure

logger = logging.getLogger(__name__)

CHANNEL = "tasks"


class EventType:
    """All events published on the tasks channel."""
    TASK_CREATED = "task-created"
    TASK_UPDATED = "task-updated"
    TASK_DELETED = "task-deleted"
    TASKS_BULK_UPDATED = "tasks-bulk-updated"

    @classmethod
    def all_types(cls) -> set:
        return {
            cls.TASK_CREATED,
            cls.TASK_UPDATED,
            cls.TASK_DELETED,
            cls.TASKS_BULK_UPDATED,
        }


def event_workspaces(data: Dict[str, Any]) -> Set[str]:
    """Workspace ids of the task(s) an event payload carries."""
    if not isinstance(data, dict):
        return set()
    tasks = data.get("tasks") if isinstance(data.get("tasks"), list) else [data.get("task")]
    return {t["workspaceId"] for t in tasks if isinstance(t, dict) and t.get("workspaceId")}


class Broadcaster:
    """Pub/sub for the tasks channel with a replay buffer and optional relay."""

    def __init__(
        self,
        relay_url: Optional[str] = None,
        relay_secret: str = "",
        buffer_size: int = 1000,
        relay_timeout: float = 2.0,
    ):
        self.relay_url = relay_url
        self.relay_secret = relay_secret
        self.relay_timeout = relay_timeout
        self.subscribers: Dict[str, List[Callable]] = {}  # event_type -> callbacks
        self._buffer: deque = deque(maxlen=buffer_size)
        self._seq = itertools.count(1)
        self._lock = threading.Lock()
        self.last_failure: Optional[BroadcastFailure] = None

    def subscribe(self, event_type: str, callback: Callable[[str, Dict[str, Any]], None]) -> None:
        """Register ``callback(event_type, data)`` for an event type ("*" receives every event)."""
        with self._lock:
            self.subscribers.setdefault(event_type, []).append(callback)

    def unsubscribe(self, event_type: str, callback: Callable) -> None:
        with self._lock:
            callbacks = self.subscribers.get(event_type, [])
            if callback in callbacks:
                callbacks.remove(callback)

    def publish(self, event_type: str, data: Dict[str, Any]) -> Optional[int]:
        """
        Publish one event. Never raises.

        Returns:
            The event's sequence number, or None if it could not be recorded.
        """
        try:
            event = self._record(event_type, data)
        except Exception as e:
            self._fail(f"cannot record {event_type}: {e}", level=logging.ERROR)
            return None

        self._deliver_local(event_type, event["data"])
        if self.relay_url:
            self._relay(event)
        return event["seq"]

    def events_since(
        self,
        seq: int = 0,
        limit: int = 500,
        workspace_id: Optional[str] = None,
    ) -> List[Dict[str, Any]]:
        """
        Buffered events with a sequence number greater than ``seq``, oldest first.

        With ``workspace_id``, only events about that workspace's tasks are
        returned; sequence numbers then have gaps where other workspaces'
        events were skipped.
        """
        with self._lock:
            events = [e for e in self._buffer if e["seq"] > seq]
        if workspace_id is not None:
            events = [e for e in events if workspace_id in event_workspaces(e["data"])]
        return events[:limit]

    @property
    def last_seq(self) -> int:
        with self._lock:
            return self._buffer[-1]["seq"] if self._buffer else 0

    @property
    def first_seq(self) -> int:
        """Oldest sequence number still buffered (0 when empty)."""
        with self._lock:
            return self._buffer[0]["seq"] if self._buffer else 0

    def _record(self, event_type: str, data: Dict[str, Any]) -> Dict[str, Any]:
        if event_type not in EventType.all_types():
            raise ValueError(f"Invalid event type: {event_type}")
        # Serialize once so a non-JSON payload fails here, not in a consumer
        payload = json.loads(json.dumps(data))
        with self._lock:
            event = {
                "seq": next(self._seq),
                "channel": CHANNEL,
                "event": event_type,
                "data": payload,
                "ts": datetime.now(timezone.utc).isoformat(),
            }
            self._buffer.append(event)
        return event

    def _deliver_local(self, event_type: str, data: Dict[str, Any]) -> None:
        with self._lock:
            callbacks = list(self.subscribers.get(event_type, [])) + list(self.subscribers.get("*", []))
        for callback in callbacks:
            try:
                callback(event_type, data)
            except Exception as e:
                logger.error(f"Error in {event_type} subscriber: {e}")

    def _relay(self, event: Dict[str, Any]) -> None:
        headers = {"Content-Type": "application/json"}
        if self.relay_secret:
            headers["X-API-Key"] = self.relay_secret
        try:
            r = requests.post(
                self.relay_url,
                data=json.dumps(event),
                headers=headers,
                timeout=self.relay_timeout,
            )
            if not r.ok:
                self._fail(
                    f"relay rejected {event['event']} seq={event['seq']} (HTTP {r.status_code})"
                )
        except requests.RequestException as e:
            self._fail(f"relay unreachable for {event['event']} seq={event['seq']}: {e}")

    def _fail(self, message: str, level: int = logging.WARNING) -> None:
        failure = BroadcastFailure(message)
        self.last_failure = failure
        logger.log(level, f"Broadcast failed ({failure.category}): {failure}")

