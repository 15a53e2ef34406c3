"""
Tests for the broadcast channel: local delivery, replay buffer, HTTP relay.
"""
from unittest.mock import MagicMock, patch

import requests

from pkg.taskboard.errors import BroadcastFailure
from pkg.taskboard.events import CHANNEL, Broadcaster, EventType, event_workspaces


class TestLocalDelivery:

    def setup_method(self):
        self.b = Broadcaster()
        self.received = []

    def _record(self, event_type, data):
        self.received.append((event_type, data))

    def test_typed_subscription(self):
        self.b.subscribe(EventType.TASK_CREATED, self._record)
        self.b.publish(EventType.TASK_CREATED, {"task": {"id": "t1"}})
        self.b.publish(EventType.TASK_DELETED, {"taskId": "t1"})
        assert self.received == [(EventType.TASK_CREATED, {"task": {"id": "t1"}})]

    def test_wildcard_subscription(self):
        self.b.subscribe("*", self._record)
        self.b.publish(EventType.TASK_CREATED, {"task": {"id": "t1"}})
        self.b.publish(EventType.TASKS_BULK_UPDATED, {"tasks": []})
        assert [e for e, _ in self.received] == [EventType.TASK_CREATED, EventType.TASKS_BULK_UPDATED]

    def test_unsubscribe(self):
        self.b.subscribe("*", self._record)
        self.b.unsubscribe("*", self._record)
        self.b.publish(EventType.TASK_CREATED, {"task": {}})
        assert self.received == []

    def test_failing_subscriber_does_not_block_others(self):
        def broken(event_type, data):
            raise RuntimeError("boom")
        self.b.subscribe("*", broken)
        self.b.subscribe("*", self._record)
        assert self.b.publish(EventType.TASK_UPDATED, {"task": {}}) == 1
        assert len(self.received) == 1

    def test_invalid_event_type_not_recorded(self):
        self.b.subscribe("*", self._record)
        assert self.b.publish("task-archived", {}) is None
        assert self.received == []
        assert self.b.last_seq == 0

    def test_non_json_payload_not_recorded(self):
        assert self.b.publish(EventType.TASK_CREATED, {"task": object()}) is None


class TestReplayBuffer:

    def test_sequence_and_shape(self):
        b = Broadcaster()
        b.publish(EventType.TASK_CREATED, {"task": {"id": "t1"}})
        b.publish(EventType.TASK_DELETED, {"taskId": "t1"})
        events = b.events_since(0)
        assert [e["seq"] for e in events] == [1, 2]
        assert events[0]["channel"] == CHANNEL
        assert events[1]["event"] == EventType.TASK_DELETED
        assert b.last_seq == 2

    def test_events_since(self):
        b = Broadcaster()
        for i in range(5):
            b.publish(EventType.TASK_UPDATED, {"task": {"id": f"t{i}"}})
        assert [e["seq"] for e in b.events_since(3)] == [4, 5]
        assert [e["seq"] for e in b.events_since(0, limit=2)] == [1, 2]
        assert b.events_since(5) == []

    def test_buffer_is_bounded(self):
        b = Broadcaster(buffer_size=3)
        for i in range(5):
            b.publish(EventType.TASK_UPDATED, {"task": {"id": f"t{i}"}})
        assert [e["seq"] for e in b.events_since(0)] == [3, 4, 5]
        assert b.first_seq == 3
        assert Broadcaster().first_seq == 0

    def test_events_filtered_by_workspace(self):
        b = Broadcaster()
        b.publish(EventType.TASK_CREATED, {"task": {"id": "a", "workspaceId": "ws-1"}})
        b.publish(EventType.TASK_CREATED, {"task": {"id": "b", "workspaceId": "ws-2"}})
        b.publish(EventType.TASK_DELETED, {"taskId": "b", "task": {"id": "b", "workspaceId": "ws-2"}})
        b.publish(EventType.TASKS_BULK_UPDATED, {"tasks": [{"id": "a", "workspaceId": "ws-1"}]})
        assert [e["seq"] for e in b.events_since(0, workspace_id="ws-1")] == [1, 4]
        assert [e["seq"] for e in b.events_since(0, workspace_id="ws-2")] == [2, 3]
        assert b.events_since(0, workspace_id="ws-3") == []

    def test_event_workspaces(self):
        assert event_workspaces({"task": {"workspaceId": "ws-1"}}) == {"ws-1"}
        assert event_workspaces({"tasks": [{"workspaceId": "ws-1"}, {"workspaceId": "ws-2"}]}) == {"ws-1", "ws-2"}
        assert event_workspaces({"taskId": "t1"}) == set()
        assert event_workspaces(["not", "a", "dict"]) == set()

    def test_payload_is_a_snapshot(self):
        b = Broadcaster()
        data = {"task": {"name": "before"}}
        b.publish(EventType.TASK_UPDATED, data)
        data["task"]["name"] = "after"
        assert b.events_since(0)[0]["data"]["task"]["name"] == "before"


class TestRelay:

    def test_posts_event_with_secret(self):
        b = Broadcaster(relay_url="http://relay.local/publish", relay_secret="s3cret")
        with patch("pkg.taskboard.events.requests.post") as post:
            post.return_value = MagicMock(ok=True, status_code=200)
            b.publish(EventType.TASK_CREATED, {"task": {"id": "t1"}})
        args, kwargs = post.call_args
        assert args[0] == "http://relay.local/publish"
        assert kwargs["headers"]["X-API-Key"] == "s3cret"
        assert '"task-created"' in kwargs["data"]

    def test_relay_failure_is_swallowed(self):
        b = Broadcaster(relay_url="http://relay.local/publish")
        with patch("pkg.taskboard.events.requests.post",
                   side_effect=requests.ConnectionError("refused")):
            assert b.publish(EventType.TASK_CREATED, {"task": {"id": "t1"}}) == 1
        assert b.last_seq == 1
        assert isinstance(b.last_failure, BroadcastFailure)
        assert "unreachable" in b.last_failure.message

    def test_relay_rejection_is_swallowed(self):
        b = Broadcaster(relay_url="http://relay.local/publish")
        with patch("pkg.taskboard.events.requests.post") as post:
            post.return_value = MagicMock(ok=False, status_code=500)
            assert b.publish(EventType.TASK_DELETED, {"taskId": "t1"}) == 1
        assert isinstance(b.last_failure, BroadcastFailure)
        assert "HTTP 500" in b.last_failure.message

    def test_failure_logged_with_category(self, caplog):
        b = Broadcaster(relay_url="http://relay.local/publish")
        with patch("pkg.taskboard.events.requests.post",
                   side_effect=requests.Timeout("slow")):
            b.publish(EventType.TASK_CREATED, {"task": {"id": "t1"}})
        assert "Broadcast failed (broadcast): relay unreachable" in caplog.text

    def test_unrecordable_event_sets_failure(self):
        b = Broadcaster()
        assert b.publish("task-archived", {}) is None
        assert b.last_failure.category == "broadcast"
