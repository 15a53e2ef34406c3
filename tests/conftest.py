"""Shared fixtures: a temporary store seeded with one workspace, and the service around it."""

from datetime import datetime, timedelta, timezone

import pytest

from pkg.taskboard.events import Broadcaster
from pkg.taskboard.schema import Member, MemberRole, Project
from pkg.taskboard.service import TaskMutationService
from pkg.taskboard.store import TaskStore

WORKSPACE = "ws-1"
OTHER_WORKSPACE = "ws-2"
START = datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)


class FakeClock:
    """Deterministic clock for the service; advance() moves it forward."""

    def __init__(self, now: datetime = START):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


@pytest.fixture
def store(tmp_path):
    store = TaskStore(str(tmp_path / "board.db"))
    # ws-1: ada (member), bob (admin), eve (member, never assigned)
    store.save_member(Member(id="m-ada", workspace_id=WORKSPACE, user_id="ada", name="Ada"))
    store.save_member(Member(id="m-bob", workspace_id=WORKSPACE, user_id="bob",
                             role=MemberRole.ADMIN, name="Bob"))
    store.save_member(Member(id="m-eve", workspace_id=WORKSPACE, user_id="eve",
                             email="eve@example.com"))
    # ws-2: mal only
    store.save_member(Member(id="m-mal", workspace_id=OTHER_WORKSPACE, user_id="mal", name="Mal"))
    store.save_project(Project(id="p-1", workspace_id=WORKSPACE, name="Launch"))
    store.save_project(Project(id="p-2", workspace_id=OTHER_WORKSPACE, name="Other"))
    return store


@pytest.fixture
def broadcaster():
    return Broadcaster()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def service(store, broadcaster, clock):
    return TaskMutationService(store, broadcaster, clock=clock)


@pytest.fixture
def make_task(service):
    """Create a task through the service; keyword args override the payload."""
    def _make(name="Task", status="TODO", actor="ada", **overrides):
        payload = {
            "name": name,
            "status": status,
            "workspaceId": WORKSPACE,
            "projectId": "p-1",
            "dueDate": "2026-03-10T00:00:00Z",
            "assigneeId": ["m-ada"],
        }
        payload.update(overrides)
        return service.create(actor, payload)
    return _make
