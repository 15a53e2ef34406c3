"""
Tests for the data model: enums, timestamps, wire serialization.
"""
from datetime import datetime, timedelta, timezone

import pytest

from pkg.taskboard.schema import (
    Member, MemberRole, Project, Task, TaskStatus, TimeLog, make_id, parse_ts,
)

T0 = datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)


def test_status_from_str():
    assert TaskStatus.from_str("IN_PROGRESS") == TaskStatus.IN_PROGRESS
    assert TaskStatus.from_str("todo") == TaskStatus.TODO
    assert TaskStatus.from_str(TaskStatus.DONE) == TaskStatus.DONE
    with pytest.raises(ValueError):
        TaskStatus.from_str("ARCHIVED")


def test_role_defaults_to_member():
    assert MemberRole.from_str("admin") == MemberRole.ADMIN
    assert MemberRole.from_str("owner") == MemberRole.MEMBER


def test_parse_ts_handles_z_and_naive():
    assert parse_ts("2026-03-02T09:00:00Z") == T0
    assert parse_ts("2026-03-02T09:00:00") == T0
    assert parse_ts(None) is None
    assert parse_ts("") is None


def test_make_id_format():
    task_id = make_id("task")
    prefix, ts, rand = task_id.split("-")
    assert prefix == "task"
    assert ts.isdigit()
    assert len(rand) == 8
    assert make_id() != make_id()


class TestTaskSerialization:

    def _task(self):
        task = Task(
            id="task-1", workspace_id="ws-1", name="Ship", status=TaskStatus.IN_REVIEW,
            project_id="p-1", assignee_ids=["m-ada"], due_date=T0, position=3000,
            time_logs=[
                TimeLog(id="l1", started_at=T0, ended_at=T0 + timedelta(minutes=45)),
                TimeLog(id="l2", started_at=T0 + timedelta(hours=2)),
            ],
            created_at=T0, updated_at=T0,
        )
        task.assignees = [Member(id="m-ada", workspace_id="ws-1", user_id="ada", name="Ada")]
        task.project = Project(id="p-1", workspace_id="ws-1", name="Launch", image_url="x.png")
        return task

    def test_wire_shape(self):
        data = self._task().to_dict()
        assert data["assigneeId"] == ["m-ada"]
        assert data["status"] == "IN_REVIEW"
        assert data["totalTimeSpent"] == 45 * 60
        assert "ended_at" not in data["timeLogs"][1]
        assert "assignees" not in data

    def test_public_shape_is_denormalized(self):
        data = self._task().to_public_dict()
        assert data["assignees"][0]["userId"] == "ada"
        assert data["project"]["imageUrl"] == "x.png"

    def test_from_public_dict(self):
        original = self._task()
        task = Task.from_dict(original.to_public_dict())
        assert task.status == TaskStatus.IN_REVIEW
        assert task.position == 3000
        assert task.time_logs[1].is_open
        assert task.assignees[0].user_id == "ada"
        assert task.project.name == "Launch"

    def test_time_logs_as_json_string(self):
        data = self._task().to_dict()
        data["timeLogs"] = '[{"id": "x", "started_at": "2026-03-02T09:00:00Z"}]'
        task = Task.from_dict(data)
        assert task.time_logs[0].started_at == T0

    def test_member_name_falls_back_to_email(self):
        member = Member(id="m-1", workspace_id="ws-1", user_id="u", email="u@example.com")
        assert member.to_dict()["name"] == "u@example.com"
