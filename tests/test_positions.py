"""
Tests for position allocation and drag rebalancing.
"""
from pkg.taskboard.positions import (
    MAX_POSITION, MIN_POSITION, apply_updates, clamp_position, next_position,
    position_for_index, rebalance, renumber,
)
from pkg.taskboard.schema import PositionUpdate, Task, TaskStatus


def _tasks(status, *positions):
    return [
        Task(id=f"{status.value.lower()}-{i}", workspace_id="ws-1", name=f"t{i}",
             status=status, position=p)
        for i, p in enumerate(positions)
    ]


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Allocation
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


class TestAllocation:

    def test_empty_partition_starts_at_floor(self):
        assert next_position(None) == MIN_POSITION

    def test_appends_one_step_after_highest(self):
        assert next_position(3000) == 4000

    def test_append_clamps_at_ceiling(self):
        assert next_position(MAX_POSITION) == MAX_POSITION
        assert next_position(999_500) == MAX_POSITION

    def test_position_for_index(self):
        assert position_for_index(0) == 1000
        assert position_for_index(4) == 5000

    def test_index_beyond_capacity_collides_at_ceiling(self):
        assert position_for_index(999) == MAX_POSITION
        assert position_for_index(1500) == MAX_POSITION

    def test_clamp_floor(self):
        assert clamp_position(0) == MIN_POSITION
        assert clamp_position(-50) == MIN_POSITION


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Renumbering
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


class TestRenumber:

    def test_contiguous_partition_needs_nothing(self):
        tasks = _tasks(TaskStatus.TODO, 1000, 2000, 3000)
        assert renumber(tasks, TaskStatus.TODO) == []

    def test_gaps_are_closed(self):
        tasks = _tasks(TaskStatus.TODO, 1000, 5000, 9000)
        updates = renumber(tasks, TaskStatus.TODO)
        assert [(u.id, u.position) for u in updates] == [("todo-1", 2000), ("todo-2", 3000)]

    def test_status_mismatch_is_emitted(self):
        tasks = _tasks(TaskStatus.BACKLOG, 1000)
        updates = renumber(tasks, TaskStatus.DONE)
        assert updates == [PositionUpdate(id="backlog-0", status=TaskStatus.DONE, position=1000)]

    def test_always_forces_an_instruction(self):
        tasks = _tasks(TaskStatus.TODO, 1000, 2000)
        updates = renumber(tasks, TaskStatus.TODO, always="todo-0")
        assert [u.id for u in updates] == ["todo-0"]


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Rebalancing
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


class TestRebalance:

    def test_cross_column_move(self):
        backlog = _tasks(TaskStatus.BACKLOG, 1000, 2000, 3000)
        todo = _tasks(TaskStatus.TODO, 1000, 2000, 3000)
        moved = backlog.pop(0)
        moved.status = TaskStatus.TODO
        todo.insert(1, moved)

        updates = rebalance(todo, TaskStatus.TODO, backlog, TaskStatus.BACKLOG, moved_id=moved.id)

        by_id = {u.id: u for u in updates}
        assert by_id["backlog-0"] == PositionUpdate("backlog-0", TaskStatus.TODO, 2000)
        assert by_id["todo-1"].position == 3000
        assert by_id["todo-2"].position == 4000
        assert by_id["backlog-1"] == PositionUpdate("backlog-1", TaskStatus.BACKLOG, 1000)
        assert by_id["backlog-2"] == PositionUpdate("backlog-2", TaskStatus.BACKLOG, 2000)
        assert "todo-0" not in by_id

    def test_destination_updates_come_first(self):
        backlog = _tasks(TaskStatus.BACKLOG, 1000, 2000)
        todo = _tasks(TaskStatus.TODO, 1000)
        moved = backlog.pop(0)
        todo.append(moved)
        updates = rebalance(todo, TaskStatus.TODO, backlog, TaskStatus.BACKLOG, moved_id=moved.id)
        assert [u.status for u in updates] == [TaskStatus.TODO, TaskStatus.BACKLOG]

    def test_moved_task_emitted_even_when_position_matches(self):
        backlog = _tasks(TaskStatus.BACKLOG, 1000)
        todo = []
        moved = backlog.pop(0)
        moved.status = TaskStatus.TODO
        todo.append(moved)
        updates = rebalance(todo, TaskStatus.TODO, backlog, TaskStatus.BACKLOG, moved_id=moved.id)
        assert updates == [PositionUpdate("backlog-0", TaskStatus.TODO, 1000)]

    def test_same_column_reorder_ignores_source(self):
        todo = _tasks(TaskStatus.TODO, 1000, 2000, 3000)
        moved = todo.pop(2)
        todo.insert(0, moved)
        updates = rebalance(todo, TaskStatus.TODO, moved_id=moved.id)
        assert [(u.id, u.position) for u in updates] == [
            ("todo-2", 1000), ("todo-0", 2000), ("todo-1", 3000),
        ]

    def test_apply_updates_in_place(self):
        todo = _tasks(TaskStatus.TODO, 1000, 2000)
        apply_updates(todo, [PositionUpdate("todo-1", TaskStatus.DONE, 1000)])
        assert todo[1].status == TaskStatus.DONE
        assert todo[1].position == 1000
        assert todo[0].position == 1000
