#!/usr/bin/env python3
"""
Quick verification that the task board works end-to-end.
"""
import tempfile
from datetime import timedelta
from pathlib import Path

from pkg.taskboard.events import Broadcaster
from pkg.taskboard.reconciler import BoardState
from pkg.taskboard.schema import Member, MemberRole, Project, TaskStatus, utc_now
from pkg.taskboard.service import TaskMutationService
from pkg.taskboard.store import TaskStore
from pkg.taskboard.timelog import format_duration


def main():
    print("=" * 60)
    print("Task Board Verification")
    print("=" * 60)

    db_path = Path(tempfile.mkdtemp()) / "board.db"

    print("\n[1/6] Creating SQLite store and seeding workspace...")
    store = TaskStore(str(db_path))
    store.save_member(Member(id="m-ada", workspace_id="ws-1", user_id="ada", name="Ada"))
    store.save_member(Member(id="m-bob", workspace_id="ws-1", user_id="bob",
                             role=MemberRole.ADMIN, name="Bob"))
    store.save_project(Project(id="p-1", workspace_id="ws-1", name="Launch"))
    print("✅ Store created")

    print("\n[2/6] Wiring broadcaster, service and a client-side board...")
    clock = {"now": utc_now()}
    broadcaster = Broadcaster()
    service = TaskMutationService(store, broadcaster, clock=lambda: clock["now"])
    board = BoardState(workspace_id="ws-1", actor_id="ada")
    broadcaster.subscribe("*", board.apply_event)
    print("✅ Components initialized")

    print("\n[3/6] Creating tasks...")
    due = (clock["now"] + timedelta(days=3)).isoformat()
    for name in ("Write brief", "Design mockups", "Ship it"):
        task = service.create("ada", {
            "name": name, "status": "TODO", "workspaceId": "ws-1",
            "projectId": "p-1", "dueDate": due, "assigneeId": ["m-ada"],
        })
        print(f"   → {task.id} {task.name} @ {task.position}")
    print(f"✅ TODO column: {[t.position for t in board.partition(TaskStatus.TODO)]}")

    print("\n[4/6] Dragging the first card into IN_PROGRESS...")
    updates = board.local_drag(TaskStatus.TODO, 0, TaskStatus.IN_PROGRESS, 0)
    service.bulk_update("ada", {"tasks": [u.to_dict() for u in updates]})
    moved = store.get(updates[0].id)
    print(f"✅ {moved.name}: {moved.status.value}, open time log: {moved.time_logs[-1].is_open}")

    print("\n[5/6] Finishing the task 90 minutes later...")
    clock["now"] = clock["now"] + timedelta(minutes=90)
    done = service.patch("ada", moved.id, {"status": "DONE"})
    print(f"✅ {done.name}: {done.status.value}, time spent {format_duration(done.total_time_spent)}")

    print("\n[6/6] Time analytics...")
    report = service.time_analytics("bob", "ws-1")
    for row in report["members"]:
        print(f"   {row['name']:<8} {row['totalFormatted']}")

    print("\n" + "=" * 60)
    print("✅ ALL CHECKS PASSED")
    print("=" * 60)
    print(f"\nTest database: {db_path}")


if __name__ == "__main__":
    main()
