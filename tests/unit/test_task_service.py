import threading
from datetime import UTC, datetime, timedelta

import pytest

from copilot_automation.errors import TaskClaimConflict
from copilot_automation.tasks import TaskService, merge_metadata


def test_claim_only_succeeds_once(storage) -> None:
    service = TaskService(storage)
    task = service.create_task("user-1", type="manual", summary="Call back")

    assert service.claim(task.task_id) is True
    assert service.claim(task.task_id) is False

    claimed = storage.get_task(task.task_id)
    assert claimed.status == "running"
    assert claimed.started_at is not None


def test_require_claim_raises_conflict_on_second_claim(storage) -> None:
    service = TaskService(storage)
    task = service.create_task("user-1", type="manual")
    service.require_claim(task.task_id)

    with pytest.raises(TaskClaimConflict):
        service.require_claim(task.task_id)


def test_concurrent_claims_have_exactly_one_winner(storage) -> None:
    service = TaskService(storage)
    task = service.create_task("user-1", type="manual", summary="Race")
    results: list[bool] = []
    barrier = threading.Barrier(8)

    def _claim() -> None:
        barrier.wait()
        results.append(service.claim(task.task_id))

    threads = [threading.Thread(target=_claim) for _ in range(8)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert results.count(True) == 1
    assert results.count(False) == 7


def test_terminal_tasks_are_not_claimable(storage) -> None:
    service = TaskService(storage)
    task = service.create_task("user-1", type="manual")
    service.finish_task(task.task_id, "completed", summary="done")

    assert service.claim(task.task_id) is False


def test_due_tasks_order_unscheduled_first_then_by_time(storage) -> None:
    service = TaskService(storage)
    now = datetime(2025, 5, 1, 12, 0, tzinfo=UTC)
    later = service.create_task("user-1", type="followUp", scheduled_for=now - timedelta(minutes=5))
    earlier = service.create_task("user-1", type="followUp", scheduled_for=now - timedelta(hours=2))
    asap = service.create_task("user-1", type="manual")
    service.create_task("user-1", type="followUp", scheduled_for=now + timedelta(hours=1))
    service.create_task("user-2", type="manual")

    due = service.list_due_tasks(user_id="user-1", limit=10, now=now)

    assert [item.task_id for item in due] == [asap.task_id, earlier.task_id, later.task_id]


def test_due_tasks_respect_limit(storage) -> None:
    service = TaskService(storage)
    for _ in range(4):
        service.create_task("user-1", type="manual")

    assert len(service.list_due_tasks(user_id="user-1", limit=3)) == 3


def test_next_step_reuses_open_step_and_marks_it_running(storage) -> None:
    service = TaskService(storage)
    task = service.create_task(
        "user-1",
        type="manual",
        summary="Prepare review",
        steps=[{"title": "Collect documents", "input": {"client": "Acme"}}],
    )

    step = service.next_step(service.load_bundle(task.task_id))

    assert step.index == 0
    assert step.title == "Collect documents"
    assert step.status == "running"
    assert step.started_at is not None


def test_next_step_appends_when_all_steps_are_done(storage) -> None:
    service = TaskService(storage)
    task = service.create_task("user-1", type="manual", summary="Quarterly review")
    first = service.next_step(service.load_bundle(task.task_id))
    service.finish_step(first.step_id, "completed", output={"assistant": "ok"})

    second = service.next_step(service.load_bundle(task.task_id))

    assert first.title == "Quarterly review"
    assert second.index == 1
    assert second.status == "running"
    running = [step for step in storage.list_steps(task.task_id) if step.status == "running"]
    assert len(running) == 1


def test_next_step_defaults_title_without_summary(storage) -> None:
    service = TaskService(storage)
    task = service.create_task("user-1", type="manual")

    assert service.next_step(service.load_bundle(task.task_id)).title == "Process task"


def test_finish_task_status_rules(storage) -> None:
    service = TaskService(storage)
    task = service.create_task("user-1", type="manual")

    failed = service.finish_task(task.task_id, "failed")
    assert failed.error_message == "Task failed"

    completed = service.finish_task(task.task_id, "completed", summary="All good")
    assert completed.error_message is None
    assert completed.completed_at is not None
    assert completed.summary == "All good"

    cancelled = service.finish_task(task.task_id, "cancelled")
    assert cancelled.cancelled_at is not None


def test_fail_running_steps_only_touches_running(storage) -> None:
    service = TaskService(storage)
    task = service.create_task(
        "user-1", type="manual", steps=[{"title": "one"}, {"title": "two"}]
    )
    service.next_step(service.load_bundle(task.task_id))

    assert service.fail_running_steps(task.task_id, "boom") == 1
    statuses = [(step.status, step.error) for step in storage.list_steps(task.task_id)]
    assert statuses == [("failed", "boom"), ("pending", None)]


def test_requeue_stale_tasks_only_moves_old_running_tasks(storage) -> None:
    service = TaskService(storage)
    stale = service.create_task("user-1", type="manual", steps=[{"title": "work"}])
    fresh = service.create_task("user-1", type="manual")
    pending = service.create_task("user-1", type="manual")
    service.claim(stale.task_id)
    service.next_step(service.load_bundle(stale.task_id))
    service.claim(fresh.task_id)

    requeued = service.requeue_stale_tasks(
        timedelta(minutes=30), now=datetime.now(UTC) + timedelta(hours=1)
    )
    assert set(requeued) == {stale.task_id, fresh.task_id}

    service.claim(fresh.task_id)
    assert service.requeue_stale_tasks(timedelta(minutes=30)) == []
    assert storage.get_task(stale.task_id).status == "pending"
    assert storage.get_task(pending.task_id).status == "pending"
    assert storage.list_steps(stale.task_id)[0].status == "failed"


def test_merge_metadata_rules() -> None:
    assert merge_metadata({"a": 1}, None) == {"a": 1}
    assert merge_metadata(None, {"b": 2}) == {"b": 2}
    assert merge_metadata({"a": 1, "b": 1}, {"b": 2}) == {"a": 1, "b": 2}
    assert merge_metadata({"a": 1}, ["x"]) == ["x"]
    assert merge_metadata("old", {"a": 1}) == {"a": 1}
    assert merge_metadata(None, None) is None
