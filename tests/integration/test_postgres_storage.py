import threading
from datetime import UTC, datetime, timedelta

from copilot_automation.instructions import InstructionEvent, InstructionMatcher, InstructionService
from copilot_automation.storage.models import EmailMessageRecord, HubspotContactRecord
from copilot_automation.tasks import TaskService


def test_instruction_match_persists_task_graph(pg_storage, user_id) -> None:
    instruction = InstructionService(pg_storage).create(
        user_id, title="Welcome", content="Send a welcome email.", triggers=["hubspot.contact_created"]
    )

    matches = InstructionMatcher(pg_storage).evaluate(
        user_id, InstructionEvent(type="hubspot.contact_created", payload={"contactId": "c-1"})
    )

    assert len(matches) == 1
    task = pg_storage.get_task(matches[0].task_id)
    assert task.instruction_id == instruction.instruction_id
    assert task.metadata["eventType"] == "hubspot.contact_created"
    assert [step.title for step in pg_storage.list_steps(task.task_id)] == ["Evaluate instruction"]
    assert pg_storage.list_contexts(task.task_id)[0].value == {"contactId": "c-1"}
    assert pg_storage.get_instruction(instruction.instruction_id).last_evaluated_at is not None


def test_concurrent_claims_have_one_winner(pg_storage, user_id) -> None:
    service = TaskService(pg_storage)
    task = service.create_task(user_id, type="manual", summary="Race")
    barrier = threading.Barrier(4)
    results: list[bool] = []

    def _claim() -> None:
        barrier.wait()
        results.append(service.claim(task.task_id))

    threads = [threading.Thread(target=_claim) for _ in range(4)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert results.count(True) == 1


def test_due_tasks_and_step_lifecycle(pg_storage, user_id) -> None:
    service = TaskService(pg_storage)
    now = datetime.now(UTC)
    scheduled = service.create_task(user_id, type="followUp", scheduled_for=now - timedelta(hours=1))
    asap = service.create_task(user_id, type="manual", summary="Now")
    service.create_task(user_id, type="followUp", scheduled_for=now + timedelta(days=1))

    due = service.list_due_tasks(user_id=user_id, limit=10, now=now)
    assert [item.task_id for item in due] == [asap.task_id, scheduled.task_id]

    assert service.claim(asap.task_id)
    step = service.next_step(service.load_bundle(asap.task_id))
    assert step.status == "running"
    assert service.fail_running_steps(asap.task_id, "boom") == 1
    failed = service.finish_task(asap.task_id, "failed", error_message="boom")
    assert failed.status == "failed"
    assert pg_storage.list_steps(asap.task_id)[0].error == "boom"


def test_synced_record_upserts_report_changes(pg_storage, user_id) -> None:
    email = EmailMessageRecord(
        user_id=user_id,
        message_id="m-1",
        subject="Quarterly statement",
        to_addresses=["a@b.com"],
        sent_at=datetime(2025, 1, 2, tzinfo=UTC),
    )
    contact = HubspotContactRecord(user_id=user_id, contact_id="hs-1", email="sara@client.com")

    assert pg_storage.upsert_email_message(email) == "created"
    assert pg_storage.upsert_email_message(email) == "unchanged"
    assert pg_storage.upsert_email_message(email.model_copy(update={"subject": "Updated"})) == "updated"
    assert pg_storage.upsert_hubspot_contact(contact) == "created"

    assert [item.subject for item in pg_storage.list_email_messages(user_id, subject_contains="upd")] == [
        "Updated"
    ]
    assert pg_storage.list_hubspot_contacts(user_id, email="SARA@client.com")[0].contact_id == "hs-1"
