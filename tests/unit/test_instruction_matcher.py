from datetime import UTC, datetime

import pytest

from copilot_automation.errors import InstructionValidationError, NotFoundError
from copilot_automation.instructions import (
    InstructionEvent,
    InstructionMatcher,
    InstructionService,
    normalize_triggers,
)


def test_matching_event_creates_task_context_and_seed_step(storage) -> None:
    service = InstructionService(storage)
    instruction = service.create(
        "user-1",
        title="Welcome new contacts",
        content="Send a welcome email to every new HubSpot contact.",
        triggers=["hubspot.contact_created"],
    )
    matcher = InstructionMatcher(storage)
    occurred_at = datetime(2025, 3, 4, 9, 30, tzinfo=UTC)

    matches = matcher.evaluate(
        "user-1",
        InstructionEvent(
            type="hubspot.contact_created",
            payload={"contactId": "c-1", "email": "new@client.com"},
            occurred_at=occurred_at,
        ),
    )

    assert len(matches) == 1
    task = storage.get_task(matches[0].task_id)
    assert task is not None
    assert task.type == "instruction"
    assert task.status == "pending"
    assert task.summary == "Welcome new contacts"
    assert task.instruction_id == instruction.instruction_id
    assert task.metadata == {
        "instructionContent": instruction.content,
        "eventType": "hubspot.contact_created",
        "evaluationId": matches[0].evaluation_id,
    }

    steps = storage.list_steps(task.task_id)
    assert [(step.index, step.title, step.status) for step in steps] == [
        (0, "Evaluate instruction", "pending")
    ]
    assert steps[0].input == {
        "instruction": instruction.content,
        "eventType": "hubspot.contact_created",
    }

    contexts = storage.list_contexts(task.task_id)
    assert [(item.key, item.value) for item in contexts] == [
        ("event", {"contactId": "c-1", "email": "new@client.com"})
    ]

    evaluations = storage.list_instruction_evaluations("user-1")
    assert len(evaluations) == 1
    assert evaluations[0].outcome == "matched"
    assert storage.get_instruction(instruction.instruction_id).last_evaluated_at == occurred_at


def test_non_matching_and_inactive_instructions_are_ignored(storage) -> None:
    service = InstructionService(storage)
    service.create("user-1", title="A", content="a", triggers=["gmail.message_created"])
    paused = service.create("user-1", title="B", content="b", triggers=["calendar.event_created"])
    service.update("user-1", paused.instruction_id, status="paused")
    service.create("user-2", title="C", content="c", triggers=["calendar.event_created"])

    matches = InstructionMatcher(storage).evaluate(
        "user-1", InstructionEvent(type="calendar.event_created")
    )

    assert matches == []
    assert storage.list_tasks("user-1") == []


def test_trigger_match_is_exact_and_event_without_payload_has_no_context(storage) -> None:
    service = InstructionService(storage)
    service.create("user-1", title="Mail", content="m", triggers=["gmail.message"])
    exact = service.create("user-1", title="Exact", content="e", triggers=["gmail.message_created"])

    matches = InstructionMatcher(storage).evaluate(
        "user-1", InstructionEvent(type="gmail.message_created")
    )

    assert [match.instruction_id for match in matches] == [exact.instruction_id]
    assert storage.list_contexts(matches[0].task_id) == []


def test_repeated_events_are_not_deduplicated(storage) -> None:
    InstructionService(storage).create(
        "user-1", title="Log", content="l", triggers=["gmail.message_created"]
    )
    matcher = InstructionMatcher(storage)
    event = InstructionEvent(type="gmail.message_created", payload={"messageId": "m-1"})

    first = matcher.evaluate("user-1", event)
    second = matcher.evaluate("user-1", event)

    assert first[0].task_id != second[0].task_id
    assert len(storage.list_tasks("user-1")) == 2


def test_active_instruction_requires_triggers(storage) -> None:
    service = InstructionService(storage)
    with pytest.raises(InstructionValidationError):
        service.create("user-1", title="Empty", content="x", triggers=["  ", ""])

    paused = service.create("user-1", title="Later", content="x", triggers=[], status="paused")
    with pytest.raises(InstructionValidationError):
        service.update("user-1", paused.instruction_id, status="active")


def test_get_rejects_other_users_instruction(storage) -> None:
    service = InstructionService(storage)
    instruction = service.create("user-1", title="Mine", content="x", triggers=["a.b"])

    with pytest.raises(NotFoundError):
        service.get("user-2", instruction.instruction_id)


def test_normalize_triggers_strips_and_dedupes() -> None:
    assert normalize_triggers([" gmail.message_created ", "", "gmail.message_created", "a"]) == [
        "gmail.message_created",
        "a",
    ]
