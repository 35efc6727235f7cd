"""In-memory storage backend for tests and local runs."""

from __future__ import annotations

import copy
import threading
from datetime import UTC, datetime
from typing import Any
from uuid import uuid4

from copilot_automation.storage.base import (
    INSTRUCTION_UPDATABLE_FIELDS,
    STEP_UPDATABLE_FIELDS,
    TASK_UPDATABLE_FIELDS,
)
from copilot_automation.storage.models import (
    CLAIMABLE_TASK_STATUSES,
    AgentTaskRecord,
    CalendarEventRecord,
    EmailMessageRecord,
    HubspotContactRecord,
    InstructionEvaluationRecord,
    InstructionMatch,
    InstructionRecord,
    TaskContextRecord,
    TaskStepRecord,
    UpsertResult,
)

_MIN_DATETIME = datetime.min.replace(tzinfo=UTC)


class InMemoryAutomationStorage:
    """Dictionary-backed implementation. Every operation holds a single lock."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._users: set[str] = set()
        self._integrations: dict[str, set[str]] = {}
        self._instructions: dict[str, InstructionRecord] = {}
        self._evaluations: list[InstructionEvaluationRecord] = []
        self._tasks: dict[str, AgentTaskRecord] = {}
        self._steps: dict[str, TaskStepRecord] = {}
        self._contexts: dict[tuple[str, str], TaskContextRecord] = {}
        self._emails: dict[tuple[str, str], EmailMessageRecord] = {}
        self._events: dict[tuple[str, str], CalendarEventRecord] = {}
        self._contacts: dict[tuple[str, str], HubspotContactRecord] = {}

    def migrate(self) -> None:
        return None

    # users and integrations

    def ensure_user(self, user_id: str) -> None:
        with self._lock:
            self._users.add(user_id)

    def connect_integration(self, user_id: str, provider: str) -> None:
        with self._lock:
            self._users.add(user_id)
            self._integrations.setdefault(user_id, set()).add(provider)

    def list_user_ids(self, user_id: str | None = None) -> list[str]:
        with self._lock:
            if user_id is not None:
                return [user_id] if user_id in self._users else []
            return sorted(self._users)

    def list_integrations(self, user_ids: list[str]) -> dict[str, set[str]]:
        with self._lock:
            return {uid: set(self._integrations.get(uid, set())) for uid in user_ids}

    # instructions

    def create_instruction(
        self,
        user_id: str,
        *,
        title: str,
        content: str,
        triggers: list[str],
        metadata: dict[str, Any] | None = None,
        status: str = "active",
    ) -> InstructionRecord:
        now = datetime.now(UTC)
        record = InstructionRecord(
            instruction_id=str(uuid4()),
            user_id=user_id,
            title=title,
            content=content,
            triggers=list(triggers),
            status=status,
            metadata=copy.deepcopy(metadata),
            created_at=now,
            updated_at=now,
        )
        with self._lock:
            self._users.add(user_id)
            self._instructions[record.instruction_id] = record
        return record.model_copy(deep=True)

    def get_instruction(self, instruction_id: str) -> InstructionRecord | None:
        with self._lock:
            current = self._instructions.get(instruction_id)
            return current.model_copy(deep=True) if current is not None else None

    def update_instruction(self, instruction_id: str, **changes: Any) -> InstructionRecord:
        _reject_unknown_fields(changes, INSTRUCTION_UPDATABLE_FIELDS)
        with self._lock:
            current = self._instructions.get(instruction_id)
            if current is None:
                raise KeyError(f"Instruction {instruction_id} does not exist")
            updated = current.model_copy(
                update={**copy.deepcopy(changes), "updated_at": datetime.now(UTC)}
            )
            self._instructions[instruction_id] = updated
            return updated.model_copy(deep=True)

    def list_instructions(
        self,
        user_id: str,
        *,
        status: str | None = None,
        limit: int | None = None,
    ) -> list[InstructionRecord]:
        with self._lock:
            items = [
                item
                for item in self._instructions.values()
                if item.user_id == user_id and (status is None or item.status == status)
            ]
        items.sort(key=lambda item: item.updated_at, reverse=True)
        if limit is not None:
            items = items[:limit]
        return [item.model_copy(deep=True) for item in items]

    def record_instruction_match(
        self,
        *,
        user_id: str,
        instruction: InstructionRecord,
        event_type: str,
        event_payload: Any,
        occurred_at: datetime,
    ) -> InstructionMatch:
        now = datetime.now(UTC)
        evaluation = InstructionEvaluationRecord(
            evaluation_id=str(uuid4()),
            user_id=user_id,
            instruction_id=instruction.instruction_id,
            event_type=event_type,
            event_payload=copy.deepcopy(event_payload),
            created_at=now,
        )
        task = AgentTaskRecord(
            task_id=str(uuid4()),
            user_id=user_id,
            instruction_id=instruction.instruction_id,
            type="instruction",
            status="pending",
            summary=instruction.title,
            metadata={
                "instructionContent": instruction.content,
                "eventType": event_type,
                "evaluationId": evaluation.evaluation_id,
            },
            created_at=now,
            updated_at=now,
        )
        seed_step = TaskStepRecord(
            step_id=str(uuid4()),
            task_id=task.task_id,
            index=0,
            title="Evaluate instruction",
            status="pending",
            input={"instruction": instruction.content, "eventType": event_type},
            created_at=now,
            updated_at=now,
        )
        with self._lock:
            current = self._instructions.get(instruction.instruction_id)
            if current is None:
                raise KeyError(f"Instruction {instruction.instruction_id} does not exist")
            self._evaluations.append(evaluation)
            self._instructions[current.instruction_id] = current.model_copy(
                update={"last_evaluated_at": occurred_at, "updated_at": now}
            )
            self._tasks[task.task_id] = task
            if event_payload is not None:
                self._contexts[(task.task_id, "event")] = TaskContextRecord(
                    task_id=task.task_id,
                    key="event",
                    value=copy.deepcopy(event_payload),
                    created_at=now,
                    updated_at=now,
                )
            self._steps[seed_step.step_id] = seed_step
        return InstructionMatch(
            instruction_id=instruction.instruction_id,
            task_id=task.task_id,
            evaluation_id=evaluation.evaluation_id,
        )

    def list_instruction_evaluations(
        self, user_id: str, *, instruction_id: str | None = None
    ) -> list[InstructionEvaluationRecord]:
        with self._lock:
            return [
                item.model_copy(deep=True)
                for item in self._evaluations
                if item.user_id == user_id
                and (instruction_id is None or item.instruction_id == instruction_id)
            ]

    # tasks

    def create_task(
        self,
        user_id: str,
        *,
        type: str,
        summary: str | None = None,
        metadata: Any = None,
        scheduled_for: datetime | None = None,
        instruction_id: str | None = None,
        context: dict[str, Any] | None = None,
        steps: list[dict[str, Any]] | None = None,
    ) -> AgentTaskRecord:
        now = datetime.now(UTC)
        task = AgentTaskRecord(
            task_id=str(uuid4()),
            user_id=user_id,
            instruction_id=instruction_id,
            type=type,
            summary=summary,
            metadata=copy.deepcopy(metadata),
            scheduled_for=scheduled_for,
            created_at=now,
            updated_at=now,
        )
        with self._lock:
            self._users.add(user_id)
            self._tasks[task.task_id] = task
            for key, value in (context or {}).items():
                self._contexts[(task.task_id, key)] = TaskContextRecord(
                    task_id=task.task_id,
                    key=key,
                    value=copy.deepcopy(value),
                    created_at=now,
                    updated_at=now,
                )
            for index, step in enumerate(steps or []):
                record = TaskStepRecord(
                    step_id=str(uuid4()),
                    task_id=task.task_id,
                    index=index,
                    title=step["title"],
                    status=step.get("status", "pending"),
                    input=copy.deepcopy(step.get("input")),
                    created_at=now,
                    updated_at=now,
                )
                self._steps[record.step_id] = record
        return task.model_copy(deep=True)

    def get_task(self, task_id: str) -> AgentTaskRecord | None:
        with self._lock:
            current = self._tasks.get(task_id)
            return current.model_copy(deep=True) if current is not None else None

    def list_tasks(
        self, user_id: str, *, status: str | None = None, limit: int = 50
    ) -> list[AgentTaskRecord]:
        with self._lock:
            items = [
                item
                for item in self._tasks.values()
                if item.user_id == user_id and (status is None or item.status == status)
            ]
        items.sort(key=lambda item: item.created_at, reverse=True)
        return [item.model_copy(deep=True) for item in items[:limit]]

    def list_due_tasks(
        self, *, now: datetime, user_id: str | None = None, limit: int = 5
    ) -> list[AgentTaskRecord]:
        with self._lock:
            items = [
                item
                for item in self._tasks.values()
                if item.status in CLAIMABLE_TASK_STATUSES
                and (user_id is None or item.user_id == user_id)
                and (item.scheduled_for is None or item.scheduled_for <= now)
            ]
        # Unscheduled tasks sort first, matching NULLS FIRST in PostgreSQL.
        items.sort(
            key=lambda item: (
                item.scheduled_for is not None,
                item.scheduled_for or _MIN_DATETIME,
                item.created_at,
            )
        )
        return [item.model_copy(deep=True) for item in items[:limit]]

    def claim_task(self, task_id: str) -> bool:
        with self._lock:
            current = self._tasks.get(task_id)
            if current is None or current.status not in CLAIMABLE_TASK_STATUSES:
                return False
            now = datetime.now(UTC)
            self._tasks[task_id] = current.model_copy(
                update={"status": "running", "started_at": now, "updated_at": now}
            )
            return True

    def update_task(self, task_id: str, **changes: Any) -> AgentTaskRecord:
        _reject_unknown_fields(changes, TASK_UPDATABLE_FIELDS)
        with self._lock:
            current = self._tasks.get(task_id)
            if current is None:
                raise KeyError(f"Task {task_id} does not exist")
            updated = current.model_copy(
                update={**copy.deepcopy(changes), "updated_at": datetime.now(UTC)}
            )
            self._tasks[task_id] = updated
            return updated.model_copy(deep=True)

    def requeue_stale_tasks(self, *, cutoff: datetime) -> list[str]:
        now = datetime.now(UTC)
        requeued: list[str] = []
        with self._lock:
            for task_id, task in list(self._tasks.items()):
                if task.status != "running" or task.started_at is None:
                    continue
                if task.started_at >= cutoff:
                    continue
                self._tasks[task_id] = task.model_copy(
                    update={"status": "pending", "updated_at": now}
                )
                self._fail_running_steps_locked(
                    task_id, {"message": "Task claim expired before completion"}, now
                )
                requeued.append(task_id)
        return requeued

    # steps and context

    def list_steps(self, task_id: str) -> list[TaskStepRecord]:
        with self._lock:
            items = [item for item in self._steps.values() if item.task_id == task_id]
        items.sort(key=lambda item: item.index)
        return [item.model_copy(deep=True) for item in items]

    def append_step(
        self,
        task_id: str,
        *,
        title: str,
        input: Any = None,
        status: str = "pending",
    ) -> TaskStepRecord:
        now = datetime.now(UTC)
        with self._lock:
            if task_id not in self._tasks:
                raise KeyError(f"Task {task_id} does not exist")
            index = sum(1 for item in self._steps.values() if item.task_id == task_id)
            record = TaskStepRecord(
                step_id=str(uuid4()),
                task_id=task_id,
                index=index,
                title=title,
                status=status,
                input=copy.deepcopy(input),
                created_at=now,
                updated_at=now,
            )
            self._steps[record.step_id] = record
        return record.model_copy(deep=True)

    def update_step(self, step_id: str, **changes: Any) -> TaskStepRecord:
        _reject_unknown_fields(changes, STEP_UPDATABLE_FIELDS)
        with self._lock:
            current = self._steps.get(step_id)
            if current is None:
                raise KeyError(f"Step {step_id} does not exist")
            updated = current.model_copy(
                update={**copy.deepcopy(changes), "updated_at": datetime.now(UTC)}
            )
            self._steps[step_id] = updated
            return updated.model_copy(deep=True)

    def fail_running_steps(self, task_id: str, *, error: Any) -> int:
        with self._lock:
            return self._fail_running_steps_locked(task_id, error, datetime.now(UTC))

    def set_context(self, task_id: str, key: str, value: Any) -> TaskContextRecord:
        now = datetime.now(UTC)
        with self._lock:
            existing = self._contexts.get((task_id, key))
            record = TaskContextRecord(
                task_id=task_id,
                key=key,
                value=copy.deepcopy(value),
                created_at=existing.created_at if existing is not None else now,
                updated_at=now,
            )
            self._contexts[(task_id, key)] = record
        return record.model_copy(deep=True)

    def list_contexts(self, task_id: str) -> list[TaskContextRecord]:
        with self._lock:
            items = [item for item in self._contexts.values() if item.task_id == task_id]
        items.sort(key=lambda item: item.created_at)
        return [item.model_copy(deep=True) for item in items]

    # synced records

    def upsert_email_message(self, record: EmailMessageRecord) -> UpsertResult:
        with self._lock:
            return _upsert(self._emails, (record.user_id, record.message_id), record)

    def upsert_calendar_event(self, record: CalendarEventRecord) -> UpsertResult:
        with self._lock:
            return _upsert(self._events, (record.user_id, record.event_id), record)

    def upsert_hubspot_contact(self, record: HubspotContactRecord) -> UpsertResult:
        with self._lock:
            return _upsert(self._contacts, (record.user_id, record.contact_id), record)

    def list_email_messages(
        self,
        user_id: str,
        *,
        subject_contains: str | None = None,
        person: str | None = None,
        sent_from: datetime | None = None,
        sent_before: datetime | None = None,
        message_ids: list[str] | None = None,
        limit: int = 10,
    ) -> list[EmailMessageRecord]:
        subject_needle = subject_contains.lower() if subject_contains else None
        person_needle = person.lower() if person else None
        with self._lock:
            candidates = [item for key, item in self._emails.items() if key[0] == user_id]
        items: list[EmailMessageRecord] = []
        for item in candidates:
            if message_ids is not None and item.message_id not in message_ids:
                continue
            if subject_needle and subject_needle not in (item.subject or "").lower():
                continue
            if person_needle:
                haystack = " ".join(
                    [item.from_address or "", *item.to_addresses, item.subject or ""]
                ).lower()
                if person_needle not in haystack:
                    continue
            if sent_from is not None and (item.sent_at is None or item.sent_at < sent_from):
                continue
            if sent_before is not None and (item.sent_at is None or item.sent_at >= sent_before):
                continue
            items.append(item)
        items.sort(key=lambda item: item.sent_at or _MIN_DATETIME, reverse=True)
        return [item.model_copy(deep=True) for item in items[:limit]]

    def list_calendar_events(
        self,
        user_id: str,
        *,
        start_from: datetime | None = None,
        start_before: datetime | None = None,
        include_unscheduled: bool = False,
        event_ids: list[str] | None = None,
        limit: int = 10,
    ) -> list[CalendarEventRecord]:
        with self._lock:
            candidates = [item for key, item in self._events.items() if key[0] == user_id]
        items: list[CalendarEventRecord] = []
        for item in candidates:
            if event_ids is not None and item.event_id not in event_ids:
                continue
            if item.start_time is None:
                if include_unscheduled:
                    items.append(item)
                continue
            if start_from is not None and item.start_time < start_from:
                continue
            if start_before is not None and item.start_time >= start_before:
                continue
            items.append(item)
        items.sort(
            key=lambda item: (item.start_time is None, item.start_time or _MIN_DATETIME)
        )
        return [item.model_copy(deep=True) for item in items[:limit]]

    def list_hubspot_contacts(
        self,
        user_id: str,
        *,
        email: str | None = None,
        name: str | None = None,
        contact_ids: list[str] | None = None,
        limit: int = 10,
    ) -> list[HubspotContactRecord]:
        email_needle = email.lower() if email else None
        name_needle = name.lower() if name else None
        with self._lock:
            candidates = [item for key, item in self._contacts.items() if key[0] == user_id]
        items: list[HubspotContactRecord] = []
        for item in candidates:
            if contact_ids is not None and item.contact_id not in contact_ids:
                continue
            if email_needle and email_needle not in (item.email or "").lower():
                continue
            if name_needle:
                full_name = f"{item.first_name or ''} {item.last_name or ''}".lower()
                if name_needle not in full_name:
                    continue
            items.append(item)
        items.sort(key=lambda item: item.last_modified_at or _MIN_DATETIME, reverse=True)
        return [item.model_copy(deep=True) for item in items[:limit]]

    def _fail_running_steps_locked(self, task_id: str, error: Any, now: datetime) -> int:
        count = 0
        for step_id, step in list(self._steps.items()):
            if step.task_id != task_id or step.status != "running":
                continue
            self._steps[step_id] = step.model_copy(
                update={
                    "status": "failed",
                    "error": copy.deepcopy(error),
                    "completed_at": now,
                    "updated_at": now,
                }
            )
            count += 1
        return count


def _reject_unknown_fields(changes: dict[str, Any], allowed: frozenset[str]) -> None:
    unknown = sorted(set(changes) - allowed)
    if unknown:
        raise ValueError(f"Unsupported update fields: {', '.join(unknown)}")


def _upsert(table: dict[tuple[str, str], Any], key: tuple[str, str], record: Any) -> UpsertResult:
    existing = table.get(key)
    if existing is None:
        table[key] = record.model_copy(deep=True)
        return "created"
    if existing.model_dump() == record.model_dump():
        return "unchanged"
    table[key] = record.model_copy(deep=True)
    return "updated"
