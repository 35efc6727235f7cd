"""Storage interface for instructions, agent tasks and synced records."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Protocol

from copilot_automation.storage.models import (
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

# Columns callers may change through update_instruction / update_task / update_step.
INSTRUCTION_UPDATABLE_FIELDS = frozenset({"title", "content", "triggers", "status", "metadata"})
TASK_UPDATABLE_FIELDS = frozenset(
    {
        "status",
        "summary",
        "error_message",
        "metadata",
        "scheduled_for",
        "started_at",
        "completed_at",
        "cancelled_at",
    }
)
STEP_UPDATABLE_FIELDS = frozenset(
    {"title", "status", "input", "output", "error", "started_at", "completed_at"}
)


class AutomationStorage(Protocol):
    def migrate(self) -> None: ...

    # users and integrations
    def ensure_user(self, user_id: str) -> None: ...

    def connect_integration(self, user_id: str, provider: str) -> None: ...

    def list_user_ids(self, user_id: str | None = None) -> list[str]: ...

    def list_integrations(self, user_ids: list[str]) -> dict[str, set[str]]: ...

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
    ) -> InstructionRecord: ...

    def get_instruction(self, instruction_id: str) -> InstructionRecord | None: ...

    def update_instruction(self, instruction_id: str, **changes: Any) -> InstructionRecord: ...

    def list_instructions(
        self,
        user_id: str,
        *,
        status: str | None = None,
        limit: int | None = None,
    ) -> list[InstructionRecord]: ...

    def record_instruction_match(
        self,
        *,
        user_id: str,
        instruction: InstructionRecord,
        event_type: str,
        event_payload: Any,
        occurred_at: datetime,
    ) -> InstructionMatch: ...

    def list_instruction_evaluations(
        self, user_id: str, *, instruction_id: str | None = None
    ) -> list[InstructionEvaluationRecord]: ...

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
    ) -> AgentTaskRecord: ...

    def get_task(self, task_id: str) -> AgentTaskRecord | None: ...

    def list_tasks(
        self, user_id: str, *, status: str | None = None, limit: int = 50
    ) -> list[AgentTaskRecord]: ...

    def list_due_tasks(
        self, *, now: datetime, user_id: str | None = None, limit: int = 5
    ) -> list[AgentTaskRecord]: ...

    def claim_task(self, task_id: str) -> bool: ...

    def update_task(self, task_id: str, **changes: Any) -> AgentTaskRecord: ...

    def requeue_stale_tasks(self, *, cutoff: datetime) -> list[str]: ...

    # steps and context
    def list_steps(self, task_id: str) -> list[TaskStepRecord]: ...

    def append_step(
        self,
        task_id: str,
        *,
        title: str,
        input: Any = None,
        status: str = "pending",
    ) -> TaskStepRecord: ...

    def update_step(self, step_id: str, **changes: Any) -> TaskStepRecord: ...

    def fail_running_steps(self, task_id: str, *, error: Any) -> int: ...

    def set_context(self, task_id: str, key: str, value: Any) -> TaskContextRecord: ...

    def list_contexts(self, task_id: str) -> list[TaskContextRecord]: ...

    # synced records
    def upsert_email_message(self, record: EmailMessageRecord) -> UpsertResult: ...

    def upsert_calendar_event(self, record: CalendarEventRecord) -> UpsertResult: ...

    def upsert_hubspot_contact(self, record: HubspotContactRecord) -> UpsertResult: ...

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
    ) -> list[EmailMessageRecord]: ...

    def list_calendar_events(
        self,
        user_id: str,
        *,
        start_from: datetime | None = None,
        start_before: datetime | None = None,
        include_unscheduled: bool = False,
        event_ids: list[str] | None = None,
        limit: int = 10,
    ) -> list[CalendarEventRecord]: ...

    def list_hubspot_contacts(
        self,
        user_id: str,
        *,
        email: str | None = None,
        name: str | None = None,
        contact_ids: list[str] | None = None,
        limit: int = 10,
    ) -> list[HubspotContactRecord]: ...
