"""Storage models shared by services, API and persistence backends."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, Field

InstructionStatus = Literal["active", "paused", "archived"]
TaskType = Literal["instruction", "followUp", "manual"]
TaskStatus = Literal["pending", "running", "completed", "failed", "waiting", "cancelled"]
StepStatus = Literal["pending", "running", "completed", "failed"]
IntegrationProvider = Literal["google", "hubspot"]
UpsertResult = Literal["created", "updated", "unchanged"]

# Claim transitions only from these states.
CLAIMABLE_TASK_STATUSES: tuple[str, ...] = ("pending", "waiting")
TERMINAL_TASK_STATUSES: tuple[str, ...] = ("completed", "failed", "cancelled")


class InstructionRecord(BaseModel):
    """Standing rule authored by a user."""

    instruction_id: str
    user_id: str
    title: str
    content: str
    triggers: list[str] = Field(default_factory=list)
    status: InstructionStatus = "active"
    metadata: dict[str, Any] | None = None
    last_evaluated_at: datetime | None = None
    created_at: datetime
    updated_at: datetime


class InstructionEvaluationRecord(BaseModel):
    """Immutable audit row for one event/instruction match."""

    evaluation_id: str
    user_id: str
    instruction_id: str
    event_type: str
    event_payload: Any = None
    outcome: Literal["matched"] = "matched"
    created_at: datetime


class AgentTaskRecord(BaseModel):
    task_id: str
    user_id: str
    instruction_id: str | None = None
    type: TaskType
    status: TaskStatus = "pending"
    summary: str | None = None
    scheduled_for: datetime | None = None
    error_message: str | None = None
    metadata: Any = None
    started_at: datetime | None = None
    completed_at: datetime | None = None
    cancelled_at: datetime | None = None
    created_at: datetime
    updated_at: datetime


class TaskStepRecord(BaseModel):
    step_id: str
    task_id: str
    index: int
    title: str
    status: StepStatus = "pending"
    input: Any = None
    output: Any = None
    error: Any = None
    started_at: datetime | None = None
    completed_at: datetime | None = None
    created_at: datetime
    updated_at: datetime


class TaskContextRecord(BaseModel):
    task_id: str
    key: str
    value: Any = None
    created_at: datetime
    updated_at: datetime


class TaskBundle(BaseModel):
    """A task loaded together with its steps, context entries and instruction."""

    task: AgentTaskRecord
    steps: list[TaskStepRecord] = Field(default_factory=list)
    contexts: list[TaskContextRecord] = Field(default_factory=list)
    instruction: InstructionRecord | None = None


class InstructionMatch(BaseModel):
    instruction_id: str
    task_id: str
    evaluation_id: str


class EmailMessageRecord(BaseModel):
    """Synced mailbox message."""

    user_id: str
    message_id: str
    thread_id: str | None = None
    subject: str | None = None
    from_address: str | None = None
    to_addresses: list[str] = Field(default_factory=list)
    snippet: str | None = None
    body_text: str | None = None
    body_html: str | None = None
    sent_at: datetime | None = None


class CalendarEventRecord(BaseModel):
    """Synced calendar event."""

    user_id: str
    calendar_id: str = "primary"
    event_id: str
    summary: str | None = None
    description: str | None = None
    location: str | None = None
    start_time: datetime | None = None
    end_time: datetime | None = None
    attendees: list[dict[str, Any]] = Field(default_factory=list)


class HubspotContactRecord(BaseModel):
    """Synced CRM contact."""

    user_id: str
    contact_id: str
    email: str | None = None
    first_name: str | None = None
    last_name: str | None = None
    company: str | None = None
    phone: str | None = None
    lifecycle_stage: str | None = None
    properties: dict[str, Any] = Field(default_factory=dict)
    last_modified_at: datetime | None = None

    def full_name(self) -> str:
        parts = [part.strip() for part in (self.first_name, self.last_name) if part and part.strip()]
        if parts:
            return " ".join(parts)
        return self.email or "HubSpot contact"
