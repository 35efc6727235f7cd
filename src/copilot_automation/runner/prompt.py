"""Prompt assembly for background task runs."""

from __future__ import annotations

import json
from typing import Any

from copilot_automation.retrieval.context import RetrievalContext
from copilot_automation.storage.models import TaskBundle, TaskStepRecord

AUTOMATION_SYSTEM_PROMPT = (
    "You are the background automation agent for a financial advisor.\n"
    "Work autonomously to advance each assigned task. You can call tools to send email, manage\n"
    "calendar events, read synced data via searchKnowledge, and update HubSpot contacts. Take\n"
    "decisive actions, summarise what you accomplished, and schedule additional follow-ups with\n"
    "scheduleFollowUpTask when the workflow needs to continue later."
)


def _json(value: Any) -> str:
    return json.dumps(value, default=str, separators=(",", ":"))


def build_task_prompt(
    bundle: TaskBundle, step: TaskStepRecord, retrieval: RetrievalContext
) -> str:
    task = bundle.task
    sections: list[str] = [f"Task ID: {task.task_id}", f"Task type: {task.type}"]
    if task.summary:
        sections.append(f"Summary: {task.summary}")
    if task.scheduled_for is not None:
        sections.append(f"Scheduled for: {task.scheduled_for.isoformat()}")
    if bundle.instruction is not None:
        sections.append(
            f"Instruction: {bundle.instruction.title}\n{bundle.instruction.content}"
        )
    if task.metadata is not None:
        sections.append(f"Task metadata: {_json(task.metadata)}")
    if bundle.contexts:
        entries = "\n".join(f"{entry.key}: {_json(entry.value)}" for entry in bundle.contexts)
        sections.append(f"Task context entries:\n{entries}")
    if step.input is not None:
        sections.append(f"Current step input: {_json(step.input)}")

    if retrieval.emails:
        lines = "\n".join(
            f"- {email.subject or '(no subject)'} from {email.from_address or 'unknown'}"
            for email in retrieval.emails
        )
        sections.append(f"Relevant email snippets:\n{lines}")
    if retrieval.calendar:
        lines = "\n".join(
            f"- {event.summary or '(no title)'} ({event.start_time or 'time tbd'})"
            for event in retrieval.calendar
        )
        sections.append(f"Relevant calendar events:\n{lines}")
    if retrieval.contacts:
        lines = "\n".join(
            f"- {contact.full_name or contact.email or contact.contact_id}"
            for contact in retrieval.contacts
        )
        sections.append(f"Relevant HubSpot contacts:\n{lines}")

    sections.append(
        f"Current step: {step.title}. Move the workflow forward. "
        "Use tools if necessary and summarise the outcome."
    )
    return "\n\n".join(sections)
