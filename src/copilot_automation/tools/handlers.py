"""Tool handler implementations.

Each factory closes over ``ToolDependencies`` and returns a handler with the
``(payload, ToolContext) -> result`` signature the executor calls.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable
from zoneinfo import ZoneInfo

from copilot_automation.errors import IntegrationError
from copilot_automation.instructions.service import InstructionService
from copilot_automation.integrations.calendar import CalendarClient, normalize_calendar_event
from copilot_automation.integrations.gmail import GmailClient, build_mime_message
from copilot_automation.integrations.hubspot import HubspotClient
from copilot_automation.retrieval.context import to_contact_snippet
from copilot_automation.retrieval.knowledge import KnowledgeSearch
from copilot_automation.storage.base import AutomationStorage
from copilot_automation.sync.ingest import RecordIngestor
from copilot_automation.tasks.service import TaskService
from copilot_automation.tools.base import ToolContext
from copilot_automation.tools.follow_up import (
    build_schedule,
    follow_up_metadata,
    resolve_time_zone,
)
from copilot_automation.tools.schemas import (
    CalendarEventInput,
    EmailPayloadInput,
    HubspotContactInput,
    ListInstructionsInput,
    LookupHubspotContactInput,
    ScheduleFollowUpInput,
    SearchKnowledgeInput,
    StoreInstructionInput,
    UpdateCalendarEventInput,
)

logger = logging.getLogger(__name__)

INSTRUCTION_LIST_LIMIT = 20

Handler = Callable[[Any, ToolContext], Any]


@dataclass
class ToolDependencies:
    storage: AutomationStorage
    tasks: TaskService
    instructions: InstructionService
    knowledge: KnowledgeSearch
    ingestor: RecordIngestor
    gmail: GmailClient | None = None
    calendar: CalendarClient | None = None
    hubspot: HubspotClient | None = None
    default_time_zone: str = "UTC"

    def require_gmail(self) -> GmailClient:
        if self.gmail is None:
            raise IntegrationError("Gmail integration is not configured")
        return self.gmail

    def require_calendar(self) -> CalendarClient:
        if self.calendar is None:
            raise IntegrationError("Google Calendar integration is not configured")
        return self.calendar

    def require_hubspot(self) -> HubspotClient:
        if self.hubspot is None:
            raise IntegrationError("HubSpot integration is not configured")
        return self.hubspot


def search_knowledge(deps: ToolDependencies) -> Handler:
    def _search(payload: SearchKnowledgeInput, context: ToolContext) -> dict[str, Any]:
        zone_name = resolve_time_zone(
            context_time_zone=context.time_zone or deps.default_time_zone
        )
        return deps.knowledge.search(
            context.user_id,
            payload.query,
            email_limit=payload.email_limit,
            calendar_limit=payload.calendar_limit,
            contact_limit=payload.contact_limit,
            exact_subject_match=bool(payload.exact_subject_match),
            zone=ZoneInfo(zone_name),
        )

    return _search


def _mime_for(payload: EmailPayloadInput) -> str:
    return build_mime_message(
        to=[str(item) for item in payload.to],
        cc=[str(item) for item in payload.cc or []],
        bcc=[str(item) for item in payload.bcc or []],
        subject=payload.subject,
        text=payload.text,
        html=payload.html,
        in_reply_to=payload.in_reply_to,
        references=payload.references,
    )


def send_email(deps: ToolDependencies) -> Handler:
    def _send(payload: EmailPayloadInput, context: ToolContext) -> dict[str, Any]:
        gmail = deps.require_gmail()
        result = gmail.send_message(
            context.user_id, _mime_for(payload), thread_id=payload.thread_id
        )
        message_id = str(result.get("id", ""))
        try:
            record = gmail.get_message(context.user_id, message_id)
            deps.ingestor.ingest_email(record, sent=True)
        except Exception as exc:  # noqa: BLE001
            logger.warning(
                "event=sent_email_ingest_failed user_id=%s message_id=%s error=%s",
                context.user_id,
                message_id,
                exc,
            )
        return {"messageId": message_id, "threadId": result.get("threadId")}

    return _send


def draft_email(deps: ToolDependencies) -> Handler:
    def _draft(payload: EmailPayloadInput, context: ToolContext) -> dict[str, Any]:
        result = deps.require_gmail().create_draft(
            context.user_id, _mime_for(payload), thread_id=payload.thread_id
        )
        message = result.get("message") or {}
        return {
            "draftId": result.get("id"),
            "messageId": message.get("id"),
            "threadId": message.get("threadId"),
        }

    return _draft


def _calendar_result(event: dict[str, Any], calendar_id: str) -> dict[str, Any]:
    return {
        "eventId": event.get("id"),
        "calendarId": calendar_id,
        "summary": event.get("summary"),
        "start": event.get("start"),
        "end": event.get("end"),
    }


def create_calendar_event(deps: ToolDependencies) -> Handler:
    def _create(payload: CalendarEventInput, context: ToolContext) -> dict[str, Any]:
        calendar_id = payload.calendar_id or "primary"
        event = deps.require_calendar().create_event(
            context.user_id,
            payload.event_body(),
            calendar_id=calendar_id,
            send_updates=payload.send_updates or "all",
        )
        deps.storage.upsert_calendar_event(
            normalize_calendar_event(context.user_id, calendar_id, event)
        )
        return _calendar_result(event, calendar_id)

    return _create


def update_calendar_event(deps: ToolDependencies) -> Handler:
    def _update(payload: UpdateCalendarEventInput, context: ToolContext) -> dict[str, Any]:
        calendar_id = payload.calendar_id or "primary"
        event = deps.require_calendar().update_event(
            context.user_id,
            payload.event_id,
            payload.event_body(),
            calendar_id=calendar_id,
            send_updates=payload.send_updates or "all",
        )
        deps.storage.upsert_calendar_event(
            normalize_calendar_event(context.user_id, calendar_id, event)
        )
        return _calendar_result(event, calendar_id)

    return _update


def upsert_hubspot_contact(deps: ToolDependencies) -> Handler:
    def _upsert(payload: HubspotContactInput, context: ToolContext) -> dict[str, Any]:
        hubspot = deps.require_hubspot()
        result = hubspot.upsert_contact(
            context.user_id, payload.properties, contact_id=payload.contact_id
        )
        contact_id = str(result.get("id", ""))
        try:
            record = hubspot.get_contact(context.user_id, contact_id)
            deps.ingestor.ingest_hubspot_contact(record)
        except Exception as exc:  # noqa: BLE001
            logger.warning(
                "event=hubspot_contact_ingest_failed user_id=%s contact_id=%s error=%s",
                context.user_id,
                contact_id,
                exc,
            )
        return {"contactId": contact_id}

    return _upsert


def lookup_hubspot_contact(deps: ToolDependencies) -> Handler:
    def _lookup(payload: LookupHubspotContactInput, context: ToolContext) -> dict[str, Any]:
        contacts = deps.storage.list_hubspot_contacts(
            context.user_id,
            email=str(payload.email) if payload.email else None,
            name=payload.name,
            contact_ids=[payload.hubspot_id] if payload.hubspot_id else None,
            limit=payload.limit,
        )
        return {
            "count": len(contacts),
            "contacts": [
                to_contact_snippet(item).model_dump(mode="json", by_alias=True)
                for item in contacts
            ],
        }

    return _lookup


def schedule_follow_up(deps: ToolDependencies) -> Handler:
    def _schedule(payload: ScheduleFollowUpInput, context: ToolContext) -> dict[str, Any]:
        time_zone = resolve_time_zone(
            explicit=payload.time_zone,
            metadata=payload.metadata,
            context_time_zone=context.time_zone,
        )
        schedule = build_schedule(payload.run_at, time_zone)
        task = deps.tasks.create_task(
            context.user_id,
            type="followUp",
            summary=payload.summary,
            scheduled_for=schedule.scheduled_for,
            metadata=follow_up_metadata(payload.metadata, schedule),
        )
        return {"taskId": task.task_id, "scheduledFor": schedule.scheduled_for.isoformat()}

    return _schedule


def store_instruction(deps: ToolDependencies) -> Handler:
    def _store(payload: StoreInstructionInput, context: ToolContext) -> dict[str, Any]:
        instruction = deps.instructions.create(
            context.user_id,
            title=payload.title,
            content=payload.content,
            triggers=payload.triggers,
            metadata=payload.metadata,
        )
        return {
            "instructionId": instruction.instruction_id,
            "status": instruction.status,
            "triggers": instruction.triggers,
        }

    return _store


def list_instructions(deps: ToolDependencies) -> Handler:
    def _list(payload: ListInstructionsInput, context: ToolContext) -> dict[str, Any]:
        instructions = deps.instructions.list_for_user(
            context.user_id, status=payload.status, limit=INSTRUCTION_LIST_LIMIT
        )
        return {
            "count": len(instructions),
            "instructions": [
                {
                    "id": item.instruction_id,
                    "title": item.title,
                    "status": item.status,
                    "triggers": item.triggers,
                    "createdAt": item.created_at.isoformat(),
                    "updatedAt": item.updated_at.isoformat(),
                }
                for item in instructions
            ],
        }

    return _list
