"""Persist normalized records and raise the matching instruction events."""

from __future__ import annotations

import logging
from typing import Any

from copilot_automation.instructions.matcher import InstructionEvent, InstructionMatcher
from copilot_automation.storage.base import AutomationStorage
from copilot_automation.storage.models import (
    CalendarEventRecord,
    EmailMessageRecord,
    HubspotContactRecord,
    UpsertResult,
)

logger = logging.getLogger(__name__)


def _iso(value: Any) -> str | None:
    return value.isoformat() if value is not None else None


class RecordIngestor:
    """Upsert synced records; created or updated rows become instruction events.

    Unchanged rows emit nothing. ``sent`` emails always emit ``gmail.message_sent``.
    """

    def __init__(self, storage: AutomationStorage, matcher: InstructionMatcher) -> None:
        self.storage = storage
        self.matcher = matcher

    def ingest_email(self, record: EmailMessageRecord, *, sent: bool = False) -> UpsertResult:
        result = self.storage.upsert_email_message(record)
        if sent:
            self._emit(
                record.user_id,
                "gmail.message_sent",
                {
                    "messageId": record.message_id,
                    "threadId": record.thread_id,
                    "subject": record.subject,
                    "to": record.to_addresses,
                },
            )
        elif result != "unchanged":
            self._emit(
                record.user_id,
                f"gmail.message_{result}",
                {
                    "messageId": record.message_id,
                    "threadId": record.thread_id,
                    "subject": record.subject,
                    "from": record.from_address,
                    "internalDate": _iso(record.sent_at),
                },
            )
        return result

    def ingest_calendar_event(self, record: CalendarEventRecord) -> UpsertResult:
        result = self.storage.upsert_calendar_event(record)
        if result != "unchanged":
            self._emit(
                record.user_id,
                f"calendar.event_{result}",
                {
                    "eventId": record.event_id,
                    "calendarId": record.calendar_id,
                    "summary": record.summary,
                    "start": _iso(record.start_time),
                    "end": _iso(record.end_time),
                },
            )
        return result

    def ingest_hubspot_contact(self, record: HubspotContactRecord) -> UpsertResult:
        result = self.storage.upsert_hubspot_contact(record)
        if result != "unchanged":
            self._emit(
                record.user_id,
                f"hubspot.contact_{result}",
                {
                    "contactId": record.contact_id,
                    "email": record.email,
                    "firstName": record.first_name,
                    "lastName": record.last_name,
                },
            )
        return result

    def note_changed(
        self, user_id: str, note_id: str, contact_ids: list[str], *, created: bool
    ) -> None:
        """Raise a note event. Notes are not stored locally."""

        event_type = "hubspot.note_created" if created else "hubspot.note_updated"
        self._emit(user_id, event_type, {"noteId": note_id, "contactIds": list(contact_ids)})

    def _emit(self, user_id: str, event_type: str, payload: dict[str, Any]) -> None:
        matches = self.matcher.evaluate(user_id, InstructionEvent(type=event_type, payload=payload))
        logger.debug(
            "event=record_ingested user_id=%s event_type=%s matches=%s",
            user_id,
            event_type,
            len(matches),
        )
