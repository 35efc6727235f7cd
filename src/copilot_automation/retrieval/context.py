"""Grounding retrieval over synced emails, calendar events and CRM contacts."""

from __future__ import annotations

import logging
import re
from datetime import UTC, datetime, timedelta
from typing import Protocol

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from copilot_automation.storage.base import AutomationStorage
from copilot_automation.storage.models import (
    CalendarEventRecord,
    EmailMessageRecord,
    HubspotContactRecord,
)

logger = logging.getLogger(__name__)

DEFAULT_LIMIT = 5
SNIPPET_CHARS = 600
UPCOMING_LOOKBACK = timedelta(hours=12)


class SnippetModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class EmailSnippet(SnippetModel):
    message_id: str
    subject: str | None = None
    snippet: str = ""
    from_address: str | None = Field(default=None, serialization_alias="from")
    sent_at: str | None = None


class CalendarSnippet(SnippetModel):
    event_id: str
    summary: str | None = None
    start_time: str | None = None
    end_time: str | None = None
    location: str | None = None
    description: str | None = None


class ContactSnippet(SnippetModel):
    contact_id: str
    full_name: str | None = None
    email: str | None = None
    company: str | None = None
    phone: str | None = None
    lifecycle_stage: str | None = None
    last_modified_at: str | None = None


class RetrievalContext(BaseModel):
    emails: list[EmailSnippet] = Field(default_factory=list)
    calendar: list[CalendarSnippet] = Field(default_factory=list)
    contacts: list[ContactSnippet] = Field(default_factory=list)


class SemanticSearcher(Protocol):
    """Rank synced records of one source (``email``, ``calendar`` or ``contact``) for a query.

    Returns source record ids, best first. Embedding generation lives behind this seam.
    """

    def search(self, user_id: str, query: str, *, source: str, limit: int) -> list[str]: ...


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


def strip_html(value: str) -> str:
    return re.sub(r"\s+", " ", re.sub(r"<[^>]*>", " ", value)).strip()


def email_snippet_text(record: EmailMessageRecord, *, max_chars: int = SNIPPET_CHARS) -> str:
    if record.body_text and record.body_text.strip():
        return record.body_text.strip()[:max_chars]
    if record.body_html and record.body_html.strip():
        return strip_html(record.body_html)[:max_chars]
    return (record.snippet or "")[:max_chars]


def to_email_snippet(record: EmailMessageRecord, *, max_chars: int = SNIPPET_CHARS) -> EmailSnippet:
    return EmailSnippet(
        message_id=record.message_id,
        subject=record.subject,
        snippet=email_snippet_text(record, max_chars=max_chars),
        from_address=record.from_address,
        sent_at=_iso(record.sent_at),
    )


def to_calendar_snippet(
    record: CalendarEventRecord, *, description_chars: int | None = None
) -> CalendarSnippet:
    description = record.description
    if description is not None and description_chars is not None:
        description = description[:description_chars]
    return CalendarSnippet(
        event_id=record.event_id,
        summary=record.summary,
        start_time=_iso(record.start_time),
        end_time=_iso(record.end_time),
        location=record.location,
        description=description,
    )


def to_contact_snippet(record: HubspotContactRecord) -> ContactSnippet:
    return ContactSnippet(
        contact_id=record.contact_id,
        full_name=record.full_name(),
        email=record.email,
        company=record.company,
        phone=record.phone,
        lifecycle_stage=record.lifecycle_stage,
        last_modified_at=_iso(record.last_modified_at),
    )


class ContextRetriever:
    """Top-N snippets per source for a free-text query.

    Uses the semantic searcher when one is configured and it returns hits;
    otherwise falls back to recent emails, upcoming events and recently
    modified contacts.
    """

    def __init__(
        self,
        storage: AutomationStorage,
        *,
        searcher: SemanticSearcher | None = None,
    ) -> None:
        self.storage = storage
        self.searcher = searcher

    def build(
        self,
        user_id: str,
        query: str,
        *,
        email_limit: int | None = None,
        calendar_limit: int | None = None,
        contact_limit: int | None = None,
        now: datetime | None = None,
    ) -> RetrievalContext:
        current = now or datetime.now(UTC)
        email_limit = email_limit or DEFAULT_LIMIT
        calendar_limit = calendar_limit or DEFAULT_LIMIT
        contact_limit = contact_limit or DEFAULT_LIMIT

        email_ids = self._ranked_ids(user_id, query, "email", email_limit)
        emails = self._ordered(
            self.storage.list_email_messages(user_id, message_ids=email_ids, limit=email_limit * 2)
            if email_ids
            else [],
            email_ids,
            key=lambda item: item.message_id,
        )[:email_limit]
        if not emails:
            emails = self.storage.list_email_messages(user_id, limit=email_limit)

        event_ids = self._ranked_ids(user_id, query, "calendar", calendar_limit)
        events = self._ordered(
            self.storage.list_calendar_events(
                user_id, event_ids=event_ids, include_unscheduled=True, limit=calendar_limit * 2
            )
            if event_ids
            else [],
            event_ids,
            key=lambda item: item.event_id,
        )[:calendar_limit]
        if not events:
            events = self.storage.list_calendar_events(
                user_id,
                start_from=current - UPCOMING_LOOKBACK,
                include_unscheduled=True,
                limit=calendar_limit,
            )

        contact_ids = self._ranked_ids(user_id, query, "contact", contact_limit)
        contacts = self._ordered(
            self.storage.list_hubspot_contacts(
                user_id, contact_ids=contact_ids, limit=contact_limit * 2
            )
            if contact_ids
            else [],
            contact_ids,
            key=lambda item: item.contact_id,
        )[:contact_limit]
        if not contacts:
            contacts = self.storage.list_hubspot_contacts(user_id, limit=contact_limit)

        return RetrievalContext(
            emails=[to_email_snippet(item) for item in emails],
            calendar=[to_calendar_snippet(item) for item in events],
            contacts=[to_contact_snippet(item) for item in contacts],
        )

    def _ranked_ids(self, user_id: str, query: str, source: str, limit: int) -> list[str]:
        if self.searcher is None or not query.strip():
            return []
        try:
            return list(self.searcher.search(user_id, query, source=source, limit=limit * 3))
        except Exception as exc:  # noqa: BLE001
            logger.warning(
                "event=semantic_search_failed user_id=%s source=%s error=%s",
                user_id,
                source,
                exc,
            )
            return []

    @staticmethod
    def _ordered(items: list, ranked_ids: list[str], *, key) -> list:
        position = {item_id: index for index, item_id in enumerate(ranked_ids)}
        return sorted(
            (item for item in items if key(item) in position),
            key=lambda item: position[key(item)],
        )
