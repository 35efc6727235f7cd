"""Heuristic knowledge search backing the ``searchKnowledge`` tool."""

from __future__ import annotations

import re
from datetime import UTC, datetime, timedelta, tzinfo
from typing import Any

from copilot_automation.retrieval.context import (
    ContextRetriever,
    to_calendar_snippet,
    to_email_snippet,
)
from copilot_automation.storage.base import AutomationStorage
from copilot_automation.storage.models import EmailMessageRecord

_MONTH = (
    r"(?:feb(?:ruary)?|march|apr(?:il)?|may|june?|july?|aug(?:ust)?|sep(?:tember)?"
    r"|oct(?:ober)?|nov(?:ember)?|dec(?:ember)?)"
)
CALENDAR_DATE_PATTERN = re.compile(
    rf"(?:on|for)\s+(?:{_MONTH}\s+)?(\d{{1,2}})(?:st|nd|rd|th)?(?:\s+{_MONTH})?(?:\s+\d{{4}})?"
    r"|(?:this|next)\s+(?:week|month)"
    r"|(?:tomorrow|tmrw)",
    re.IGNORECASE,
)
DAY_PATTERN = re.compile(r"\b(\d{1,2})(?:st|nd|rd|th)?\b")
CALENDAR_KEYWORDS = ("calendar", "meetings", "events")
PERSON_SEARCH_PATTERN = re.compile(
    r"(?:search|find)\s+(?:for\s+)?(.+?)\s+in\s+(?:my\s+)?(?:email|mail|inbox)",
    re.IGNORECASE,
)
PROPER_NAME_PATTERN = re.compile(r"^([A-Z][a-z]+(?:\s+[A-Z][a-z]+)+)$")

CALENDAR_WINDOW = timedelta(days=7)
FOCUSED_LIMIT = 10
SUBJECT_MATCH_LIMIT = 5
SHORT_SNIPPET_CHARS = 200


def _start_of_day(moment: datetime, zone: tzinfo) -> datetime:
    local = moment.astimezone(zone)
    return datetime.combine(local.date(), datetime.min.time(), tzinfo=zone)


def _with_day(day_start: datetime, day: int) -> datetime:
    """Move to ``day`` of the same month, rolling over past the month end."""

    first = day_start.replace(day=1)
    return first + timedelta(days=day - 1)


class KnowledgeSearch:
    """Pick a search strategy from the query text.

    Order: calendar date windows, person-name email search, today's emails,
    exact subject match, then general grounding retrieval.
    """

    def __init__(self, storage: AutomationStorage, retriever: ContextRetriever) -> None:
        self.storage = storage
        self.retriever = retriever

    def search(
        self,
        user_id: str,
        query: str,
        *,
        email_limit: int | None = None,
        calendar_limit: int | None = None,
        contact_limit: int | None = None,
        exact_subject_match: bool = False,
        zone: tzinfo = UTC,
        now: datetime | None = None,
    ) -> dict[str, Any]:
        current = now or datetime.now(UTC)
        lowered = query.lower()

        if CALENDAR_DATE_PATTERN.search(query) or any(word in lowered for word in CALENDAR_KEYWORDS):
            return self._calendar_window(user_id, query, calendar_limit, zone, current)

        person_match = PERSON_SEARCH_PATTERN.search(query)
        name_match = PROPER_NAME_PATTERN.match(query)
        if person_match or name_match:
            person = (person_match or name_match).group(1).strip()
            messages = self.storage.list_email_messages(
                user_id, person=person, limit=email_limit or FOCUSED_LIMIT
            )
            emails = [self._short_email(item) for item in messages]
            return {
                "query": query,
                "emails": emails,
                "calendar": [],
                "contacts": [],
                "metadata": {"personSearch": True, "searchTerm": person, "count": len(emails)},
            }

        if "today" in lowered:
            today = _start_of_day(current, zone)
            messages = self.storage.list_email_messages(
                user_id,
                sent_from=today,
                sent_before=today + timedelta(days=1),
                limit=email_limit or FOCUSED_LIMIT,
            )
            emails = [self._short_email(item) for item in messages]
            return {
                "query": query,
                "emails": emails,
                "calendar": [],
                "contacts": [],
                "metadata": {
                    "todayFilter": True,
                    "date": today.isoformat(),
                    "count": len(emails),
                },
            }

        if exact_subject_match:
            messages = self.storage.list_email_messages(
                user_id, subject_contains=query, limit=email_limit or SUBJECT_MATCH_LIMIT
            )
            return {
                "query": query,
                "emails": [self._short_email(item) for item in messages],
                "calendar": [],
                "contacts": [],
            }

        context = self.retriever.build(
            user_id,
            query,
            email_limit=email_limit,
            calendar_limit=calendar_limit,
            contact_limit=contact_limit,
            now=current,
        )
        dumped = context.model_dump(mode="json", by_alias=True)
        return {"query": query, **dumped}

    def _calendar_window(
        self,
        user_id: str,
        query: str,
        limit: int | None,
        zone: tzinfo,
        now: datetime,
    ) -> dict[str, Any]:
        start = _start_of_day(now, zone)
        end = start + CALENDAR_WINDOW
        day_match = DAY_PATTERN.search(query)
        if day_match:
            start = _with_day(start, int(day_match.group(1)))
            end = start + timedelta(days=1)

        events = self.storage.list_calendar_events(
            user_id, start_from=start, start_before=end, limit=limit or FOCUSED_LIMIT
        )
        calendar = []
        for event in events:
            snippet = to_calendar_snippet(event, description_chars=SHORT_SNIPPET_CHARS)
            calendar.append(
                {
                    "eventId": snippet.event_id,
                    "summary": snippet.summary,
                    "start": snippet.start_time,
                    "end": snippet.end_time,
                    "location": snippet.location,
                    "description": snippet.description,
                }
            )
        return {
            "query": query,
            "emails": [],
            "calendar": calendar,
            "contacts": [],
            "metadata": {
                "dateRange": {"start": start.isoformat(), "end": end.isoformat()},
                "count": len(calendar),
            },
        }

    @staticmethod
    def _short_email(record: EmailMessageRecord) -> dict[str, Any]:
        snippet = to_email_snippet(record)
        if record.body_text:
            text = record.body_text[:SHORT_SNIPPET_CHARS]
        else:
            text = record.snippet or ""
        return {
            "messageId": snippet.message_id,
            "subject": snippet.subject,
            "snippet": text,
            "from": snippet.from_address,
            "sentAt": snippet.sent_at,
        }
