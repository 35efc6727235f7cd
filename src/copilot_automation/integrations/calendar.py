"""Google Calendar event client and event normalization."""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any

from copilot_automation.integrations.http import TokenProvider, quote, request_json
from copilot_automation.storage.models import CalendarEventRecord

CALENDAR_API = "https://www.googleapis.com/calendar/v3/calendars"


class CalendarClient:
    def __init__(self, tokens: TokenProvider, *, timeout_s: float = 30.0) -> None:
        self.tokens = tokens
        self.timeout_s = timeout_s

    def create_event(
        self,
        user_id: str,
        event: dict[str, Any],
        *,
        calendar_id: str = "primary",
        send_updates: str = "all",
    ) -> dict[str, Any]:
        return request_json(
            "POST",
            f"{CALENDAR_API}/{quote(calendar_id)}/events?sendUpdates={quote(send_updates)}",
            token=self.tokens.access_token(user_id, "google"),
            body=event,
            timeout_s=self.timeout_s,
            failure_message="Failed to create calendar event",
        )

    def update_event(
        self,
        user_id: str,
        event_id: str,
        event: dict[str, Any],
        *,
        calendar_id: str = "primary",
        send_updates: str = "all",
    ) -> dict[str, Any]:
        return request_json(
            "PATCH",
            f"{CALENDAR_API}/{quote(calendar_id)}/events/{quote(event_id)}"
            f"?sendUpdates={quote(send_updates)}",
            token=self.tokens.access_token(user_id, "google"),
            body=event,
            timeout_s=self.timeout_s,
            failure_message="Failed to update calendar event",
        )


def parse_event_time(value: dict[str, Any] | None) -> datetime | None:
    """Read a Calendar ``{dateTime | date}`` object. All-day dates become UTC midnight."""

    if not value:
        return None
    raw = value.get("dateTime") or value.get("date")
    if not raw:
        return None
    parsed = datetime.fromisoformat(str(raw).replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed


def normalize_calendar_event(
    user_id: str, calendar_id: str, payload: dict[str, Any]
) -> CalendarEventRecord:
    attendees = [
        {key: value for key, value in item.items() if value is not None}
        for item in payload.get("attendees") or []
        if isinstance(item, dict)
    ]
    return CalendarEventRecord(
        user_id=user_id,
        calendar_id=calendar_id,
        event_id=str(payload["id"]),
        summary=payload.get("summary"),
        description=payload.get("description"),
        location=payload.get("location"),
        start_time=parse_event_time(payload.get("start")),
        end_time=parse_event_time(payload.get("end")),
        attendees=attendees,
    )
