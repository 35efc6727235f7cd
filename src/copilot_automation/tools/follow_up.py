"""Follow-up run time resolution.

A ``runAt`` in the future is used as given. A past ``runAt`` keeps only its
time of day (read in the resolved zone) and is moved onto today's date, or
tomorrow's when today's candidate has already passed. The adjustment is
recorded in ``followUpScheduling`` task metadata.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, date, datetime, timedelta
from typing import Any
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

DEFAULT_TIME_ZONE = "UTC"


def parse_run_at(value: str) -> datetime:
    """Parse an ISO-8601 timestamp that carries an explicit offset."""

    text = value.strip()
    if text.endswith(("Z", "z")):
        text = f"{text[:-1]}+00:00"
    parsed = datetime.fromisoformat(text)
    if parsed.tzinfo is None or parsed.utcoffset() is None:
        raise ValueError("runAt must include a timezone offset")
    return parsed


def is_valid_time_zone(name: str) -> bool:
    try:
        ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        return False
    return True


def _clean_zone(value: Any) -> str | None:
    if isinstance(value, str) and value.strip() and is_valid_time_zone(value.strip()):
        return value.strip()
    return None


def metadata_time_zone(metadata: Any) -> str | None:
    """First valid zone hint in ``metadata``, if any."""

    if not isinstance(metadata, dict):
        return None
    candidates: list[Any] = [metadata.get("timezone"), metadata.get("timeZone")]
    scheduling = metadata.get("followUpScheduling")
    if isinstance(scheduling, dict):
        candidates.append(scheduling.get("timeZone"))
    for candidate in candidates:
        cleaned = _clean_zone(candidate)
        if cleaned:
            return cleaned
    return None


def resolve_time_zone(
    *,
    explicit: str | None = None,
    metadata: Any = None,
    context_time_zone: str | None = None,
) -> str:
    """Explicit argument, then the conversation's zone, then metadata hints, then UTC."""

    for candidate in (explicit, context_time_zone):
        cleaned = _clean_zone(candidate)
        if cleaned:
            return cleaned
    return metadata_time_zone(metadata) or DEFAULT_TIME_ZONE


def _candidate_on(day: date, run_at: datetime, zone: ZoneInfo) -> datetime:
    wall_clock = run_at.astimezone(zone).time().replace(microsecond=0, tzinfo=None)
    return datetime.combine(day, wall_clock, tzinfo=zone).astimezone(UTC)


@dataclass(frozen=True)
class FollowUpSchedule:
    scheduled_for: datetime
    parsed_run_at: datetime
    adjusted: bool
    metadata: dict[str, Any]


def build_schedule(run_at: str, time_zone: str, *, now: datetime | None = None) -> FollowUpSchedule:
    current = now or datetime.now(UTC)
    parsed = parse_run_at(run_at)
    zone = ZoneInfo(time_zone)

    if parsed > current:
        scheduled = parsed.astimezone(UTC)
        adjusted = False
    else:
        today = current.astimezone(zone).date()
        scheduled = _candidate_on(today, parsed, zone)
        if scheduled <= current:
            scheduled = _candidate_on(today + timedelta(days=1), parsed, zone)
        # Guard for wall-clock gaps around DST transitions.
        while scheduled <= current:
            scheduled += timedelta(days=1)
        adjusted = True

    payload: dict[str, Any] = {
        "inputRunAt": run_at,
        "parsedRunAt": parsed.astimezone(UTC).isoformat(),
        "scheduledRunAt": scheduled.isoformat(),
        "generatedAt": current.isoformat(),
        "timeZone": time_zone,
    }
    if adjusted:
        payload["adjustment"] = {"type": "shifted_forward", "reason": "input_in_past"}
    return FollowUpSchedule(
        scheduled_for=scheduled,
        parsed_run_at=parsed,
        adjusted=adjusted,
        metadata=payload,
    )


def follow_up_metadata(metadata: dict[str, Any] | None, schedule: FollowUpSchedule) -> dict[str, Any]:
    merged = dict(metadata or {})
    merged["followUpScheduling"] = schedule.metadata
    return merged
