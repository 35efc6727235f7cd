"""Strict Pydantic schemas for tool inputs."""

from __future__ import annotations

from typing import Annotated, Any, Literal

from pydantic import (
    BaseModel,
    ConfigDict,
    EmailStr,
    Field,
    StringConstraints,
    ValidationInfo,
    field_validator,
    model_validator,
)
from pydantic.alias_generators import to_camel

from copilot_automation.tools.follow_up import parse_run_at

NonEmptyStr = Annotated[str, StringConstraints(strip_whitespace=True, min_length=1)]


class StrictModel(BaseModel):
    """Base model for strict schema validation with camelCase wire names."""

    model_config = ConfigDict(extra="forbid", alias_generator=to_camel, populate_by_name=True)


class SearchKnowledgeInput(StrictModel):
    query: NonEmptyStr = Field(
        description=(
            "Natural language description of the information to search for, or exact "
            "subject text when exactSubjectMatch is true."
        )
    )
    email_limit: int | None = Field(
        default=None, ge=1, le=10, description="Maximum number of email snippets (default 5)."
    )
    calendar_limit: int | None = Field(
        default=None, ge=1, le=10, description="Maximum number of calendar events (default 5)."
    )
    contact_limit: int | None = Field(
        default=None, ge=1, le=10, description="Maximum number of HubSpot contacts (default 5)."
    )
    exact_subject_match: bool | None = Field(
        default=None,
        description="Case-insensitive substring match on email subjects.",
    )


class EmailPayloadInput(StrictModel):
    to: list[EmailStr] = Field(min_length=1, description="List of recipient email addresses.")
    cc: list[EmailStr] | None = None
    bcc: list[EmailStr] | None = None
    subject: NonEmptyStr
    text: str | None = None
    html: str | None = None
    thread_id: str | None = None
    references: list[str] | None = None
    in_reply_to: str | None = None

    @model_validator(mode="after")
    def _require_body(self) -> "EmailPayloadInput":
        if not ((self.text or "").strip() or (self.html or "").strip()):
            raise ValueError("Either text or html content is required")
        return self


class CalendarDateTime(StrictModel):
    date_time: str | None = None
    date: str | None = None
    time_zone: str | None = None


class CalendarAttendee(StrictModel):
    email: EmailStr
    display_name: str | None = None
    optional: bool | None = None
    response_status: str | None = None


class ConferenceSolutionKey(StrictModel):
    type: str


class ConferenceCreateRequest(StrictModel):
    request_id: str
    conference_solution_key: ConferenceSolutionKey | None = None


class ConferenceData(StrictModel):
    create_request: ConferenceCreateRequest


class CalendarEventInput(StrictModel):
    calendar_id: str | None = None
    summary: NonEmptyStr
    description: str | None = None
    start: CalendarDateTime
    end: CalendarDateTime
    location: str | None = None
    attendees: list[CalendarAttendee] | None = None
    conference_data: ConferenceData | None = None
    send_updates: Literal["all", "externalOnly", "none"] | None = None

    @field_validator("start", "end")
    @classmethod
    def _require_moment(cls, value: CalendarDateTime, info: ValidationInfo) -> CalendarDateTime:
        if not (value.date_time or value.date):
            raise ValueError(f"{info.field_name} requires either dateTime or date")
        return value

    def event_body(self) -> dict[str, Any]:
        """Google Calendar request body (routing fields excluded)."""

        return self.model_dump(
            by_alias=True,
            exclude_none=True,
            exclude={"calendar_id", "send_updates", "event_id"},
        )


class UpdateCalendarEventInput(CalendarEventInput):
    event_id: NonEmptyStr


class HubspotContactInput(StrictModel):
    contact_id: str | None = None
    properties: dict[str, Any] = Field(
        description=(
            "HubSpot contact properties. MUST include email. Can include firstname, lastname, "
            "phone, jobtitle, company."
        )
    )


class LookupHubspotContactInput(StrictModel):
    email: EmailStr | None = None
    name: str | None = None
    hubspot_id: str | None = None
    limit: int = Field(default=10, ge=1, le=20)


class ScheduleFollowUpInput(StrictModel):
    summary: NonEmptyStr
    run_at: str = Field(description="ISO 8601 timestamp indicating when to revisit the task.")
    metadata: dict[str, Any] | None = Field(
        default=None, description="Additional context to store with the task."
    )
    time_zone: str | None = Field(
        default=None, description="IANA time zone used when runAt must be shifted forward."
    )

    @field_validator("run_at")
    @classmethod
    def _check_run_at(cls, value: str) -> str:
        try:
            parse_run_at(value)
        except ValueError as exc:
            raise ValueError("runAt must be an ISO 8601 timestamp with offset") from exc
        return value


class StoreInstructionInput(StrictModel):
    title: NonEmptyStr
    content: NonEmptyStr
    triggers: list[NonEmptyStr] = Field(
        min_length=1,
        description="Event trigger identifiers such as gmail.message_created.",
    )
    metadata: dict[str, Any] | None = None


class ListInstructionsInput(StrictModel):
    status: Literal["active", "paused", "archived"] | None = None
