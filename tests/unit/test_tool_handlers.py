import json
from datetime import UTC, datetime, timedelta

import pytest

from copilot_automation.instructions import InstructionMatcher, InstructionService
from copilot_automation.retrieval import ContextRetriever, KnowledgeSearch
from copilot_automation.storage.memory import InMemoryAutomationStorage
from copilot_automation.storage.models import EmailMessageRecord, HubspotContactRecord
from copilot_automation.sync import RecordIngestor
from copilot_automation.tasks import TaskService
from copilot_automation.tools import (
    ToolContext,
    ToolDependencies,
    ToolExecutor,
    build_registry,
    list_tools,
)

CONTEXT = ToolContext(user_id="user-1", time_zone="UTC")


class FakeGmail:
    def __init__(self) -> None:
        self.sent: list[tuple[str, str, str | None]] = []

    def send_message(self, user_id: str, raw: str, *, thread_id: str | None = None) -> dict:
        self.sent.append((user_id, raw, thread_id))
        return {"id": "sent-1", "threadId": thread_id or "thread-1"}

    def create_draft(self, user_id: str, raw: str, *, thread_id: str | None = None) -> dict:
        return {"id": "draft-1", "message": {"id": "msg-draft", "threadId": "thread-9"}}

    def get_message(self, user_id: str, message_id: str) -> EmailMessageRecord:
        return EmailMessageRecord(
            user_id=user_id,
            message_id=message_id,
            thread_id="thread-1",
            subject="Portfolio update",
            from_address="advisor@firm.com",
            to_addresses=["client@example.com"],
            sent_at=datetime.now(UTC),
        )


class FakeCalendar:
    def __init__(self) -> None:
        self.created: list[dict] = []

    def create_event(self, user_id, event, *, calendar_id="primary", send_updates="all") -> dict:
        self.created.append({"event": event, "calendar_id": calendar_id, "send_updates": send_updates})
        return {"id": "evt-1", **event}

    def update_event(self, user_id, event_id, event, *, calendar_id="primary", send_updates="all"):
        return {"id": event_id, **event}


class FakeHubspot:
    def upsert_contact(self, user_id, properties, *, contact_id=None) -> dict:
        return {"id": contact_id or "hs-new"}

    def get_contact(self, user_id, contact_id) -> HubspotContactRecord:
        raise RuntimeError("HubSpot read timed out")


class StoringHubspot:
    def __init__(self) -> None:
        self.contacts: dict[str, dict] = {}

    def upsert_contact(self, user_id, properties, *, contact_id=None) -> dict:
        contact_id = contact_id or f"hs-{len(self.contacts) + 1}"
        self.contacts[contact_id] = {**self.contacts.get(contact_id, {}), **properties}
        return {"id": contact_id}

    def get_contact(self, user_id, contact_id) -> HubspotContactRecord:
        properties = self.contacts[contact_id]
        return HubspotContactRecord(
            user_id=user_id,
            contact_id=contact_id,
            email=properties.get("email"),
            first_name=properties.get("firstname"),
            properties=properties,
        )


def _deps(storage, **clients) -> ToolDependencies:
    matcher = InstructionMatcher(storage)
    return ToolDependencies(
        storage=storage,
        tasks=TaskService(storage),
        instructions=InstructionService(storage),
        knowledge=KnowledgeSearch(storage, ContextRetriever(storage)),
        ingestor=RecordIngestor(storage, matcher),
        **clients,
    )


def _run(storage, tool: str, arguments: dict, **clients) -> dict:
    executor = ToolExecutor(build_registry(_deps(storage, **clients)), tool_timeout_s=2.0)
    return executor.execute(tool, json.dumps(arguments), CONTEXT)


def test_registry_exposes_all_tools(storage) -> None:
    registry = build_registry(_deps(storage))

    assert list_tools(registry) == [
        "createCalendarEvent",
        "createOrUpdateHubspotContact",
        "draftEmail",
        "listInstructions",
        "lookupHubspotContact",
        "scheduleFollowUpTask",
        "searchKnowledge",
        "sendEmail",
        "storeInstruction",
        "updateCalendarEvent",
    ]
    with pytest.raises(TypeError):
        registry["extra"] = registry["sendEmail"]  # type: ignore[index]


def test_send_email_without_integration_is_a_tool_error(storage) -> None:
    result = _run(
        storage,
        "sendEmail",
        {"to": ["client@example.com"], "subject": "Hello", "text": "Hi there"},
    )

    assert result == {"success": False, "error": "Gmail integration is not configured"}


def test_send_email_ingests_sent_message_and_fires_instructions(storage) -> None:
    InstructionService(storage).create(
        "user-1", title="Log sends", content="Note sent emails", triggers=["gmail.message_sent"]
    )
    gmail = FakeGmail()

    result = _run(
        storage,
        "sendEmail",
        {"to": ["client@example.com"], "subject": "Portfolio update", "text": "See attached."},
        gmail=gmail,
    )

    assert result == {"success": True, "result": {"messageId": "sent-1", "threadId": "thread-1"}}
    assert len(gmail.sent) == 1
    assert storage.list_email_messages("user-1")[0].message_id == "sent-1"
    tasks = storage.list_tasks("user-1")
    assert [task.summary for task in tasks] == ["Log sends"]


def test_draft_email_returns_draft_ids(storage) -> None:
    result = _run(
        storage,
        "draftEmail",
        {"to": ["client@example.com"], "subject": "Draft", "html": "<p>Hi</p>"},
        gmail=FakeGmail(),
    )

    assert result["result"] == {"draftId": "draft-1", "messageId": "msg-draft", "threadId": "thread-9"}


def test_create_calendar_event_upserts_locally(storage) -> None:
    calendar = FakeCalendar()
    result = _run(
        storage,
        "createCalendarEvent",
        {
            "summary": "Annual review",
            "start": {"dateTime": "2025-07-01T15:00:00Z"},
            "end": {"dateTime": "2025-07-01T16:00:00Z"},
            "attendees": [{"email": "client@example.com"}],
            "sendUpdates": "none",
        },
        calendar=calendar,
    )

    assert result["success"] is True
    assert result["result"]["eventId"] == "evt-1"
    assert result["result"]["calendarId"] == "primary"
    assert calendar.created[0]["send_updates"] == "none"
    assert "sendUpdates" not in calendar.created[0]["event"]
    events = storage.list_calendar_events("user-1", include_unscheduled=True)
    assert [event.summary for event in events] == ["Annual review"]


def test_calendar_event_requires_start_moment(storage) -> None:
    result = _run(
        storage,
        "createCalendarEvent",
        {"summary": "Broken", "start": {}, "end": {"date": "2025-07-01"}},
        calendar=FakeCalendar(),
    )

    assert result == {"success": False, "error": "start requires either dateTime or date"}


def test_hubspot_upsert_survives_ingest_failure(storage) -> None:
    result = _run(
        storage,
        "createOrUpdateHubspotContact",
        {"properties": {"email": "new@client.com", "firstname": "Nia"}},
        hubspot=FakeHubspot(),
    )

    assert result == {"success": True, "result": {"contactId": "hs-new"}}


def test_lookup_hubspot_contact_by_email(storage) -> None:
    storage.upsert_hubspot_contact(
        HubspotContactRecord(
            user_id="user-1",
            contact_id="hs-1",
            email="sara@client.com",
            first_name="Sara",
            last_name="Lee",
        )
    )
    storage.upsert_hubspot_contact(
        HubspotContactRecord(user_id="user-1", contact_id="hs-2", email="bob@client.com")
    )

    result = _run(storage, "lookupHubspotContact", {"email": "sara@client.com"})

    assert result["success"] is True
    assert result["result"]["count"] == 1
    contact = result["result"]["contacts"][0]
    assert contact["contactId"] == "hs-1"
    assert contact["fullName"] == "Sara Lee"


def test_schedule_follow_up_creates_future_task(storage) -> None:
    past = (datetime.now(UTC) - timedelta(days=3)).isoformat()

    result = _run(
        storage,
        "scheduleFollowUpTask",
        {"summary": "Check on paperwork", "runAt": past, "metadata": {"clientId": "c-1"}},
    )

    assert result["success"] is True
    task = storage.get_task(result["result"]["taskId"])
    assert task.type == "followUp"
    assert task.summary == "Check on paperwork"
    assert task.scheduled_for > datetime.now(UTC)
    assert task.metadata["clientId"] == "c-1"
    assert task.metadata["followUpScheduling"]["adjustment"]["type"] == "shifted_forward"
    assert result["result"]["scheduledFor"] == task.scheduled_for.isoformat()


def test_store_and_list_instructions(storage) -> None:
    stored = _run(
        storage,
        "storeInstruction",
        {
            "title": "Greet new contacts",
            "content": "Email every new contact.",
            "triggers": [" hubspot.contact_created "],
        },
    )
    listed = _run(storage, "listInstructions", {"status": "active"})

    assert stored["success"] is True
    assert stored["result"]["status"] == "active"
    assert stored["result"]["triggers"] == ["hubspot.contact_created"]
    assert listed["result"]["count"] == 1
    assert listed["result"]["instructions"][0]["id"] == stored["result"]["instructionId"]


def test_search_knowledge_exact_subject(storage) -> None:
    for index, subject in enumerate(["Quarterly statement", "Lunch plans", "Statement corrections"]):
        storage.upsert_email_message(
            EmailMessageRecord(
                user_id="user-1",
                message_id=f"m-{index}",
                subject=subject,
                from_address="ops@bank.com",
                body_text=f"Body {index}",
                sent_at=datetime(2025, 1, index + 1, tzinfo=UTC),
            )
        )

    result = _run(
        storage, "searchKnowledge", {"query": "statement", "exactSubjectMatch": True}
    )

    assert result["success"] is True
    subjects = [item["subject"] for item in result["result"]["emails"]]
    assert subjects == ["Statement corrections", "Quarterly statement"]


def test_hubspot_upsert_with_same_contact_id_keeps_one_contact(storage) -> None:
    hubspot = StoringHubspot()
    first = _run(
        storage,
        "createOrUpdateHubspotContact",
        {"contactId": "hs-9", "properties": {"email": "nia@client.com", "firstname": "Nia"}},
        hubspot=hubspot,
    )
    second = _run(
        storage,
        "createOrUpdateHubspotContact",
        {"contactId": "hs-9", "properties": {"email": "nia@client.com", "firstname": "Nia-Rose"}},
        hubspot=hubspot,
    )

    assert first == second == {"success": True, "result": {"contactId": "hs-9"}}
    contacts = storage.list_hubspot_contacts("user-1")
    assert [(item.contact_id, item.first_name) for item in contacts] == [("hs-9", "Nia-Rose")]


@pytest.mark.parametrize(
    "tool_name", list_tools(build_registry(_deps(InMemoryAutomationStorage())))
)
def test_every_tool_rejects_unknown_fields(storage, tool_name) -> None:
    result = _run(
        storage,
        tool_name,
        {"bogus": 1},
        gmail=FakeGmail(),
        calendar=FakeCalendar(),
        hubspot=StoringHubspot(),
    )

    assert result["success"] is False
    assert result["error"]
    assert "result" not in result
