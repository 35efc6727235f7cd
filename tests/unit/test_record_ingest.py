import base64
from datetime import UTC, datetime

from copilot_automation.instructions import InstructionMatcher, InstructionService
from copilot_automation.integrations.calendar import normalize_calendar_event
from copilot_automation.integrations.gmail import build_mime_message, normalize_gmail_message
from copilot_automation.integrations.hubspot import normalize_hubspot_contact
from copilot_automation.storage.models import EmailMessageRecord
from copilot_automation.sync import RecordIngestor, SyncCounts


def _ingestor(storage) -> RecordIngestor:
    return RecordIngestor(storage, InstructionMatcher(storage))


def _watch(storage, *triggers: str) -> None:
    InstructionService(storage).create(
        "user-1", title="Watcher", content="React to events", triggers=list(triggers)
    )


def _event_types(storage) -> list[str]:
    return sorted(item.event_type for item in storage.list_instruction_evaluations("user-1"))


def test_email_ingest_emits_created_then_updated_then_nothing(storage) -> None:
    _watch(storage, "gmail.message_created", "gmail.message_updated")
    ingestor = _ingestor(storage)
    record = EmailMessageRecord(user_id="user-1", message_id="m-1", subject="Hello")

    assert ingestor.ingest_email(record) == "created"
    assert ingestor.ingest_email(record.model_copy(update={"subject": "Hello again"})) == "updated"
    assert ingestor.ingest_email(record.model_copy(update={"subject": "Hello again"})) == "unchanged"

    assert _event_types(storage) == ["gmail.message_created", "gmail.message_updated"]


def test_sent_email_always_emits_sent_event(storage) -> None:
    _watch(storage, "gmail.message_sent")
    ingestor = _ingestor(storage)
    record = EmailMessageRecord(user_id="user-1", message_id="m-2", to_addresses=["a@b.com"])

    ingestor.ingest_email(record, sent=True)
    ingestor.ingest_email(record, sent=True)

    assert _event_types(storage) == ["gmail.message_sent", "gmail.message_sent"]
    contexts = storage.list_contexts(storage.list_tasks("user-1")[0].task_id)
    assert contexts[0].value["to"] == ["a@b.com"]


def test_calendar_and_contact_events_carry_identifiers(storage) -> None:
    _watch(storage, "calendar.event_created", "hubspot.contact_created", "hubspot.note_created")
    ingestor = _ingestor(storage)

    ingestor.ingest_calendar_event(
        normalize_calendar_event(
            "user-1",
            "primary",
            {
                "id": "evt-1",
                "summary": "Review",
                "start": {"dateTime": "2025-04-01T10:00:00-04:00"},
                "end": {"date": "2025-04-02"},
            },
        )
    )
    ingestor.ingest_hubspot_contact(
        normalize_hubspot_contact(
            "user-1", {"id": "42", "properties": {"email": "x@y.com", "firstname": "Xu"}}
        )
    )
    ingestor.note_changed("user-1", "n-1", ["42"], created=True)

    payloads = {}
    for task in storage.list_tasks("user-1"):
        event_type = task.metadata["eventType"]
        payloads[event_type] = storage.list_contexts(task.task_id)[0].value
    assert payloads["calendar.event_created"]["start"] == "2025-04-01T10:00:00-04:00"
    assert payloads["calendar.event_created"]["end"] == "2025-04-02T00:00:00+00:00"
    assert payloads["hubspot.contact_created"] == {
        "contactId": "42",
        "email": "x@y.com",
        "firstName": "Xu",
        "lastName": None,
    }
    assert payloads["hubspot.note_created"] == {"noteId": "n-1", "contactIds": ["42"]}


def test_normalize_gmail_message_decodes_parts() -> None:
    def encode(text: str) -> str:
        return base64.urlsafe_b64encode(text.encode()).decode().rstrip("=")

    record = normalize_gmail_message(
        "user-1",
        {
            "id": "m-9",
            "threadId": "t-9",
            "snippet": "Quick note",
            "internalDate": "1717000000000",
            "payload": {
                "mimeType": "multipart/alternative",
                "headers": [
                    {"name": "Subject", "value": "Plan"},
                    {"name": "From", "value": "Ann <ann@firm.com>"},
                    {"name": "To", "value": "Bo <bo@x.com>, cy@x.com"},
                ],
                "parts": [
                    {"mimeType": "text/plain", "body": {"data": encode("Plain body")}},
                    {"mimeType": "text/html", "body": {"data": encode("<p>Html body</p>")}},
                ],
            },
        },
    )

    assert record.subject == "Plan"
    assert record.from_address == "Ann <ann@firm.com>"
    assert record.to_addresses == ["bo@x.com", "cy@x.com"]
    assert record.body_text == "Plain body"
    assert record.body_html == "<p>Html body</p>"
    assert record.sent_at == datetime.fromtimestamp(1717000000, tz=UTC)


def test_build_mime_message_is_unpadded_base64url() -> None:
    raw = build_mime_message(to=["a@b.com"], subject="Hi", text="Body", cc=["c@d.com"])

    assert "=" not in raw
    decoded = base64.urlsafe_b64decode(raw + "=" * (-len(raw) % 4)).decode()
    assert "To: a@b.com" in decoded
    assert "Cc: c@d.com" in decoded
    assert "Subject: Hi" in decoded


def test_sync_counts_tally_results() -> None:
    counts = SyncCounts()
    for result in ("created", "updated", "unchanged", "created"):
        counts.record(result)

    assert counts.as_dict() == {"processed": 4, "created": 2, "updated": 1}
