"""Gmail send/draft client and message normalization."""

from __future__ import annotations

import base64
from datetime import UTC, datetime
from email.message import EmailMessage
from email.utils import getaddresses
from typing import Any

from copilot_automation.integrations.http import TokenProvider, quote, request_json
from copilot_automation.storage.models import EmailMessageRecord

GMAIL_API = "https://gmail.googleapis.com/gmail/v1/users/me"


def build_mime_message(
    *,
    to: list[str],
    subject: str,
    text: str | None = None,
    html: str | None = None,
    cc: list[str] | None = None,
    bcc: list[str] | None = None,
    in_reply_to: str | None = None,
    references: list[str] | None = None,
) -> str:
    """Compose a MIME message and return it base64url-encoded without padding."""

    if not text and not html:
        raise ValueError("Either text or html content must be provided to compose a Gmail message")

    message = EmailMessage()
    message["To"] = ", ".join(to)
    if cc:
        message["Cc"] = ", ".join(cc)
    if bcc:
        message["Bcc"] = ", ".join(bcc)
    message["Subject"] = subject
    if in_reply_to:
        message["In-Reply-To"] = in_reply_to
    if references:
        message["References"] = " ".join(references)

    message.set_content(text or "")
    if html:
        message.add_alternative(html, subtype="html")

    return base64.urlsafe_b64encode(message.as_bytes()).decode("ascii").rstrip("=")


class GmailClient:
    def __init__(self, tokens: TokenProvider, *, timeout_s: float = 30.0) -> None:
        self.tokens = tokens
        self.timeout_s = timeout_s

    def send_message(self, user_id: str, raw: str, *, thread_id: str | None = None) -> dict[str, Any]:
        body: dict[str, Any] = {"raw": raw}
        if thread_id:
            body["threadId"] = thread_id
        return request_json(
            "POST",
            f"{GMAIL_API}/messages/send",
            token=self.tokens.access_token(user_id, "google"),
            body=body,
            timeout_s=self.timeout_s,
            failure_message="Failed to send Gmail message",
        )

    def create_draft(self, user_id: str, raw: str, *, thread_id: str | None = None) -> dict[str, Any]:
        message: dict[str, Any] = {"raw": raw}
        if thread_id:
            message["threadId"] = thread_id
        return request_json(
            "POST",
            f"{GMAIL_API}/drafts",
            token=self.tokens.access_token(user_id, "google"),
            body={"message": message},
            timeout_s=self.timeout_s,
            failure_message="Failed to create Gmail draft",
        )

    def get_message(self, user_id: str, message_id: str) -> EmailMessageRecord:
        payload = request_json(
            "GET",
            f"{GMAIL_API}/messages/{quote(message_id)}?format=full",
            token=self.tokens.access_token(user_id, "google"),
            timeout_s=self.timeout_s,
            failure_message=f"Gmail message {message_id} could not be loaded",
        )
        return normalize_gmail_message(user_id, payload)


def normalize_gmail_message(user_id: str, payload: dict[str, Any]) -> EmailMessageRecord:
    part = payload.get("payload") or {}
    headers = {
        str(item.get("name", "")).lower(): str(item.get("value", ""))
        for item in part.get("headers") or []
    }
    sent_at = None
    internal_date = payload.get("internalDate")
    if internal_date:
        sent_at = datetime.fromtimestamp(int(internal_date) / 1000, tz=UTC)

    text_parts: list[str] = []
    html_parts: list[str] = []
    _collect_bodies(part, text_parts, html_parts)

    return EmailMessageRecord(
        user_id=user_id,
        message_id=str(payload["id"]),
        thread_id=payload.get("threadId"),
        subject=headers.get("subject") or None,
        from_address=headers.get("from") or None,
        to_addresses=[address for _, address in getaddresses([headers.get("to", "")]) if address],
        snippet=payload.get("snippet"),
        body_text="\n".join(text_parts) or None,
        body_html="\n".join(html_parts) or None,
        sent_at=sent_at,
    )


def _collect_bodies(part: dict[str, Any], text_parts: list[str], html_parts: list[str]) -> None:
    mime_type = part.get("mimeType", "")
    data = (part.get("body") or {}).get("data")
    if data:
        decoded = _decode_base64url(data)
        if mime_type == "text/plain":
            text_parts.append(decoded)
        elif mime_type == "text/html":
            html_parts.append(decoded)
    for child in part.get("parts") or []:
        _collect_bodies(child, text_parts, html_parts)


def _decode_base64url(data: str) -> str:
    padded = data + "=" * (-len(data) % 4)
    return base64.urlsafe_b64decode(padded.encode("ascii")).decode("utf-8", errors="replace")
