"""HubSpot CRM contact client and contact normalization."""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any

from copilot_automation.integrations.http import TokenProvider, quote, request_json
from copilot_automation.storage.models import HubspotContactRecord

CONTACTS_ENDPOINT = "https://api.hubapi.com/crm/v3/objects/contacts"
CONTACT_PROPERTIES = (
    "email",
    "firstname",
    "lastname",
    "phone",
    "company",
    "lifecyclestage",
    "hubspot_owner_id",
    "hs_lastmodifieddate",
)


class HubspotClient:
    def __init__(self, tokens: TokenProvider, *, timeout_s: float = 30.0) -> None:
        self.tokens = tokens
        self.timeout_s = timeout_s

    def upsert_contact(
        self, user_id: str, properties: dict[str, Any], *, contact_id: str | None = None
    ) -> dict[str, Any]:
        """PATCH an existing contact when ``contact_id`` is given, otherwise POST a new one."""

        if contact_id:
            method, url = "PATCH", f"{CONTACTS_ENDPOINT}/{quote(contact_id)}"
        else:
            method, url = "POST", CONTACTS_ENDPOINT
        return request_json(
            method,
            url,
            token=self.tokens.access_token(user_id, "hubspot"),
            body={"properties": properties},
            timeout_s=self.timeout_s,
            failure_message="Failed to upsert HubSpot contact",
        )

    def get_contact(self, user_id: str, contact_id: str) -> HubspotContactRecord:
        payload = request_json(
            "GET",
            f"{CONTACTS_ENDPOINT}/{quote(contact_id)}?properties={','.join(CONTACT_PROPERTIES)}",
            token=self.tokens.access_token(user_id, "hubspot"),
            timeout_s=self.timeout_s,
            failure_message=f"Failed to load HubSpot contact {contact_id}",
        )
        return normalize_hubspot_contact(user_id, payload)


def normalize_hubspot_contact(user_id: str, payload: dict[str, Any]) -> HubspotContactRecord:
    properties = dict(payload.get("properties") or {})
    modified_raw = properties.get("hs_lastmodifieddate") or payload.get("updatedAt")
    return HubspotContactRecord(
        user_id=user_id,
        contact_id=str(payload["id"]),
        email=properties.get("email") or None,
        first_name=properties.get("firstname") or None,
        last_name=properties.get("lastname") or None,
        company=properties.get("company") or None,
        phone=properties.get("phone") or None,
        lifecycle_stage=properties.get("lifecyclestage") or None,
        properties=properties,
        last_modified_at=_parse_timestamp(modified_raw),
    )


def _parse_timestamp(raw: Any) -> datetime | None:
    if not raw:
        return None
    text = str(raw)
    if text.isdigit():
        return datetime.fromtimestamp(int(text) / 1000, tz=UTC)
    return datetime.fromisoformat(text.replace("Z", "+00:00"))
