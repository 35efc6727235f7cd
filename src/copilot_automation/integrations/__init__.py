"""Clients for the Gmail, Google Calendar and HubSpot APIs."""

from copilot_automation.integrations.calendar import CalendarClient, normalize_calendar_event
from copilot_automation.integrations.gmail import (
    GmailClient,
    build_mime_message,
    normalize_gmail_message,
)
from copilot_automation.integrations.http import StaticTokenProvider, TokenProvider
from copilot_automation.integrations.hubspot import HubspotClient, normalize_hubspot_contact

__all__ = [
    "CalendarClient",
    "GmailClient",
    "HubspotClient",
    "StaticTokenProvider",
    "TokenProvider",
    "build_mime_message",
    "normalize_calendar_event",
    "normalize_gmail_message",
    "normalize_hubspot_contact",
]
