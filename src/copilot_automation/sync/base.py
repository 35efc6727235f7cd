"""Contracts for data-source sync adapters."""

from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Protocol

SOURCE_NAMES: tuple[str, ...] = ("gmail", "calendar", "hubspot")

# Integration that must be connected before each source is synced.
SOURCE_PROVIDERS: dict[str, str] = {
    "gmail": "google",
    "calendar": "google",
    "hubspot": "hubspot",
}


@dataclass
class SyncCounts:
    processed: int = 0
    created: int = 0
    updated: int = 0

    def record(self, result: str) -> None:
        self.processed += 1
        if result == "created":
            self.created += 1
        elif result == "updated":
            self.updated += 1

    def as_dict(self) -> dict[str, int]:
        return asdict(self)


class SyncAdapter(Protocol):
    """Fetch and normalize one source for a user, persisting through a RecordIngestor."""

    def sync(self, user_id: str) -> SyncCounts: ...
