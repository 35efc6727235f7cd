"""Event source adapter contracts and record ingestion."""

from copilot_automation.sync.base import SOURCE_NAMES, SOURCE_PROVIDERS, SyncAdapter, SyncCounts
from copilot_automation.sync.ingest import RecordIngestor

__all__ = ["RecordIngestor", "SOURCE_NAMES", "SOURCE_PROVIDERS", "SyncAdapter", "SyncCounts"]
