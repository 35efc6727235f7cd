"""Storage backends and models."""

from copilot_automation.storage.base import AutomationStorage
from copilot_automation.storage.memory import InMemoryAutomationStorage
from copilot_automation.storage.models import (
    AgentTaskRecord,
    CalendarEventRecord,
    EmailMessageRecord,
    HubspotContactRecord,
    InstructionEvaluationRecord,
    InstructionMatch,
    InstructionRecord,
    TaskBundle,
    TaskContextRecord,
    TaskStepRecord,
)
from copilot_automation.storage.postgres import PostgresAutomationStorage

__all__ = [
    "AgentTaskRecord",
    "AutomationStorage",
    "CalendarEventRecord",
    "EmailMessageRecord",
    "HubspotContactRecord",
    "InMemoryAutomationStorage",
    "InstructionEvaluationRecord",
    "InstructionMatch",
    "InstructionRecord",
    "PostgresAutomationStorage",
    "TaskBundle",
    "TaskContextRecord",
    "TaskStepRecord",
]
