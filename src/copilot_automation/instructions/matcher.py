"""Match external events against standing instructions and spawn tasks."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any

from copilot_automation.storage.base import AutomationStorage
from copilot_automation.storage.models import InstructionMatch, InstructionRecord

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class InstructionEvent:
    type: str
    payload: Any = None
    occurred_at: datetime | None = None


class InstructionMatcher:
    """Evaluate one event against every active instruction of a user.

    Each match is recorded in a single storage transaction: the evaluation row,
    the instruction's ``last_evaluated_at``, a pending ``instruction`` task, the
    ``event`` context entry and the seed step.
    """

    def __init__(self, storage: AutomationStorage) -> None:
        self.storage = storage

    def matching_instructions(self, user_id: str, event_type: str) -> list[InstructionRecord]:
        instructions = self.storage.list_instructions(user_id, status="active")
        return [item for item in instructions if event_type in item.triggers]

    def evaluate(self, user_id: str, event: InstructionEvent) -> list[InstructionMatch]:
        matches: list[InstructionMatch] = []
        occurred_at = event.occurred_at or datetime.now(UTC)
        for instruction in self.matching_instructions(user_id, event.type):
            match = self.storage.record_instruction_match(
                user_id=user_id,
                instruction=instruction,
                event_type=event.type,
                event_payload=event.payload,
                occurred_at=occurred_at,
            )
            logger.info(
                "event=instruction_matched instruction_id=%s task_id=%s event_type=%s",
                match.instruction_id,
                match.task_id,
                event.type,
            )
            matches.append(match)
        return matches
