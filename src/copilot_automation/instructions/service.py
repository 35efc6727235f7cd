"""CRUD for standing instructions."""

from __future__ import annotations

import logging
from typing import Any

from copilot_automation.errors import InstructionValidationError, NotFoundError
from copilot_automation.storage.base import AutomationStorage
from copilot_automation.storage.models import InstructionRecord

logger = logging.getLogger(__name__)


def normalize_triggers(triggers: list[str] | None) -> list[str]:
    """Strip whitespace, drop blanks and keep first-seen order."""

    output: list[str] = []
    for trigger in triggers or []:
        cleaned = trigger.strip()
        if cleaned and cleaned not in output:
            output.append(cleaned)
    return output


class InstructionService:
    def __init__(self, storage: AutomationStorage) -> None:
        self.storage = storage

    def create(
        self,
        user_id: str,
        *,
        title: str,
        content: str,
        triggers: list[str] | None,
        metadata: dict[str, Any] | None = None,
        status: str = "active",
    ) -> InstructionRecord:
        cleaned = normalize_triggers(triggers)
        self._check_triggers(status, cleaned)
        instruction = self.storage.create_instruction(
            user_id,
            title=title.strip(),
            content=content.strip(),
            triggers=cleaned,
            metadata=metadata,
            status=status,
        )
        logger.info(
            "event=instruction_created instruction_id=%s user_id=%s triggers=%s",
            instruction.instruction_id,
            user_id,
            ",".join(cleaned),
        )
        return instruction

    def get(self, user_id: str, instruction_id: str) -> InstructionRecord:
        instruction = self.storage.get_instruction(instruction_id)
        if instruction is None or instruction.user_id != user_id:
            raise NotFoundError("Instruction not found")
        return instruction

    def update(self, user_id: str, instruction_id: str, **changes: Any) -> InstructionRecord:
        current = self.get(user_id, instruction_id)
        updates = {key: value for key, value in changes.items() if value is not None}
        if "triggers" in updates:
            updates["triggers"] = normalize_triggers(updates["triggers"])
        self._check_triggers(
            updates.get("status", current.status),
            updates.get("triggers", current.triggers),
        )
        if not updates:
            return current
        updated = self.storage.update_instruction(instruction_id, **updates)
        logger.info(
            "event=instruction_updated instruction_id=%s fields=%s",
            instruction_id,
            ",".join(sorted(updates)),
        )
        return updated

    def list_for_user(
        self,
        user_id: str,
        *,
        status: str | None = None,
        limit: int | None = None,
    ) -> list[InstructionRecord]:
        return self.storage.list_instructions(user_id, status=status, limit=limit)

    @staticmethod
    def _check_triggers(status: str, triggers: list[str]) -> None:
        if status == "active" and not triggers:
            raise InstructionValidationError(
                "An active instruction needs at least one trigger"
            )
