"""Task lifecycle operations layered over the storage backend."""

from __future__ import annotations

import logging
from datetime import UTC, datetime, timedelta
from typing import Any

from copilot_automation.errors import TaskClaimConflict
from copilot_automation.storage.base import AutomationStorage
from copilot_automation.storage.models import (
    AgentTaskRecord,
    TaskBundle,
    TaskContextRecord,
    TaskStepRecord,
)

logger = logging.getLogger(__name__)

DEFAULT_STEP_TITLE = "Process task"
DEFAULT_FAILURE_MESSAGE = "Task failed"


def merge_metadata(existing: Any, updates: Any) -> Any:
    """Shallow-merge task metadata.

    ``None`` updates keep the existing value, a missing existing value takes the
    updates, two mappings merge key-wise and anything else is replaced.
    """

    if updates is None:
        return existing
    if existing is None:
        return updates
    if isinstance(existing, dict) and isinstance(updates, dict):
        return {**existing, **updates}
    return updates


class TaskService:
    def __init__(self, storage: AutomationStorage) -> None:
        self.storage = storage

    def create_task(
        self,
        user_id: str,
        *,
        type: str,
        summary: str | None = None,
        metadata: Any = None,
        scheduled_for: datetime | None = None,
        instruction_id: str | None = None,
        context: dict[str, Any] | None = None,
        steps: list[dict[str, Any]] | None = None,
    ) -> AgentTaskRecord:
        task = self.storage.create_task(
            user_id,
            type=type,
            summary=summary,
            metadata=metadata,
            scheduled_for=scheduled_for,
            instruction_id=instruction_id,
            context=context,
            steps=steps,
        )
        logger.info(
            "event=task_created task_id=%s user_id=%s type=%s scheduled_for=%s",
            task.task_id,
            user_id,
            type,
            scheduled_for.isoformat() if scheduled_for else None,
        )
        return task

    def set_context(self, task_id: str, key: str, value: Any) -> TaskContextRecord:
        return self.storage.set_context(task_id, key, value)

    def list_due_tasks(
        self,
        *,
        user_id: str | None = None,
        limit: int = 5,
        now: datetime | None = None,
    ) -> list[AgentTaskRecord]:
        return self.storage.list_due_tasks(
            now=now or datetime.now(UTC), user_id=user_id, limit=limit
        )

    def list_tasks(
        self, user_id: str, *, status: str | None = None, limit: int = 50
    ) -> list[AgentTaskRecord]:
        return self.storage.list_tasks(user_id, status=status, limit=limit)

    def claim(self, task_id: str) -> bool:
        claimed = self.storage.claim_task(task_id)
        if claimed:
            logger.info("event=task_claimed task_id=%s", task_id)
        else:
            logger.info("event=task_claim_skipped task_id=%s", task_id)
        return claimed

    def require_claim(self, task_id: str) -> None:
        """Claim the task or raise ``TaskClaimConflict``."""

        if not self.claim(task_id):
            raise TaskClaimConflict(task_id)

    def load_bundle(self, task_id: str) -> TaskBundle | None:
        task = self.storage.get_task(task_id)
        if task is None:
            return None
        instruction = None
        if task.instruction_id:
            instruction = self.storage.get_instruction(task.instruction_id)
        return TaskBundle(
            task=task,
            steps=self.storage.list_steps(task_id),
            contexts=self.storage.list_contexts(task_id),
            instruction=instruction,
        )

    def next_step(self, bundle: TaskBundle) -> TaskStepRecord:
        """Return the step to work on, moved to ``running``."""

        step = next(
            (item for item in bundle.steps if item.status in ("pending", "running")),
            None,
        )
        if step is None:
            step = self.storage.append_step(
                bundle.task.task_id,
                title=bundle.task.summary or DEFAULT_STEP_TITLE,
            )
        if step.status == "pending":
            step = self.storage.update_step(
                step.step_id, status="running", started_at=datetime.now(UTC)
            )
        return step

    def finish_step(
        self,
        step_id: str,
        status: str,
        *,
        output: Any = None,
        error: Any = None,
    ) -> TaskStepRecord:
        return self.storage.update_step(
            step_id,
            status=status,
            output=output,
            error=error,
            completed_at=datetime.now(UTC),
        )

    def finish_task(
        self,
        task_id: str,
        status: str,
        *,
        summary: str | None = None,
        error_message: str | None = None,
        metadata: Any = None,
    ) -> AgentTaskRecord:
        now = datetime.now(UTC)
        changes: dict[str, Any] = {"status": status}
        if summary is not None:
            changes["summary"] = summary
        if metadata is not None:
            changes["metadata"] = metadata
        if status == "completed":
            changes["completed_at"] = now
            changes["error_message"] = None
        elif status == "failed":
            changes["error_message"] = error_message or DEFAULT_FAILURE_MESSAGE
        elif status == "cancelled":
            changes["cancelled_at"] = now
        task = self.storage.update_task(task_id, **changes)
        logger.info("event=task_finished task_id=%s status=%s", task_id, status)
        return task

    def fail_running_steps(self, task_id: str, message: str) -> int:
        return self.storage.fail_running_steps(task_id, error=message)

    def requeue_stale_tasks(
        self, older_than: timedelta, *, now: datetime | None = None
    ) -> list[str]:
        cutoff = (now or datetime.now(UTC)) - older_than
        task_ids = self.storage.requeue_stale_tasks(cutoff=cutoff)
        for task_id in task_ids:
            logger.warning(
                "event=task_requeued task_id=%s cutoff=%s", task_id, cutoff.isoformat()
            )
        return task_ids
