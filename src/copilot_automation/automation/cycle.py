"""One automation pass: sync each user's connected sources, then run due tasks."""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from copilot_automation.runner.task_runner import TaskOutcome, TaskRunner
from copilot_automation.storage.base import AutomationStorage
from copilot_automation.sync.base import SOURCE_NAMES, SOURCE_PROVIDERS, SyncAdapter

logger = logging.getLogger(__name__)


class CycleModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class IntegrationSnapshot(CycleModel):
    google: bool = False
    hubspot: bool = False


class TaskOutcomeView(CycleModel):
    task_id: str
    status: str
    error: str | None = None


class UserCycleOutcome(CycleModel):
    user_id: str
    integrations: IntegrationSnapshot
    gmail: dict[str, Any] | None = None
    calendar: dict[str, Any] | None = None
    hubspot: dict[str, Any] | None = None
    tasks: list[TaskOutcomeView] = Field(default_factory=list)


class AutomationCycleResult(CycleModel):
    users_processed: int = 0
    outcomes: list[UserCycleOutcome] = Field(default_factory=list)

    def to_payload(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class AutomationCycle:
    """Sequential per-user pass.

    A failing source is recorded as ``{"error": ...}`` on the user's outcome and
    never stops the other sources or the task batch.
    """

    def __init__(
        self,
        storage: AutomationStorage,
        runner: TaskRunner,
        *,
        adapters: Mapping[str, SyncAdapter] | None = None,
        task_batch_size: int = 5,
    ) -> None:
        self.storage = storage
        self.runner = runner
        self.adapters = dict(adapters or {})
        self.task_batch_size = task_batch_size

    def run(
        self, *, user_id: str | None = None, task_batch_size: int | None = None
    ) -> AutomationCycleResult:
        user_ids = self.storage.list_user_ids(user_id)
        if not user_ids:
            return AutomationCycleResult()

        connected = self.storage.list_integrations(user_ids)
        batch_size = task_batch_size or self.task_batch_size
        outcomes: list[UserCycleOutcome] = []

        for current_user in user_ids:
            providers = connected.get(current_user, set())
            outcome = UserCycleOutcome(
                user_id=current_user,
                integrations=IntegrationSnapshot(
                    google="google" in providers,
                    hubspot="hubspot" in providers,
                ),
            )
            for source in SOURCE_NAMES:
                if SOURCE_PROVIDERS[source] in providers:
                    setattr(outcome, source, self._sync_source(source, current_user))

            outcome.tasks = [
                _task_view(item)
                for item in self.runner.process_due_tasks(user_id=current_user, limit=batch_size)
            ]
            outcomes.append(outcome)

        logger.info(
            "event=automation_cycle_completed users=%s tasks=%s",
            len(outcomes),
            sum(len(item.tasks) for item in outcomes),
        )
        return AutomationCycleResult(users_processed=len(outcomes), outcomes=outcomes)

    def _sync_source(self, source: str, user_id: str) -> dict[str, Any]:
        adapter = self.adapters.get(source)
        if adapter is None:
            return {"error": f"{source} sync adapter is not configured"}
        try:
            return adapter.sync(user_id).as_dict()
        except Exception as exc:  # noqa: BLE001
            logger.warning(
                "event=sync_failed source=%s user_id=%s error=%s", source, user_id, exc
            )
            return {"error": str(exc) or f"{source} sync failed"}


def _task_view(outcome: TaskOutcome) -> TaskOutcomeView:
    return TaskOutcomeView(task_id=outcome.task_id, status=outcome.status, error=outcome.error)
