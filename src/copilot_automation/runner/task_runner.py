"""Claim due tasks and drive each one through the agent loop."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import Any, Literal

from copilot_automation.errors import TaskClaimConflict, TaskExecutionFailure
from copilot_automation.graph.state import initial_state
from copilot_automation.graph.workflow import build_agent_graph, recursion_limit_for
from copilot_automation.llm.client import ChatCompletionClient
from copilot_automation.retrieval.context import ContextRetriever
from copilot_automation.runner.prompt import AUTOMATION_SYSTEM_PROMPT, build_task_prompt
from copilot_automation.storage.models import TaskBundle, TaskStepRecord
from copilot_automation.tasks.service import TaskService, merge_metadata
from copilot_automation.tools.follow_up import metadata_time_zone, resolve_time_zone
from copilot_automation.tools.gateway import ToolExecutor

logger = logging.getLogger(__name__)

TASK_NOT_FOUND = "Task not found after claim"
DEFAULT_FAILURE_MESSAGE = "Task processing failed"


@dataclass(frozen=True)
class TaskOutcome:
    task_id: str
    status: Literal["completed", "skipped", "failed"]
    error: str | None = None


@dataclass(frozen=True)
class TaskExecution:
    answer: str
    output: dict[str, Any]
    iterations: int


class TaskRunner:
    """Sequential task processing.

    The claim is the only concurrency control: a task another runner already
    claimed is reported as ``skipped`` and left untouched.
    """

    def __init__(
        self,
        tasks: TaskService,
        retriever: ContextRetriever,
        *,
        client: ChatCompletionClient,
        executor: ToolExecutor,
        tools: list[dict[str, Any]],
        max_iterations: int = 6,
        summary_max_chars: int = 160,
        retrieval_limit: int = 5,
        default_time_zone: str = "UTC",
        stale_after: timedelta | None = None,
    ) -> None:
        self.tasks = tasks
        self.retriever = retriever
        self.max_iterations = max_iterations
        self.summary_max_chars = summary_max_chars
        self.retrieval_limit = retrieval_limit
        self.default_time_zone = default_time_zone
        self.stale_after = stale_after
        self.graph = build_agent_graph(client=client, executor=executor, tools=tools)

    def process_due_tasks(
        self, *, user_id: str | None = None, limit: int = 5
    ) -> list[TaskOutcome]:
        if self.stale_after is not None:
            self.tasks.requeue_stale_tasks(self.stale_after)
        due = self.tasks.list_due_tasks(user_id=user_id, limit=limit)
        return [self.process_task(task.task_id) for task in due]

    def process_task(self, task_id: str) -> TaskOutcome:
        try:
            self.tasks.require_claim(task_id)
        except TaskClaimConflict:
            return TaskOutcome(task_id=task_id, status="skipped")

        try:
            bundle = self.tasks.load_bundle(task_id)
            if bundle is None:
                logger.error("event=task_missing_after_claim task_id=%s", task_id)
                return TaskOutcome(task_id=task_id, status="failed", error=TASK_NOT_FOUND)
            step = self.tasks.next_step(bundle)
            execution = self._run_agent(bundle, step)
            self.tasks.finish_step(step.step_id, "completed", output=execution.output)
            self.tasks.finish_task(
                task_id,
                "completed",
                summary=execution.answer[: self.summary_max_chars],
                metadata=merge_metadata(
                    bundle.task.metadata,
                    {
                        "lastRun": {
                            "completedAt": datetime.now(UTC).isoformat(),
                            "stepId": step.step_id,
                            "iterations": execution.iterations,
                            "toolCalls": len(execution.output["tools"]),
                        }
                    },
                ),
            )
        except Exception as exc:  # noqa: BLE001
            message = str(exc) or DEFAULT_FAILURE_MESSAGE
            logger.exception("event=task_failed task_id=%s error=%s", task_id, message)
            self._record_failure(task_id, message)
            return TaskOutcome(task_id=task_id, status="failed", error=message)

        logger.info(
            "event=task_completed task_id=%s iterations=%s tool_calls=%s",
            task_id,
            execution.iterations,
            len(execution.output["tools"]),
        )
        return TaskOutcome(task_id=task_id, status="completed")

    def _run_agent(self, bundle: TaskBundle, step: TaskStepRecord) -> TaskExecution:
        task = bundle.task
        retrieval = self.retriever.build(
            task.user_id,
            task.summary or "",
            email_limit=self.retrieval_limit,
            calendar_limit=self.retrieval_limit,
            contact_limit=self.retrieval_limit,
        )
        messages = [
            {"role": "system", "content": AUTOMATION_SYSTEM_PROMPT},
            {"role": "user", "content": build_task_prompt(bundle, step, retrieval)},
        ]
        state = initial_state(
            task.user_id,
            messages,
            time_zone=resolve_time_zone(
                explicit=metadata_time_zone(task.metadata),
                context_time_zone=self.default_time_zone,
            ),
            max_iterations=self.max_iterations,
        )
        try:
            result = self.graph.invoke(
                state, config={"recursion_limit": recursion_limit_for(self.max_iterations)}
            )
        except Exception as exc:
            raise TaskExecutionFailure(str(exc) or DEFAULT_FAILURE_MESSAGE) from exc

        answer = str(result.get("final_output") or "")
        return TaskExecution(
            answer=answer,
            output={"assistant": answer, "tools": list(result.get("executed_tools", []))},
            iterations=int(result.get("iteration", 0)),
        )

    def _record_failure(self, task_id: str, message: str) -> None:
        try:
            self.tasks.finish_task(task_id, "failed", error_message=message)
            self.tasks.fail_running_steps(task_id, message)
        except Exception:  # noqa: BLE001
            logger.exception("event=task_failure_not_recorded task_id=%s", task_id)
