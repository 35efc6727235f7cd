"""Background task execution."""

from copilot_automation.runner.prompt import AUTOMATION_SYSTEM_PROMPT, build_task_prompt
from copilot_automation.runner.task_runner import TaskOutcome, TaskRunner

__all__ = ["AUTOMATION_SYSTEM_PROMPT", "TaskOutcome", "TaskRunner", "build_task_prompt"]
