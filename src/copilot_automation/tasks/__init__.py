"""Agent task lifecycle."""

from copilot_automation.tasks.service import TaskService, merge_metadata

__all__ = ["TaskService", "merge_metadata"]
