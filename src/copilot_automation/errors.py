"""Exception taxonomy for the automation engine."""

from __future__ import annotations


class AutomationError(Exception):
    """Base class for every error raised by this package."""


class ToolError(AutomationError):
    """Tool-level failure. The executor converts these into result envelopes."""


class UnknownToolError(ToolError):
    def __init__(self, tool_name: str) -> None:
        super().__init__(f"Unknown tool: {tool_name}")
        self.tool_name = tool_name


class ArgumentParseError(ToolError):
    def __init__(self, reason: str) -> None:
        super().__init__(f"Failed to parse arguments: {reason}")
        self.reason = reason


class ToolValidationError(ToolError):
    """Aggregated field-level validation failures for one tool call."""

    def __init__(self, messages: list[str]) -> None:
        super().__init__(", ".join(messages) or "Invalid tool arguments")
        self.messages = messages


class HandlerExecutionError(ToolError):
    """Wraps any exception raised by a tool handler."""


class TaskClaimConflict(AutomationError):
    """A claim changed zero rows: another runner owns the task or it is no longer eligible.

    Not a failure. The runner reports the task as ``skipped``.
    """

    def __init__(self, task_id: str) -> None:
        super().__init__(f"Task {task_id} is not claimable")
        self.task_id = task_id


class TaskExecutionFailure(AutomationError):
    """Unrecovered failure while the runner was working on a claimed task."""


class ModelUnavailableError(AutomationError):
    """Missing model credentials or a transport failure talking to the model."""


class IntegrationError(AutomationError):
    """An external API (Gmail, Calendar, HubSpot) rejected or failed a request."""


class InstructionValidationError(AutomationError):
    """An instruction write would break an instruction invariant."""


class NotFoundError(AutomationError):
    """A referenced record does not exist or is not owned by the caller."""
