"""Agent tools: schemas, registry and the execution gateway."""

from copilot_automation.tools.base import ToolContext, ToolSpec
from copilot_automation.tools.gateway import ToolExecutor
from copilot_automation.tools.handlers import ToolDependencies
from copilot_automation.tools.registry import (
    ToolRegistry,
    build_registry,
    list_tools,
    tool_definitions,
    tool_parameters,
)

__all__ = [
    "ToolContext",
    "ToolDependencies",
    "ToolExecutor",
    "ToolRegistry",
    "ToolSpec",
    "build_registry",
    "list_tools",
    "tool_definitions",
    "tool_parameters",
]
