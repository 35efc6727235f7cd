"""Typed state contract for the agent loop."""

from typing import Any, TypedDict


class AgentState(TypedDict, total=False):
    user_id: str
    time_zone: str | None
    messages: list[dict[str, Any]]
    iteration: int
    max_iterations: int
    last_result_type: str
    pending_tool_calls: list[dict[str, Any]]
    executed_tools: list[dict[str, Any]]
    assistant_content: str
    final_output: str | None


def initial_state(
    user_id: str,
    messages: list[dict[str, Any]],
    *,
    time_zone: str | None = None,
    max_iterations: int = 6,
) -> AgentState:
    return {
        "user_id": user_id,
        "time_zone": time_zone,
        "messages": list(messages),
        "iteration": 0,
        "max_iterations": max_iterations,
        "last_result_type": "",
        "pending_tool_calls": [],
        "executed_tools": [],
        "assistant_content": "",
        "final_output": None,
    }
