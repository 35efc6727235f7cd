"""Call-model node: one streamed completion round."""

from __future__ import annotations

import logging
from typing import Any

from copilot_automation.graph.state import AgentState
from copilot_automation.llm.client import ChatCompletionClient
from copilot_automation.llm.iteration import run_model_iteration

logger = logging.getLogger(__name__)


def run(
    state: AgentState,
    *,
    client: ChatCompletionClient,
    tools: list[dict[str, Any]],
) -> AgentState:
    messages = list(state.get("messages", []))
    iteration = int(state.get("iteration", 0)) + 1

    result = run_model_iteration(client, messages, tools)
    logger.debug(
        "event=model_iteration user_id=%s iteration=%s type=%s tool_calls=%s",
        state.get("user_id"),
        iteration,
        result.type,
        len(result.tool_calls),
    )

    if result.type == "tool_calls":
        messages.append(
            {"role": "assistant", "content": result.content, "tool_calls": result.tool_calls}
        )
        return {
            "messages": messages,
            "iteration": iteration,
            "last_result_type": result.type,
            "pending_tool_calls": result.tool_calls,
        }

    return {
        "messages": messages,
        "iteration": iteration,
        "last_result_type": result.type,
        "pending_tool_calls": [],
        "assistant_content": result.content,
    }
