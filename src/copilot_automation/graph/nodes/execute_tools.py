"""Execute-tools node: run each requested call through the gateway."""

from __future__ import annotations

import json
from typing import Any

from copilot_automation.graph.state import AgentState
from copilot_automation.tools.base import ToolContext
from copilot_automation.tools.gateway import ToolExecutor


def run(state: AgentState, *, executor: ToolExecutor) -> AgentState:
    context = ToolContext(user_id=state["user_id"], time_zone=state.get("time_zone"))
    messages = list(state.get("messages", []))
    executed = list(state.get("executed_tools", []))

    for call in state.get("pending_tool_calls", []):
        function = call.get("function", {})
        name = function.get("name", "")
        arguments_text = function.get("arguments") or "{}"

        envelope = executor.execute(name, arguments_text, context)
        record: dict[str, Any] = {
            "id": call["id"],
            "name": name,
            "arguments": _parsed_arguments(arguments_text),
            "success": envelope["success"],
        }
        if envelope["success"]:
            record["result"] = envelope.get("result")
        else:
            record["error"] = envelope.get("error")
        executed.append(record)

        messages.append(
            {
                "role": "tool",
                "tool_call_id": call["id"],
                "name": name,
                "content": json.dumps(envelope, default=str),
            }
        )

    return {"messages": messages, "executed_tools": executed, "pending_tool_calls": []}


def _parsed_arguments(arguments_text: str) -> Any:
    try:
        return json.loads(arguments_text)
    except json.JSONDecodeError:
        return arguments_text
