"""LangGraph workflow assembly for the bounded tool-calling loop."""

from __future__ import annotations

from functools import partial
from typing import Any

from langgraph.graph import END, StateGraph

from copilot_automation.graph.nodes import call_model, execute_tools, finalize
from copilot_automation.graph.state import AgentState
from copilot_automation.llm.client import ChatCompletionClient
from copilot_automation.tools.gateway import ToolExecutor


def recursion_limit_for(max_iterations: int) -> int:
    # call_model + execute_tools per round, plus finalize and headroom.
    return max_iterations * 2 + 4


def build_agent_graph(
    *,
    client: ChatCompletionClient,
    executor: ToolExecutor,
    tools: list[dict[str, Any]],
):
    def _after_model(state: AgentState) -> str:
        if state.get("last_result_type") == "tool_calls":
            return "tools"
        return "done"

    def _after_tools(state: AgentState) -> str:
        if int(state.get("iteration", 0)) < int(state.get("max_iterations", 6)):
            return "again"
        return "done"

    graph = StateGraph(AgentState)

    graph.add_node("call_model", partial(call_model.run, client=client, tools=tools))
    graph.add_node("execute_tools", partial(execute_tools.run, executor=executor))
    graph.add_node("finalize", finalize.run)

    graph.set_entry_point("call_model")
    graph.add_conditional_edges(
        "call_model", _after_model, {"tools": "execute_tools", "done": "finalize"}
    )
    graph.add_conditional_edges(
        "execute_tools", _after_tools, {"again": "call_model", "done": "finalize"}
    )
    graph.add_edge("finalize", END)

    return graph.compile()
