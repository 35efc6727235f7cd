"""Finalize node: produce the run's answer text."""

from __future__ import annotations

from copilot_automation.graph.state import AgentState

FALLBACK_OUTPUT = "Automation run completed without a detailed response."


def run(state: AgentState) -> AgentState:
    content = state.get("assistant_content") or ""
    if not content.strip():
        content = FALLBACK_OUTPUT
    return {"final_output": content}
