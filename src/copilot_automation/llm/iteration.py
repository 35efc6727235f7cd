"""One streamed model round: collect text and tool-call fragments."""

from __future__ import annotations

from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from typing import Any, Literal

from copilot_automation.llm.client import ChatCompletionClient


@dataclass
class ToolCallFragment:
    id: str | None = None
    name: str = ""
    arguments: str = ""


@dataclass
class ToolCallAccumulator:
    """Tool-call deltas keyed by their stream ``index``."""

    fragments: dict[int, ToolCallFragment] = field(default_factory=dict)
    tool_call_detected: bool = False

    def add(self, deltas: Iterable[dict[str, Any]]) -> None:
        for delta in deltas:
            self.tool_call_detected = True
            index = delta.get("index")
            index = int(index) if isinstance(index, int) else 0
            fragment = self.fragments.setdefault(index, ToolCallFragment())
            if delta.get("id"):
                fragment.id = delta["id"]
            function = delta.get("function") or {}
            if function.get("name"):
                fragment.name = function["name"]
            if function.get("arguments"):
                fragment.arguments += function["arguments"]

    def finalize(self) -> list[dict[str, Any]]:
        calls: list[dict[str, Any]] = []
        for index in sorted(self.fragments):
            fragment = self.fragments[index]
            if not fragment.name:
                continue
            calls.append(
                {
                    "id": fragment.id or f"tool_call_{index}",
                    "type": "function",
                    "function": {
                        "name": fragment.name,
                        "arguments": fragment.arguments or "{}",
                    },
                }
            )
        return calls


@dataclass
class IterationResult:
    type: Literal["tool_calls", "message"]
    content: str = ""
    tool_calls: list[dict[str, Any]] = field(default_factory=list)


def run_model_iteration(
    client: ChatCompletionClient,
    messages: list[dict[str, Any]],
    tools: list[dict[str, Any]] | None = None,
    on_token: Callable[[str], None] | None = None,
) -> IterationResult:
    """Consume one streamed completion.

    Text is always kept in ``content`` but forwarded to ``on_token`` only until
    the first tool-call delta arrives.
    """

    accumulator = ToolCallAccumulator()
    finish_reason: str | None = None
    content = ""

    for chunk in client.stream_chat(messages, tools):
        choices = chunk.get("choices") or []
        if not choices:
            continue
        choice = choices[0]
        if choice.get("finish_reason"):
            finish_reason = choice["finish_reason"]

        delta = choice.get("delta")
        if not delta:
            continue

        if delta.get("tool_calls"):
            accumulator.add(delta["tool_calls"])

        text = delta.get("content")
        if text:
            content += text
            if not accumulator.tool_call_detected and on_token is not None:
                on_token(text)

    if accumulator.tool_call_detected or finish_reason == "tool_calls":
        return IterationResult(
            type="tool_calls", content=content, tool_calls=accumulator.finalize()
        )
    return IterationResult(type="message", content=content)
