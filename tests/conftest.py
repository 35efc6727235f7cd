from __future__ import annotations

from collections.abc import Iterator
from typing import Any

import pytest

from copilot_automation.automation.runtime import AutomationRuntime, build_runtime
from copilot_automation.config.settings import Settings
from copilot_automation.storage.memory import InMemoryAutomationStorage


class ScriptedChatClient:
    """Test double for the streaming chat client.

    Each ``stream_chat`` call replays the next scripted list of chunks and
    records the messages it was given.
    """

    def __init__(self, scripts: list[list[dict[str, Any]]] | None = None) -> None:
        self.scripts = list(scripts or [])
        self.calls: list[list[dict[str, Any]]] = []
        self.tools_seen: list[list[dict[str, Any]] | None] = []

    def add(self, chunks: list[dict[str, Any]]) -> None:
        self.scripts.append(chunks)

    def stream_chat(
        self, messages: list[dict[str, Any]], tools: list[dict[str, Any]] | None = None
    ) -> Iterator[dict[str, Any]]:
        self.calls.append([dict(message) for message in messages])
        self.tools_seen.append(tools)
        if not self.scripts:
            raise AssertionError("No scripted model response left")
        yield from self.scripts.pop(0)


def text_chunks(*parts: str) -> list[dict[str, Any]]:
    chunks = [{"choices": [{"delta": {"content": part}}]} for part in parts]
    chunks.append({"choices": [{"delta": {}, "finish_reason": "stop"}]})
    return chunks


def tool_call_chunks(*calls: tuple[str, str, str]) -> list[dict[str, Any]]:
    """Chunks requesting ``(call_id, name, arguments)`` tool calls, arguments split in two."""

    chunks: list[dict[str, Any]] = []
    for index, (call_id, name, arguments) in enumerate(calls):
        middle = len(arguments) // 2
        chunks.append(
            {
                "choices": [
                    {
                        "delta": {
                            "tool_calls": [
                                {
                                    "index": index,
                                    "id": call_id,
                                    "function": {"name": name, "arguments": arguments[:middle]},
                                }
                            ]
                        }
                    }
                ]
            }
        )
        chunks.append(
            {
                "choices": [
                    {
                        "delta": {
                            "tool_calls": [
                                {"index": index, "function": {"arguments": arguments[middle:]}}
                            ]
                        }
                    }
                ]
            }
        )
    chunks.append({"choices": [{"delta": {}, "finish_reason": "tool_calls"}]})
    return chunks


@pytest.fixture
def storage() -> InMemoryAutomationStorage:
    return InMemoryAutomationStorage()


@pytest.fixture
def settings() -> Settings:
    return Settings(
        _env_file=None,
        database_url="",
        automation_cron_secret="cron-secret",
        openai_api_key="",
        google_access_token="",
        hubspot_access_token="",
        tool_timeout_s=2.0,
    )


@pytest.fixture
def chat_client() -> ScriptedChatClient:
    return ScriptedChatClient()


@pytest.fixture
def runtime(
    settings: Settings,
    storage: InMemoryAutomationStorage,
    chat_client: ScriptedChatClient,
) -> AutomationRuntime:
    return build_runtime(settings, storage=storage, chat_client=chat_client)


@pytest.fixture
def script():
    """Builders for scripted model output: ``script.text(...)`` and ``script.tool_calls(...)``."""

    class _Script:
        text = staticmethod(text_chunks)
        tool_calls = staticmethod(tool_call_chunks)

    return _Script
