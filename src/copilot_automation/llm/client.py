"""Streaming chat-completions client (OpenAI-compatible)."""

from __future__ import annotations

import json
import logging
from collections.abc import Iterable, Iterator
from typing import Any, Protocol
from urllib import error, request

from copilot_automation.errors import ModelUnavailableError

logger = logging.getLogger(__name__)

DONE_SENTINEL = "[DONE]"


class ChatCompletionClient(Protocol):
    """Yield chat-completion chunk dicts for one streamed model call."""

    def stream_chat(
        self, messages: list[dict[str, Any]], tools: list[dict[str, Any]] | None = None
    ) -> Iterator[dict[str, Any]]: ...


class OpenAIChatClient:
    def __init__(
        self,
        *,
        api_key: str,
        model: str,
        base_url: str,
        timeout_s: float = 60.0,
        temperature: float = 0.2,
    ) -> None:
        self.api_key = api_key
        self.model = model
        self.base_url = base_url
        self.timeout_s = timeout_s
        self.temperature = temperature

    def stream_chat(
        self, messages: list[dict[str, Any]], tools: list[dict[str, Any]] | None = None
    ) -> Iterator[dict[str, Any]]:
        if not self.api_key:
            raise ModelUnavailableError(
                "OPENAI_API_KEY is not configured. Set it to enable automation runs."
            )

        body: dict[str, Any] = {
            "model": self.model,
            "messages": [serialize_message(message) for message in messages],
            "temperature": self.temperature,
            "stream": True,
        }
        if tools:
            body["tools"] = tools
            body["tool_choice"] = "auto"

        req = request.Request(
            url=f"{self.base_url.rstrip('/')}/chat/completions",
            data=json.dumps(body).encode("utf-8"),
            method="POST",
            headers={
                "Authorization": f"Bearer {self.api_key}",
                "Content-Type": "application/json",
                "Accept": "text/event-stream",
            },
        )
        try:
            response = request.urlopen(req, timeout=self.timeout_s)
        except error.HTTPError as exc:
            message = exc.read().decode("utf-8", errors="replace")
            raise ModelUnavailableError(
                f"Chat completion request failed with status {exc.code}: {message[:400]}"
            ) from exc
        except (error.URLError, TimeoutError) as exc:
            reason = getattr(exc, "reason", exc)
            raise ModelUnavailableError(f"Chat completion request failed: {reason}") from exc

        with response:
            lines = (raw.decode("utf-8", errors="replace") for raw in response)
            try:
                yield from iter_sse_chunks(lines)
            except (OSError, TimeoutError) as exc:
                raise ModelUnavailableError(f"Chat completion stream failed: {exc}") from exc


def serialize_message(message: dict[str, Any]) -> dict[str, Any]:
    """Keep only the keys the chat-completions API accepts."""

    payload: dict[str, Any] = {
        "role": message["role"],
        "content": message.get("content") or "",
    }
    if message.get("name"):
        payload["name"] = message["name"]
    if message.get("tool_call_id"):
        payload["tool_call_id"] = message["tool_call_id"]
    if message.get("tool_calls"):
        payload["tool_calls"] = message["tool_calls"]
    return payload


def iter_sse_chunks(lines: Iterable[str]) -> Iterator[dict[str, Any]]:
    """Parse server-sent events into chunk dicts.

    ``data:`` lines of one event are joined; a blank line ends the event.
    Iteration stops at ``[DONE]``. Chunks that are not JSON objects are
    logged and skipped.
    """

    data = ""
    for line in lines:
        text = line.rstrip("\r\n")
        if text.startswith("data:"):
            data += text[5:].strip()
            continue
        if text.strip():
            continue
        if not data:
            continue
        if data == DONE_SENTINEL:
            return
        chunk = _decode_chunk(data)
        data = ""
        if chunk is not None:
            yield chunk

    if data and data != DONE_SENTINEL:
        chunk = _decode_chunk(data)
        if chunk is not None:
            yield chunk


def _decode_chunk(data: str) -> dict[str, Any] | None:
    try:
        parsed = json.loads(data)
    except json.JSONDecodeError as exc:
        logger.warning("event=stream_chunk_skipped error=%s", exc)
        return None
    if not isinstance(parsed, dict):
        logger.warning("event=stream_chunk_skipped error=unexpected chunk shape")
        return None
    return parsed
