"""Schema-enforcing tool execution gateway."""

from __future__ import annotations

import json
import logging
import time
from concurrent.futures import ThreadPoolExecutor, TimeoutError
from typing import Any

from pydantic import BaseModel, ValidationError

from copilot_automation.errors import (
    ArgumentParseError,
    HandlerExecutionError,
    ToolError,
    ToolValidationError,
    UnknownToolError,
)
from copilot_automation.tools.base import ToolContext
from copilot_automation.tools.registry import ToolRegistry

logger = logging.getLogger(__name__)

VALUE_ERROR_PREFIX = "Value error, "


class ToolExecutor:
    """Execute registered tools and return ``{"success", "result"|"error"}`` envelopes.

    Nothing raised by argument parsing, validation or the handler escapes
    ``execute``. Calls are never retried: several tools send email or create
    records.
    """

    def __init__(self, registry: ToolRegistry, *, tool_timeout_s: float = 30.0) -> None:
        self.registry = registry
        self.tool_timeout_s = tool_timeout_s

    def execute(
        self, tool_name: str, raw_arguments: str | dict[str, Any] | None, context: ToolContext
    ) -> dict[str, Any]:
        started_at = time.perf_counter()
        try:
            result = self._execute_once(tool_name, raw_arguments, context)
        except ToolError as exc:
            logger.warning(
                "event=tool_failed tool=%s user_id=%s duration_ms=%s error=%s",
                tool_name,
                context.user_id,
                _duration_ms(started_at),
                exc,
            )
            return {"success": False, "error": str(exc)}

        logger.info(
            "event=tool_succeeded tool=%s user_id=%s duration_ms=%s",
            tool_name,
            context.user_id,
            _duration_ms(started_at),
        )
        return {"success": True, "result": result}

    def _execute_once(
        self, tool_name: str, raw_arguments: str | dict[str, Any] | None, context: ToolContext
    ) -> Any:
        spec = self.registry.get(tool_name)
        if spec is None:
            raise UnknownToolError(tool_name)

        arguments = parse_arguments(raw_arguments)
        try:
            payload = spec.input_model.model_validate(arguments)
        except ValidationError as exc:
            raise ToolValidationError(validation_messages(exc)) from exc

        pool = ThreadPoolExecutor(max_workers=1)
        try:
            future = pool.submit(spec.handler, payload, context)
            try:
                raw_output = future.result(timeout=self.tool_timeout_s)
            except TimeoutError as exc:
                raise HandlerExecutionError(
                    f"Tool '{tool_name}' timed out after {self.tool_timeout_s:g}s"
                ) from exc
            except Exception as exc:  # noqa: BLE001
                raise HandlerExecutionError(str(exc) or exc.__class__.__name__) from exc
        finally:
            # A stalled handler keeps its worker thread; do not block on it.
            pool.shutdown(wait=False)

        return _serialize(raw_output)


def parse_arguments(raw_arguments: str | dict[str, Any] | None) -> dict[str, Any]:
    if raw_arguments is None:
        return {}
    if isinstance(raw_arguments, dict):
        return raw_arguments
    if not raw_arguments.strip():
        return {}
    try:
        parsed = json.loads(raw_arguments)
    except json.JSONDecodeError as exc:
        raise ArgumentParseError(str(exc)) from exc
    if not isinstance(parsed, dict):
        raise ArgumentParseError("arguments must be a JSON object")
    return parsed


def validation_messages(exc: ValidationError) -> list[str]:
    messages: list[str] = []
    for item in exc.errors():
        message = str(item.get("msg", "Invalid value"))
        if message.startswith(VALUE_ERROR_PREFIX):
            message = message[len(VALUE_ERROR_PREFIX) :]
        messages.append(message)
    return messages


def _serialize(value: Any) -> Any:
    if isinstance(value, BaseModel):
        return value.model_dump(mode="json", by_alias=True)
    if isinstance(value, dict):
        return {key: _serialize(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [_serialize(item) for item in value]
    return value


def _duration_ms(started_at: float) -> float:
    return round((time.perf_counter() - started_at) * 1000.0, 2)
