"""Minimal JSON-over-HTTP helper shared by the external API clients."""

from __future__ import annotations

import json
from typing import Any, Protocol
from urllib import error, parse, request

from copilot_automation.errors import IntegrationError


class TokenProvider(Protocol):
    """Resolve a bearer token for a user and provider (``google`` or ``hubspot``)."""

    def access_token(self, user_id: str, provider: str) -> str: ...


class StaticTokenProvider:
    """Token provider backed by a fixed mapping, for local runs and tests."""

    def __init__(self, tokens: dict[str, str]) -> None:
        self._tokens = dict(tokens)

    def access_token(self, user_id: str, provider: str) -> str:
        token = self._tokens.get(provider)
        if not token:
            raise IntegrationError(f"No {provider} access token configured for user {user_id}")
        return token


def quote(value: str) -> str:
    return parse.quote(value, safe="")


def request_json(
    method: str,
    url: str,
    *,
    token: str,
    body: dict[str, Any] | None = None,
    timeout_s: float = 30.0,
    failure_message: str = "Request failed",
) -> dict[str, Any]:
    data = json.dumps(body).encode("utf-8") if body is not None else None
    req = request.Request(
        url=url,
        data=data,
        method=method,
        headers={
            "Authorization": f"Bearer {token}",
            "Content-Type": "application/json",
        },
    )
    try:
        with request.urlopen(req, timeout=timeout_s) as response:
            raw = response.read().decode("utf-8")
    except error.HTTPError as exc:
        detail = exc.read().decode("utf-8", errors="replace")
        raise IntegrationError(f"{failure_message}: {detail or exc.reason}") from exc
    except error.URLError as exc:
        raise IntegrationError(f"{failure_message}: {exc.reason}") from exc

    if not raw.strip():
        return {}
    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise IntegrationError(f"{failure_message}: non-JSON response") from exc
    if not isinstance(parsed, dict):
        raise IntegrationError(f"{failure_message}: unexpected response shape")
    return parsed
