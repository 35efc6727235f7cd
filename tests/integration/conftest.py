from __future__ import annotations

import json
import os
import socket
import subprocess
import sys
import time
import uuid
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from urllib import error, request

import pytest

from copilot_automation.storage.postgres import PostgresAutomationStorage

CRON_SECRET = "integration-secret"


def _require_database_url() -> str:
    if os.getenv("RUN_POSTGRES_INTEGRATION_TESTS") != "1":
        pytest.skip("Set RUN_POSTGRES_INTEGRATION_TESTS=1 to run PostgreSQL integration tests.")
    database_url = os.getenv("COPILOT_AUTOMATION_DATABASE_URL", "")
    if not database_url:
        pytest.skip("COPILOT_AUTOMATION_DATABASE_URL must point at a disposable database.")
    return database_url


def _free_port() -> int:
    try:
        with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
            sock.bind(("127.0.0.1", 0))
            return int(sock.getsockname()[1])
    except PermissionError:
        pytest.skip("Binding a local port is not permitted here.")


@contextmanager
def _uvicorn(env: dict[str, str], port: int) -> Iterator[str]:
    base_url = f"http://127.0.0.1:{port}"
    process = subprocess.Popen(  # noqa: S603
        [
            sys.executable,
            "-m",
            "uvicorn",
            "copilot_automation.api.main:app",
            "--host",
            "127.0.0.1",
            "--port",
            str(port),
        ],
        cwd=str(Path.cwd()),
        env=env,
        stdout=subprocess.DEVNULL,
        stderr=subprocess.DEVNULL,
    )
    try:
        deadline = time.monotonic() + 20.0
        while True:
            if process.poll() is not None:
                raise RuntimeError(f"uvicorn exited early with code {process.returncode}")
            try:
                with request.urlopen(f"{base_url}/health", timeout=1.0):
                    break
            except (error.URLError, ConnectionError):
                if time.monotonic() > deadline:
                    raise TimeoutError("API did not report healthy within 20s") from None
                time.sleep(0.2)
        yield base_url
    finally:
        process.terminate()
        try:
            process.wait(timeout=5)
        except subprocess.TimeoutExpired:
            process.kill()
            process.wait(timeout=5)


@pytest.fixture
def pg_storage() -> PostgresAutomationStorage:
    storage = PostgresAutomationStorage(_require_database_url())
    storage.migrate()
    return storage


@pytest.fixture
def user_id() -> str:
    # Rows are never cleaned up; a fresh user keeps each test's reads isolated.
    return f"it-{uuid.uuid4()}"


@pytest.fixture
def api_base_url() -> Iterator[str]:
    env = {
        **os.environ,
        "COPILOT_AUTOMATION_DATABASE_URL": _require_database_url(),
        "COPILOT_AUTOMATION_AUTOMATION_CRON_SECRET": CRON_SECRET,
    }
    with _uvicorn(env, _free_port()) as base_url:
        yield base_url


def call_json(
    base_url: str,
    method: str,
    path: str,
    payload: dict[str, object] | None = None,
    headers: dict[str, str] | None = None,
) -> tuple[int, dict[str, object]]:
    body = json.dumps(payload).encode("utf-8") if payload is not None else None
    req = request.Request(
        f"{base_url}{path}",
        data=body,
        method=method,
        headers={"Content-Type": "application/json", **(headers or {})},
    )
    try:
        with request.urlopen(req, timeout=20.0) as response:
            return response.status, json.load(response)
    except error.HTTPError as exc:
        return exc.code, json.load(exc)


@pytest.fixture(name="call_json")
def call_json_fixture():
    return call_json
