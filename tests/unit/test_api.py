import pytest
from fastapi.testclient import TestClient

from copilot_automation.api.main import create_app
from copilot_automation.automation import build_runtime

USER = {"X-User-Id": "user-1"}
AUTH = {"Authorization": "Bearer cron-secret"}


@pytest.fixture
def client(runtime) -> TestClient:
    return TestClient(create_app(runtime=runtime))


def _create_instruction(client: TestClient, **overrides) -> dict:
    body = {
        "title": "Welcome contacts",
        "content": "Send a welcome email.",
        "triggers": ["hubspot.contact_created"],
        **overrides,
    }
    response = client.post("/instructions", json=body, headers=USER)
    assert response.status_code == 201
    return response.json()["instruction"]


def test_health(client: TestClient) -> None:
    response = client.get("/health")

    assert response.status_code == 200
    assert response.json() == {"status": "ok", "service": "copilot-automation"}


def test_tools_lists_function_definitions(client: TestClient) -> None:
    tools = client.get("/tools").json()["tools"]

    names = {item["function"]["name"] for item in tools}
    assert "scheduleFollowUpTask" in names
    assert all(item["type"] == "function" for item in tools)


def test_automation_run_requires_configured_secret(settings, storage, chat_client, monkeypatch) -> None:
    monkeypatch.delenv("AUTOMATION_CRON_SECRET", raising=False)
    unconfigured = settings.model_copy(update={"automation_cron_secret": ""})
    app = create_app(runtime=build_runtime(unconfigured, storage=storage, chat_client=chat_client))

    response = TestClient(app).post("/automation/run", headers=AUTH)

    assert response.status_code == 500
    assert response.json() == {"error": "AUTOMATION_CRON_SECRET is not configured"}


def test_automation_run_rejects_wrong_bearer(client: TestClient) -> None:
    assert client.post("/automation/run").status_code == 401
    response = client.post("/automation/run", headers={"Authorization": "Bearer nope"})

    assert response.status_code == 401
    assert response.json() == {"error": "Unauthorized"}


@pytest.mark.parametrize("limit", ["0", "-2", "abc"])
def test_automation_run_rejects_bad_task_limit(client: TestClient, limit: str) -> None:
    response = client.post(f"/automation/run?taskLimit={limit}", headers=AUTH)

    assert response.status_code == 400
    assert response.json() == {"error": "taskLimit must be a positive integer"}


def test_automation_run_returns_cycle_payload(client: TestClient, runtime, chat_client, script) -> None:
    runtime.storage.ensure_user("user-1")
    task = runtime.tasks.create_task("user-1", type="manual", summary="Ping")
    chat_client.add(script.text("Pinged."))

    response = client.post("/automation/run?userId=user-1&taskLimit=2", headers=AUTH)

    assert response.status_code == 200
    assert response.json() == {
        "usersProcessed": 1,
        "outcomes": [
            {
                "userId": "user-1",
                "integrations": {"google": False, "hubspot": False},
                "tasks": [{"taskId": task.task_id, "status": "completed"}],
            }
        ],
    }


def test_automation_run_reports_cycle_failure(client: TestClient, runtime, monkeypatch) -> None:
    def _explode(**_: object) -> None:
        raise RuntimeError("database unavailable")

    monkeypatch.setattr(runtime.cycle, "run", _explode)

    response = client.post("/automation/run", headers=AUTH)

    assert response.status_code == 500
    assert response.json() == {"error": "database unavailable"}


def test_instruction_routes_require_user_header(client: TestClient) -> None:
    assert client.get("/instructions").status_code == 401
    assert client.post("/instructions", json={"title": "a", "content": "b"}).status_code == 401


def test_create_and_list_instructions(client: TestClient, runtime) -> None:
    created = _create_instruction(client, triggers=[" hubspot.contact_created ", ""])

    assert created["triggers"] == ["hubspot.contact_created"]
    assert created["status"] == "active"
    assert runtime.storage.list_user_ids("user-1") == ["user-1"]

    listed = client.get("/instructions", headers=USER).json()["instructions"]
    assert [item["instruction_id"] for item in listed] == [created["instruction_id"]]
    assert client.get("/instructions", headers={"X-User-Id": "user-2"}).json() == {
        "instructions": []
    }


def test_create_instruction_validation(client: TestClient) -> None:
    no_triggers = client.post(
        "/instructions", json={"title": "t", "content": "c", "triggers": []}, headers=USER
    )
    extra_field = client.post(
        "/instructions",
        json={"title": "t", "content": "c", "triggers": ["a.b"], "priority": 1},
        headers=USER,
    )

    assert no_triggers.status_code == 400
    assert extra_field.status_code == 400
    assert extra_field.json()["error"] == "Invalid payload"


def test_update_instruction(client: TestClient) -> None:
    created = _create_instruction(client)
    path = f"/instructions/{created['instruction_id']}"

    paused = client.patch(path, json={"status": "paused"}, headers=USER)
    other_user = client.patch(path, json={"status": "paused"}, headers={"X-User-Id": "user-2"})
    emptied = client.patch(path, json={"status": "active", "triggers": [" "]}, headers=USER)

    assert paused.status_code == 200
    assert paused.json()["instruction"]["status"] == "paused"
    assert other_user.status_code == 404
    assert emptied.status_code == 400


def test_events_create_tasks_for_matching_instructions(client: TestClient) -> None:
    created = _create_instruction(client)

    response = client.post(
        "/events",
        json={"type": "hubspot.contact_created", "payload": {"contactId": "c-1"}},
        headers=USER,
    )
    unmatched = client.post("/events", json={"type": "gmail.message_created"}, headers=USER)

    matches = response.json()["matches"]
    assert len(matches) == 1
    assert matches[0]["instruction_id"] == created["instruction_id"]
    assert unmatched.json() == {"matches": []}


def test_task_routes_scope_to_user(client: TestClient, runtime) -> None:
    task = runtime.tasks.create_task("user-1", type="manual", summary="Review")
    runtime.tasks.create_task("user-1", type="manual", summary="Second")
    runtime.tasks.finish_task(task.task_id, "completed", summary="Reviewed")

    listed = client.get("/tasks?status=completed", headers=USER).json()["tasks"]
    bundle = client.get(f"/tasks/{task.task_id}", headers=USER)
    hidden = client.get(f"/tasks/{task.task_id}", headers={"X-User-Id": "user-2"})

    assert [item["task_id"] for item in listed] == [task.task_id]
    assert bundle.status_code == 200
    assert bundle.json()["task"]["summary"] == "Reviewed"
    assert bundle.json()["steps"] == []
    assert hidden.status_code == 404
