"""FastAPI app entrypoint for copilot-automation."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any, Literal

from fastapi import FastAPI, Header, HTTPException, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from copilot_automation.automation.runtime import AutomationRuntime, build_runtime
from copilot_automation.config.settings import Settings, get_settings
from copilot_automation.errors import InstructionValidationError, NotFoundError
from copilot_automation.instructions.matcher import InstructionEvent
from copilot_automation.storage.base import AutomationStorage
from copilot_automation.storage.models import InstructionRecord, TaskBundle

logger = logging.getLogger(__name__)


class RequestModel(BaseModel):
    model_config = ConfigDict(extra="forbid", alias_generator=to_camel, populate_by_name=True)


class CreateInstructionRequest(RequestModel):
    title: str = Field(min_length=1)
    content: str = Field(min_length=1)
    triggers: list[str] | None = None
    metadata: dict[str, Any] | None = None
    status: Literal["active", "paused", "archived"] = "active"


class UpdateInstructionRequest(RequestModel):
    status: Literal["active", "paused", "archived"] | None = None
    triggers: list[str] | None = None
    title: str | None = None
    content: str | None = None
    metadata: dict[str, Any] | None = None


class EventRequest(RequestModel):
    type: str = Field(min_length=1)
    payload: Any = None
    occurred_at: datetime | None = None


def _ensure_runtime_state(
    app: FastAPI,
    *,
    settings: Settings,
    storage_override: AutomationStorage | None,
    runtime_override: AutomationRuntime | None,
) -> None:
    if hasattr(app.state, "runtime"):
        return
    if runtime_override is not None:
        app.state.runtime = runtime_override
        return
    if storage_override is None and not settings.database_url:
        raise RuntimeError(
            "Missing database URL. Set COPILOT_AUTOMATION_DATABASE_URL before starting the app."
        )
    app.state.runtime = build_runtime(settings, storage=storage_override)


def create_app(
    *,
    storage: AutomationStorage | None = None,
    runtime: AutomationRuntime | None = None,
    settings_override: Settings | None = None,
) -> FastAPI:
    settings = settings_override or (runtime.settings if runtime is not None else get_settings())
    eager = storage is not None or runtime is not None

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        _ensure_runtime_state(
            app, settings=settings, storage_override=storage, runtime_override=runtime
        )
        yield

    app = FastAPI(title=settings.app_name, lifespan=None if eager else lifespan)

    # Keep test paths reliable when lifespan is not executed by the client.
    if eager:
        _ensure_runtime_state(
            app, settings=settings, storage_override=storage, runtime_override=runtime
        )

    def _runtime(request: Request) -> AutomationRuntime:
        if not hasattr(request.app.state, "runtime"):
            _ensure_runtime_state(
                request.app, settings=settings, storage_override=storage, runtime_override=runtime
            )
        return request.app.state.runtime

    def _require_user(user_id: str | None) -> str:
        if not user_id or not user_id.strip():
            raise HTTPException(status_code=401, detail="Unauthorized")
        return user_id.strip()

    @app.exception_handler(RequestValidationError)
    async def _invalid_payload(_: Request, exc: RequestValidationError) -> JSONResponse:
        return JSONResponse(
            status_code=400,
            content={"error": "Invalid payload", "details": jsonable_errors(exc)},
        )

    @app.get("/health")
    def health() -> dict[str, str]:
        return {"status": "ok", "service": settings.app_name}

    @app.get("/tools")
    def tools(request: Request) -> dict[str, Any]:
        return {"tools": _runtime(request).tool_definitions}

    @app.post("/automation/run")
    def run_automation(
        request: Request,
        user_id: str | None = Query(default=None, alias="userId"),
        task_limit: str | None = Query(default=None, alias="taskLimit"),
        authorization: str | None = Header(default=None),
    ) -> JSONResponse:
        secret = settings.resolved_cron_secret()
        if not secret:
            return JSONResponse(
                status_code=500, content={"error": "AUTOMATION_CRON_SECRET is not configured"}
            )
        if authorization != f"Bearer {secret}":
            return JSONResponse(status_code=401, content={"error": "Unauthorized"})

        batch_size: int | None = None
        if task_limit:
            try:
                batch_size = int(task_limit)
            except ValueError:
                batch_size = 0
            if batch_size <= 0:
                return JSONResponse(
                    status_code=400, content={"error": "taskLimit must be a positive integer"}
                )

        try:
            result = _runtime(request).cycle.run(user_id=user_id, task_batch_size=batch_size)
        except Exception as exc:  # noqa: BLE001
            logger.exception("event=automation_run_failed user_id=%s", user_id)
            return JSONResponse(
                status_code=500, content={"error": str(exc) or "Automation run failed"}
            )
        return JSONResponse(content=result.to_payload())

    @app.get("/instructions")
    def list_instructions(
        request: Request,
        status: Literal["active", "paused", "archived"] | None = None,
        x_user_id: str | None = Header(default=None),
    ) -> dict[str, list[InstructionRecord]]:
        user_id = _require_user(x_user_id)
        return {
            "instructions": _runtime(request).instructions.list_for_user(user_id, status=status)
        }

    @app.post("/instructions", status_code=201)
    def create_instruction(
        payload: CreateInstructionRequest,
        request: Request,
        x_user_id: str | None = Header(default=None),
    ) -> dict[str, InstructionRecord]:
        user_id = _require_user(x_user_id)
        runtime_state = _runtime(request)
        runtime_state.storage.ensure_user(user_id)
        try:
            instruction = runtime_state.instructions.create(
                user_id,
                title=payload.title,
                content=payload.content,
                triggers=payload.triggers,
                metadata=payload.metadata,
                status=payload.status,
            )
        except InstructionValidationError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        return {"instruction": instruction}

    @app.patch("/instructions/{instruction_id}")
    def update_instruction(
        instruction_id: str,
        payload: UpdateInstructionRequest,
        request: Request,
        x_user_id: str | None = Header(default=None),
    ) -> dict[str, InstructionRecord]:
        user_id = _require_user(x_user_id)
        try:
            instruction = _runtime(request).instructions.update(
                user_id, instruction_id, **payload.model_dump(exclude_none=True)
            )
        except NotFoundError as exc:
            raise HTTPException(status_code=404, detail=str(exc)) from exc
        except InstructionValidationError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        return {"instruction": instruction}

    @app.post("/events")
    def receive_event(
        payload: EventRequest,
        request: Request,
        x_user_id: str | None = Header(default=None),
    ) -> dict[str, Any]:
        user_id = _require_user(x_user_id)
        matches = _runtime(request).matcher.evaluate(
            user_id,
            InstructionEvent(
                type=payload.type, payload=payload.payload, occurred_at=payload.occurred_at
            ),
        )
        return {"matches": [match.model_dump() for match in matches]}

    @app.get("/tasks")
    def list_tasks(
        request: Request,
        status: str | None = None,
        limit: int = Query(default=50, ge=1, le=200),
        x_user_id: str | None = Header(default=None),
    ) -> dict[str, Any]:
        user_id = _require_user(x_user_id)
        return {"tasks": _runtime(request).tasks.list_tasks(user_id, status=status, limit=limit)}

    @app.get("/tasks/{task_id}", response_model=TaskBundle)
    def get_task(
        task_id: str,
        request: Request,
        x_user_id: str | None = Header(default=None),
    ) -> TaskBundle:
        user_id = _require_user(x_user_id)
        bundle = _runtime(request).tasks.load_bundle(task_id)
        if bundle is None or bundle.task.user_id != user_id:
            raise HTTPException(status_code=404, detail="Task not found")
        return bundle

    return app


def jsonable_errors(exc: RequestValidationError) -> list[dict[str, Any]]:
    return [
        {"loc": [str(part) for part in item.get("loc", ())], "msg": str(item.get("msg", ""))}
        for item in exc.errors()
    ]


app = create_app()
