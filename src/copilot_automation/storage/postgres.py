"""PostgreSQL-backed storage with automatic table migration."""

from __future__ import annotations

import json
import threading
import uuid
from datetime import UTC, datetime
from typing import Any

from copilot_automation.storage.base import (
    INSTRUCTION_UPDATABLE_FIELDS,
    STEP_UPDATABLE_FIELDS,
    TASK_UPDATABLE_FIELDS,
)
from copilot_automation.storage.models import (
    CLAIMABLE_TASK_STATUSES,
    AgentTaskRecord,
    CalendarEventRecord,
    EmailMessageRecord,
    HubspotContactRecord,
    InstructionEvaluationRecord,
    InstructionMatch,
    InstructionRecord,
    TaskContextRecord,
    TaskStepRecord,
    UpsertResult,
)

_JSON_COLUMNS = frozenset(
    {"metadata", "triggers", "input", "output", "error", "value", "event_payload"}
)

_SCHEMA = (
    """
    CREATE TABLE IF NOT EXISTS automation_users (
        user_id TEXT PRIMARY KEY,
        created_at TIMESTAMPTZ NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS integrations (
        user_id TEXT NOT NULL REFERENCES automation_users(user_id) ON DELETE CASCADE,
        provider TEXT NOT NULL,
        created_at TIMESTAMPTZ NOT NULL,
        PRIMARY KEY (user_id, provider)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS instructions (
        instruction_id TEXT PRIMARY KEY,
        user_id TEXT NOT NULL,
        title TEXT NOT NULL,
        content TEXT NOT NULL,
        triggers JSONB NOT NULL DEFAULT '[]'::jsonb,
        status TEXT NOT NULL,
        metadata JSONB,
        last_evaluated_at TIMESTAMPTZ,
        created_at TIMESTAMPTZ NOT NULL,
        updated_at TIMESTAMPTZ NOT NULL
    )
    """,
    """
    CREATE INDEX IF NOT EXISTS idx_instructions_user_status
    ON instructions(user_id, status)
    """,
    """
    CREATE TABLE IF NOT EXISTS instruction_evaluations (
        evaluation_id TEXT PRIMARY KEY,
        user_id TEXT NOT NULL,
        instruction_id TEXT NOT NULL REFERENCES instructions(instruction_id) ON DELETE CASCADE,
        event_type TEXT NOT NULL,
        event_payload JSONB,
        outcome TEXT NOT NULL,
        created_at TIMESTAMPTZ NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS agent_tasks (
        task_id TEXT PRIMARY KEY,
        user_id TEXT NOT NULL,
        instruction_id TEXT REFERENCES instructions(instruction_id) ON DELETE SET NULL,
        type TEXT NOT NULL,
        status TEXT NOT NULL,
        summary TEXT,
        scheduled_for TIMESTAMPTZ,
        error_message TEXT,
        metadata JSONB,
        started_at TIMESTAMPTZ,
        completed_at TIMESTAMPTZ,
        cancelled_at TIMESTAMPTZ,
        created_at TIMESTAMPTZ NOT NULL,
        updated_at TIMESTAMPTZ NOT NULL
    )
    """,
    """
    CREATE INDEX IF NOT EXISTS idx_agent_tasks_due
    ON agent_tasks(status, scheduled_for, created_at)
    """,
    """
    CREATE INDEX IF NOT EXISTS idx_agent_tasks_user
    ON agent_tasks(user_id, created_at DESC)
    """,
    """
    CREATE TABLE IF NOT EXISTS task_steps (
        step_id TEXT PRIMARY KEY,
        task_id TEXT NOT NULL REFERENCES agent_tasks(task_id) ON DELETE CASCADE,
        step_index INTEGER NOT NULL,
        title TEXT NOT NULL,
        status TEXT NOT NULL,
        input JSONB,
        output JSONB,
        error JSONB,
        started_at TIMESTAMPTZ,
        completed_at TIMESTAMPTZ,
        created_at TIMESTAMPTZ NOT NULL,
        updated_at TIMESTAMPTZ NOT NULL,
        UNIQUE (task_id, step_index)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS task_contexts (
        task_id TEXT NOT NULL REFERENCES agent_tasks(task_id) ON DELETE CASCADE,
        key TEXT NOT NULL,
        value JSONB,
        created_at TIMESTAMPTZ NOT NULL,
        updated_at TIMESTAMPTZ NOT NULL,
        PRIMARY KEY (task_id, key)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS email_messages (
        user_id TEXT NOT NULL,
        message_id TEXT NOT NULL,
        thread_id TEXT,
        subject TEXT,
        from_address TEXT,
        to_addresses JSONB NOT NULL DEFAULT '[]'::jsonb,
        snippet TEXT,
        body_text TEXT,
        body_html TEXT,
        sent_at TIMESTAMPTZ,
        PRIMARY KEY (user_id, message_id)
    )
    """,
    """
    CREATE INDEX IF NOT EXISTS idx_email_messages_sent_at
    ON email_messages(user_id, sent_at DESC)
    """,
    """
    CREATE TABLE IF NOT EXISTS calendar_events (
        user_id TEXT NOT NULL,
        event_id TEXT NOT NULL,
        calendar_id TEXT NOT NULL,
        summary TEXT,
        description TEXT,
        location TEXT,
        start_time TIMESTAMPTZ,
        end_time TIMESTAMPTZ,
        attendees JSONB NOT NULL DEFAULT '[]'::jsonb,
        PRIMARY KEY (user_id, event_id)
    )
    """,
    """
    CREATE INDEX IF NOT EXISTS idx_calendar_events_start
    ON calendar_events(user_id, start_time)
    """,
    """
    CREATE TABLE IF NOT EXISTS hubspot_contacts (
        user_id TEXT NOT NULL,
        contact_id TEXT NOT NULL,
        email TEXT,
        first_name TEXT,
        last_name TEXT,
        company TEXT,
        phone TEXT,
        lifecycle_stage TEXT,
        properties JSONB NOT NULL DEFAULT '{}'::jsonb,
        last_modified_at TIMESTAMPTZ,
        PRIMARY KEY (user_id, contact_id)
    )
    """,
)


class PostgresAutomationStorage:
    """Persist instructions, agent tasks and synced records in PostgreSQL."""

    def __init__(self, database_url: str) -> None:
        if not database_url:
            raise ValueError("COPILOT_AUTOMATION_DATABASE_URL is required")
        self.database_url = database_url
        self._lock = threading.Lock()
        self._psycopg, self._dict_row, self._json_wrapper = self._load_psycopg()

    def migrate(self) -> None:
        with self._lock, self._connect() as conn:
            for statement in _SCHEMA:
                conn.execute(statement)
            conn.commit()

    # users and integrations

    def ensure_user(self, user_id: str) -> None:
        with self._lock, self._connect() as conn:
            self._ensure_user(conn, user_id)
            conn.commit()

    def connect_integration(self, user_id: str, provider: str) -> None:
        with self._lock, self._connect() as conn:
            self._ensure_user(conn, user_id)
            conn.execute(
                """
                INSERT INTO integrations (user_id, provider, created_at)
                VALUES (%s, %s, %s)
                ON CONFLICT (user_id, provider) DO NOTHING
                """,
                (user_id, provider, datetime.now(tz=UTC)),
            )
            conn.commit()

    def list_user_ids(self, user_id: str | None = None) -> list[str]:
        with self._lock, self._connect() as conn:
            if user_id is not None:
                rows = conn.execute(
                    "SELECT user_id FROM automation_users WHERE user_id = %s",
                    (user_id,),
                ).fetchall()
            else:
                rows = conn.execute(
                    "SELECT user_id FROM automation_users ORDER BY user_id"
                ).fetchall()
        return [str(row["user_id"]) for row in rows]

    def list_integrations(self, user_ids: list[str]) -> dict[str, set[str]]:
        output: dict[str, set[str]] = {user_id: set() for user_id in user_ids}
        if not user_ids:
            return output
        with self._lock, self._connect() as conn:
            rows = conn.execute(
                "SELECT user_id, provider FROM integrations WHERE user_id = ANY(%s)",
                (list(user_ids),),
            ).fetchall()
        for row in rows:
            output.setdefault(str(row["user_id"]), set()).add(str(row["provider"]))
        return output

    # instructions

    def create_instruction(
        self,
        user_id: str,
        *,
        title: str,
        content: str,
        triggers: list[str],
        metadata: dict[str, Any] | None = None,
        status: str = "active",
    ) -> InstructionRecord:
        instruction_id = str(uuid.uuid4())
        now = datetime.now(tz=UTC)
        with self._lock, self._connect() as conn:
            self._ensure_user(conn, user_id)
            row = conn.execute(
                """
                INSERT INTO instructions (
                    instruction_id, user_id, title, content, triggers, status,
                    metadata, last_evaluated_at, created_at, updated_at
                )
                VALUES (%s, %s, %s, %s, %s, %s, %s, NULL, %s, %s)
                RETURNING *
                """,
                (
                    instruction_id,
                    user_id,
                    title,
                    content,
                    self._json_wrapper(list(triggers)),
                    status,
                    self._json_optional(metadata),
                    now,
                    now,
                ),
            ).fetchone()
            conn.commit()
        if row is None:
            raise RuntimeError("Failed to persist instruction")
        return self._row_to_instruction(row)

    def get_instruction(self, instruction_id: str) -> InstructionRecord | None:
        with self._lock, self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM instructions WHERE instruction_id = %s",
                (instruction_id,),
            ).fetchone()
        if row is None:
            return None
        return self._row_to_instruction(row)

    def update_instruction(self, instruction_id: str, **changes: Any) -> InstructionRecord:
        row = self._update_row(
            table="instructions",
            key_column="instruction_id",
            key=instruction_id,
            changes=changes,
            allowed=INSTRUCTION_UPDATABLE_FIELDS,
        )
        if row is None:
            raise KeyError(f"Instruction {instruction_id} does not exist")
        return self._row_to_instruction(row)

    def list_instructions(
        self,
        user_id: str,
        *,
        status: str | None = None,
        limit: int | None = None,
    ) -> list[InstructionRecord]:
        clauses = ["user_id = %s"]
        params: list[Any] = [user_id]
        if status is not None:
            clauses.append("status = %s")
            params.append(status)
        query = f"SELECT * FROM instructions WHERE {' AND '.join(clauses)} ORDER BY updated_at DESC"
        if limit is not None:
            query += " LIMIT %s"
            params.append(limit)
        with self._lock, self._connect() as conn:
            rows = conn.execute(query, params).fetchall()
        return [self._row_to_instruction(row) for row in rows]

    def record_instruction_match(
        self,
        *,
        user_id: str,
        instruction: InstructionRecord,
        event_type: str,
        event_payload: Any,
        occurred_at: datetime,
    ) -> InstructionMatch:
        evaluation_id = str(uuid.uuid4())
        task_id = str(uuid.uuid4())
        now = datetime.now(tz=UTC)
        task_metadata = {
            "instructionContent": instruction.content,
            "eventType": event_type,
            "evaluationId": evaluation_id,
        }
        with self._lock, self._connect() as conn:
            with conn.transaction():
                conn.execute(
                    """
                    INSERT INTO instruction_evaluations (
                        evaluation_id, user_id, instruction_id, event_type,
                        event_payload, outcome, created_at
                    )
                    VALUES (%s, %s, %s, %s, %s, 'matched', %s)
                    """,
                    (
                        evaluation_id,
                        user_id,
                        instruction.instruction_id,
                        event_type,
                        self._json_optional(event_payload),
                        now,
                    ),
                )
                conn.execute(
                    """
                    UPDATE instructions
                    SET last_evaluated_at = %s,
                        updated_at = %s
                    WHERE instruction_id = %s
                    """,
                    (occurred_at, now, instruction.instruction_id),
                )
                conn.execute(
                    """
                    INSERT INTO agent_tasks (
                        task_id, user_id, instruction_id, type, status, summary,
                        metadata, created_at, updated_at
                    )
                    VALUES (%s, %s, %s, 'instruction', 'pending', %s, %s, %s, %s)
                    """,
                    (
                        task_id,
                        user_id,
                        instruction.instruction_id,
                        instruction.title,
                        self._json_wrapper(task_metadata),
                        now,
                        now,
                    ),
                )
                if event_payload is not None:
                    self._upsert_context(conn, task_id, "event", event_payload, now)
                self._insert_step(
                    conn,
                    task_id=task_id,
                    index=0,
                    title="Evaluate instruction",
                    status="pending",
                    input={"instruction": instruction.content, "eventType": event_type},
                    now=now,
                )
        return InstructionMatch(
            instruction_id=instruction.instruction_id,
            task_id=task_id,
            evaluation_id=evaluation_id,
        )

    def list_instruction_evaluations(
        self, user_id: str, *, instruction_id: str | None = None
    ) -> list[InstructionEvaluationRecord]:
        clauses = ["user_id = %s"]
        params: list[Any] = [user_id]
        if instruction_id is not None:
            clauses.append("instruction_id = %s")
            params.append(instruction_id)
        with self._lock, self._connect() as conn:
            rows = conn.execute(
                f"""
                SELECT *
                FROM instruction_evaluations
                WHERE {' AND '.join(clauses)}
                ORDER BY created_at ASC
                """,
                params,
            ).fetchall()
        return [
            InstructionEvaluationRecord(
                evaluation_id=str(row["evaluation_id"]),
                user_id=str(row["user_id"]),
                instruction_id=str(row["instruction_id"]),
                event_type=str(row["event_type"]),
                event_payload=self._parse_json(row.get("event_payload")),
                outcome=row["outcome"],
                created_at=self._parse_datetime(row["created_at"]),
            )
            for row in rows
        ]

    # tasks

    def create_task(
        self,
        user_id: str,
        *,
        type: str,
        summary: str | None = None,
        metadata: Any = None,
        scheduled_for: datetime | None = None,
        instruction_id: str | None = None,
        context: dict[str, Any] | None = None,
        steps: list[dict[str, Any]] | None = None,
    ) -> AgentTaskRecord:
        task_id = str(uuid.uuid4())
        now = datetime.now(tz=UTC)
        with self._lock, self._connect() as conn:
            with conn.transaction():
                self._ensure_user(conn, user_id)
                row = conn.execute(
                    """
                    INSERT INTO agent_tasks (
                        task_id, user_id, instruction_id, type, status, summary,
                        scheduled_for, metadata, created_at, updated_at
                    )
                    VALUES (%s, %s, %s, %s, 'pending', %s, %s, %s, %s, %s)
                    RETURNING *
                    """,
                    (
                        task_id,
                        user_id,
                        instruction_id,
                        type,
                        summary,
                        scheduled_for,
                        self._json_optional(metadata),
                        now,
                        now,
                    ),
                ).fetchone()
                for key, value in (context or {}).items():
                    self._upsert_context(conn, task_id, key, value, now)
                for index, step in enumerate(steps or []):
                    self._insert_step(
                        conn,
                        task_id=task_id,
                        index=index,
                        title=step["title"],
                        status=step.get("status", "pending"),
                        input=step.get("input"),
                        now=now,
                    )
        if row is None:
            raise RuntimeError("Failed to persist task")
        return self._row_to_task(row)

    def get_task(self, task_id: str) -> AgentTaskRecord | None:
        with self._lock, self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM agent_tasks WHERE task_id = %s",
                (task_id,),
            ).fetchone()
        if row is None:
            return None
        return self._row_to_task(row)

    def list_tasks(
        self, user_id: str, *, status: str | None = None, limit: int = 50
    ) -> list[AgentTaskRecord]:
        clauses = ["user_id = %s"]
        params: list[Any] = [user_id]
        if status is not None:
            clauses.append("status = %s")
            params.append(status)
        params.append(limit)
        with self._lock, self._connect() as conn:
            rows = conn.execute(
                f"""
                SELECT *
                FROM agent_tasks
                WHERE {' AND '.join(clauses)}
                ORDER BY created_at DESC
                LIMIT %s
                """,
                params,
            ).fetchall()
        return [self._row_to_task(row) for row in rows]

    def list_due_tasks(
        self, *, now: datetime, user_id: str | None = None, limit: int = 5
    ) -> list[AgentTaskRecord]:
        clauses = ["status = ANY(%s)", "(scheduled_for IS NULL OR scheduled_for <= %s)"]
        params: list[Any] = [list(CLAIMABLE_TASK_STATUSES), now]
        if user_id is not None:
            clauses.append("user_id = %s")
            params.append(user_id)
        params.append(limit)
        with self._lock, self._connect() as conn:
            rows = conn.execute(
                f"""
                SELECT *
                FROM agent_tasks
                WHERE {' AND '.join(clauses)}
                ORDER BY scheduled_for ASC NULLS FIRST, created_at ASC
                LIMIT %s
                """,
                params,
            ).fetchall()
        return [self._row_to_task(row) for row in rows]

    def claim_task(self, task_id: str) -> bool:
        now = datetime.now(tz=UTC)
        with self._lock, self._connect() as conn:
            cursor = conn.execute(
                """
                UPDATE agent_tasks
                SET status = 'running',
                    started_at = %s,
                    updated_at = %s
                WHERE task_id = %s
                  AND status = ANY(%s)
                """,
                (now, now, task_id, list(CLAIMABLE_TASK_STATUSES)),
            )
            claimed = cursor.rowcount == 1
            conn.commit()
        return claimed

    def update_task(self, task_id: str, **changes: Any) -> AgentTaskRecord:
        row = self._update_row(
            table="agent_tasks",
            key_column="task_id",
            key=task_id,
            changes=changes,
            allowed=TASK_UPDATABLE_FIELDS,
        )
        if row is None:
            raise KeyError(f"Task {task_id} does not exist")
        return self._row_to_task(row)

    def requeue_stale_tasks(self, *, cutoff: datetime) -> list[str]:
        now = datetime.now(tz=UTC)
        with self._lock, self._connect() as conn:
            with conn.transaction():
                rows = conn.execute(
                    """
                    UPDATE agent_tasks
                    SET status = 'pending',
                        updated_at = %s
                    WHERE status = 'running'
                      AND started_at < %s
                    RETURNING task_id
                    """,
                    (now, cutoff),
                ).fetchall()
                task_ids = [str(row["task_id"]) for row in rows]
                if task_ids:
                    conn.execute(
                        """
                        UPDATE task_steps
                        SET status = 'failed',
                            error = %s,
                            completed_at = %s,
                            updated_at = %s
                        WHERE task_id = ANY(%s)
                          AND status = 'running'
                        """,
                        (
                            self._json_wrapper({"message": "Task claim expired before completion"}),
                            now,
                            now,
                            task_ids,
                        ),
                    )
        return task_ids

    # steps and context

    def list_steps(self, task_id: str) -> list[TaskStepRecord]:
        with self._lock, self._connect() as conn:
            rows = conn.execute(
                "SELECT * FROM task_steps WHERE task_id = %s ORDER BY step_index ASC",
                (task_id,),
            ).fetchall()
        return [self._row_to_step(row) for row in rows]

    def append_step(
        self,
        task_id: str,
        *,
        title: str,
        input: Any = None,
        status: str = "pending",
    ) -> TaskStepRecord:
        now = datetime.now(tz=UTC)
        with self._lock, self._connect() as conn:
            with conn.transaction():
                count_row = conn.execute(
                    "SELECT COUNT(*) AS total FROM task_steps WHERE task_id = %s",
                    (task_id,),
                ).fetchone()
                index = int(count_row["total"]) if count_row else 0
                row = self._insert_step(
                    conn,
                    task_id=task_id,
                    index=index,
                    title=title,
                    status=status,
                    input=input,
                    now=now,
                )
        if row is None:
            raise RuntimeError("Failed to persist task step")
        return self._row_to_step(row)

    def update_step(self, step_id: str, **changes: Any) -> TaskStepRecord:
        row = self._update_row(
            table="task_steps",
            key_column="step_id",
            key=step_id,
            changes=changes,
            allowed=STEP_UPDATABLE_FIELDS,
        )
        if row is None:
            raise KeyError(f"Step {step_id} does not exist")
        return self._row_to_step(row)

    def fail_running_steps(self, task_id: str, *, error: Any) -> int:
        now = datetime.now(tz=UTC)
        with self._lock, self._connect() as conn:
            cursor = conn.execute(
                """
                UPDATE task_steps
                SET status = 'failed',
                    error = %s,
                    completed_at = %s,
                    updated_at = %s
                WHERE task_id = %s
                  AND status = 'running'
                """,
                (self._json_optional(error), now, now, task_id),
            )
            count = cursor.rowcount
            conn.commit()
        return max(count, 0)

    def set_context(self, task_id: str, key: str, value: Any) -> TaskContextRecord:
        now = datetime.now(tz=UTC)
        with self._lock, self._connect() as conn:
            row = self._upsert_context(conn, task_id, key, value, now)
            conn.commit()
        if row is None:
            raise RuntimeError("Failed to persist task context")
        return self._row_to_context(row)

    def list_contexts(self, task_id: str) -> list[TaskContextRecord]:
        with self._lock, self._connect() as conn:
            rows = conn.execute(
                "SELECT * FROM task_contexts WHERE task_id = %s ORDER BY created_at ASC",
                (task_id,),
            ).fetchall()
        return [self._row_to_context(row) for row in rows]

    # synced records

    def upsert_email_message(self, record: EmailMessageRecord) -> UpsertResult:
        return self._upsert_record(
            table="email_messages",
            key_columns=("user_id", "message_id"),
            values={
                "user_id": record.user_id,
                "message_id": record.message_id,
                "thread_id": record.thread_id,
                "subject": record.subject,
                "from_address": record.from_address,
                "to_addresses": self._json_wrapper(record.to_addresses),
                "snippet": record.snippet,
                "body_text": record.body_text,
                "body_html": record.body_html,
                "sent_at": record.sent_at,
            },
        )

    def upsert_calendar_event(self, record: CalendarEventRecord) -> UpsertResult:
        return self._upsert_record(
            table="calendar_events",
            key_columns=("user_id", "event_id"),
            values={
                "user_id": record.user_id,
                "event_id": record.event_id,
                "calendar_id": record.calendar_id,
                "summary": record.summary,
                "description": record.description,
                "location": record.location,
                "start_time": record.start_time,
                "end_time": record.end_time,
                "attendees": self._json_wrapper(record.attendees),
            },
        )

    def upsert_hubspot_contact(self, record: HubspotContactRecord) -> UpsertResult:
        return self._upsert_record(
            table="hubspot_contacts",
            key_columns=("user_id", "contact_id"),
            values={
                "user_id": record.user_id,
                "contact_id": record.contact_id,
                "email": record.email,
                "first_name": record.first_name,
                "last_name": record.last_name,
                "company": record.company,
                "phone": record.phone,
                "lifecycle_stage": record.lifecycle_stage,
                "properties": self._json_wrapper(record.properties),
                "last_modified_at": record.last_modified_at,
            },
        )

    def list_email_messages(
        self,
        user_id: str,
        *,
        subject_contains: str | None = None,
        person: str | None = None,
        sent_from: datetime | None = None,
        sent_before: datetime | None = None,
        message_ids: list[str] | None = None,
        limit: int = 10,
    ) -> list[EmailMessageRecord]:
        clauses = ["user_id = %s"]
        params: list[Any] = [user_id]
        if subject_contains:
            clauses.append("subject ILIKE %s")
            params.append(f"%{subject_contains}%")
        if person:
            clauses.append(
                "(from_address ILIKE %s OR to_addresses::text ILIKE %s OR subject ILIKE %s)"
            )
            params.extend([f"%{person}%"] * 3)
        if sent_from is not None:
            clauses.append("sent_at >= %s")
            params.append(sent_from)
        if sent_before is not None:
            clauses.append("sent_at < %s")
            params.append(sent_before)
        if message_ids is not None:
            clauses.append("message_id = ANY(%s)")
            params.append(list(message_ids))
        params.append(limit)
        with self._lock, self._connect() as conn:
            rows = conn.execute(
                f"""
                SELECT *
                FROM email_messages
                WHERE {' AND '.join(clauses)}
                ORDER BY sent_at DESC NULLS LAST
                LIMIT %s
                """,
                params,
            ).fetchall()
        return [
            EmailMessageRecord(
                user_id=str(row["user_id"]),
                message_id=str(row["message_id"]),
                thread_id=row.get("thread_id"),
                subject=row.get("subject"),
                from_address=row.get("from_address"),
                to_addresses=self._parse_json(row.get("to_addresses")) or [],
                snippet=row.get("snippet"),
                body_text=row.get("body_text"),
                body_html=row.get("body_html"),
                sent_at=row.get("sent_at"),
            )
            for row in rows
        ]

    def list_calendar_events(
        self,
        user_id: str,
        *,
        start_from: datetime | None = None,
        start_before: datetime | None = None,
        include_unscheduled: bool = False,
        event_ids: list[str] | None = None,
        limit: int = 10,
    ) -> list[CalendarEventRecord]:
        window: list[str] = []
        params: list[Any] = [user_id]
        if start_from is not None:
            window.append("start_time >= %s")
            params.append(start_from)
        if start_before is not None:
            window.append("start_time < %s")
            params.append(start_before)
        window_clause = " AND ".join(["start_time IS NOT NULL", *window])
        if include_unscheduled:
            window_clause = f"(({window_clause}) OR start_time IS NULL)"
        clauses = ["user_id = %s", window_clause]
        if event_ids is not None:
            clauses.append("event_id = ANY(%s)")
            params.append(list(event_ids))
        params.append(limit)
        with self._lock, self._connect() as conn:
            rows = conn.execute(
                f"""
                SELECT *
                FROM calendar_events
                WHERE {' AND '.join(clauses)}
                ORDER BY start_time ASC NULLS LAST
                LIMIT %s
                """,
                params,
            ).fetchall()
        return [
            CalendarEventRecord(
                user_id=str(row["user_id"]),
                calendar_id=str(row["calendar_id"]),
                event_id=str(row["event_id"]),
                summary=row.get("summary"),
                description=row.get("description"),
                location=row.get("location"),
                start_time=row.get("start_time"),
                end_time=row.get("end_time"),
                attendees=self._parse_json(row.get("attendees")) or [],
            )
            for row in rows
        ]

    def list_hubspot_contacts(
        self,
        user_id: str,
        *,
        email: str | None = None,
        name: str | None = None,
        contact_ids: list[str] | None = None,
        limit: int = 10,
    ) -> list[HubspotContactRecord]:
        clauses = ["user_id = %s"]
        params: list[Any] = [user_id]
        if email:
            clauses.append("email ILIKE %s")
            params.append(f"%{email}%")
        if name:
            clauses.append(
                "(COALESCE(first_name, '') || ' ' || COALESCE(last_name, '')) ILIKE %s"
            )
            params.append(f"%{name}%")
        if contact_ids is not None:
            clauses.append("contact_id = ANY(%s)")
            params.append(list(contact_ids))
        params.append(limit)
        with self._lock, self._connect() as conn:
            rows = conn.execute(
                f"""
                SELECT *
                FROM hubspot_contacts
                WHERE {' AND '.join(clauses)}
                ORDER BY last_modified_at DESC NULLS LAST
                LIMIT %s
                """,
                params,
            ).fetchall()
        return [
            HubspotContactRecord(
                user_id=str(row["user_id"]),
                contact_id=str(row["contact_id"]),
                email=row.get("email"),
                first_name=row.get("first_name"),
                last_name=row.get("last_name"),
                company=row.get("company"),
                phone=row.get("phone"),
                lifecycle_stage=row.get("lifecycle_stage"),
                properties=self._parse_json(row.get("properties")) or {},
                last_modified_at=row.get("last_modified_at"),
            )
            for row in rows
        ]

    def _connect(self) -> Any:
        return self._psycopg.connect(self.database_url, row_factory=self._dict_row)

    def _json_optional(self, value: Any) -> Any:
        return self._json_wrapper(value) if value is not None else None

    @staticmethod
    def _ensure_user(conn: Any, user_id: str) -> None:
        conn.execute(
            """
            INSERT INTO automation_users (user_id, created_at)
            VALUES (%s, %s)
            ON CONFLICT (user_id) DO NOTHING
            """,
            (user_id, datetime.now(tz=UTC)),
        )

    def _insert_step(
        self,
        conn: Any,
        *,
        task_id: str,
        index: int,
        title: str,
        status: str,
        input: Any,
        now: datetime,
    ) -> Any:
        return conn.execute(
            """
            INSERT INTO task_steps (
                step_id, task_id, step_index, title, status, input,
                created_at, updated_at
            )
            VALUES (%s, %s, %s, %s, %s, %s, %s, %s)
            RETURNING *
            """,
            (
                str(uuid.uuid4()),
                task_id,
                index,
                title,
                status,
                self._json_optional(input),
                now,
                now,
            ),
        ).fetchone()

    def _upsert_context(
        self, conn: Any, task_id: str, key: str, value: Any, now: datetime
    ) -> Any:
        return conn.execute(
            """
            INSERT INTO task_contexts (task_id, key, value, created_at, updated_at)
            VALUES (%s, %s, %s, %s, %s)
            ON CONFLICT (task_id, key) DO UPDATE
            SET value = EXCLUDED.value,
                updated_at = EXCLUDED.updated_at
            RETURNING *
            """,
            (task_id, key, self._json_optional(value), now, now),
        ).fetchone()

    def _update_row(
        self,
        *,
        table: str,
        key_column: str,
        key: str,
        changes: dict[str, Any],
        allowed: frozenset[str],
    ) -> Any:
        unknown = sorted(set(changes) - allowed)
        if unknown:
            raise ValueError(f"Unsupported update fields: {', '.join(unknown)}")
        assignments: list[str] = []
        params: list[Any] = []
        for column, value in changes.items():
            assignments.append(f"{column} = %s")
            if column in _JSON_COLUMNS:
                params.append(self._json_optional(value))
            else:
                params.append(value)
        assignments.append("updated_at = %s")
        params.extend([datetime.now(tz=UTC), key])
        with self._lock, self._connect() as conn:
            row = conn.execute(
                f"""
                UPDATE {table}
                SET {', '.join(assignments)}
                WHERE {key_column} = %s
                RETURNING *
                """,
                params,
            ).fetchone()
            conn.commit()
        return row

    def _upsert_record(
        self,
        *,
        table: str,
        key_columns: tuple[str, ...],
        values: dict[str, Any],
    ) -> UpsertResult:
        columns = list(values)
        data_columns = [column for column in columns if column not in key_columns]
        placeholders = ", ".join(["%s"] * len(columns))
        assignments = ", ".join(f"{column} = EXCLUDED.{column}" for column in data_columns)
        current = ", ".join(f"{table}.{column}" for column in data_columns)
        incoming = ", ".join(f"EXCLUDED.{column}" for column in data_columns)
        with self._lock, self._connect() as conn:
            self._ensure_user(conn, values["user_id"])
            row = conn.execute(
                f"""
                INSERT INTO {table} ({', '.join(columns)})
                VALUES ({placeholders})
                ON CONFLICT ({', '.join(key_columns)}) DO UPDATE
                SET {assignments}
                WHERE ({current}) IS DISTINCT FROM ({incoming})
                RETURNING (xmax = 0) AS inserted
                """,
                list(values.values()),
            ).fetchone()
            conn.commit()
        # No returned row means the conflict update was filtered out.
        if row is None:
            return "unchanged"
        return "created" if row.get("inserted") else "updated"

    @staticmethod
    def _load_psycopg() -> tuple[Any, Any, Any]:
        try:
            import psycopg
            from psycopg.rows import dict_row
            from psycopg.types.json import Json
        except ImportError as exc:  # pragma: no cover
            raise RuntimeError(
                "PostgreSQL storage requires psycopg. "
                'Install with: python -m pip install "psycopg[binary]>=3.2,<4.0"'
            ) from exc
        return psycopg, dict_row, Json

    @staticmethod
    def _parse_json(raw: Any) -> Any:
        if isinstance(raw, str):
            return json.loads(raw)
        return raw

    @staticmethod
    def _parse_datetime(raw: Any) -> datetime:
        if isinstance(raw, datetime):
            return raw
        if isinstance(raw, str):
            return datetime.fromisoformat(raw)
        raise TypeError(f"Unsupported datetime value: {type(raw)!r}")

    @classmethod
    def _parse_datetime_optional(cls, raw: Any) -> datetime | None:
        if raw is None:
            return None
        return cls._parse_datetime(raw)

    @classmethod
    def _row_to_instruction(cls, row: Any) -> InstructionRecord:
        return InstructionRecord(
            instruction_id=str(row["instruction_id"]),
            user_id=str(row["user_id"]),
            title=row["title"],
            content=row["content"],
            triggers=cls._parse_json(row.get("triggers")) or [],
            status=row["status"],
            metadata=cls._parse_json(row.get("metadata")),
            last_evaluated_at=cls._parse_datetime_optional(row.get("last_evaluated_at")),
            created_at=cls._parse_datetime(row["created_at"]),
            updated_at=cls._parse_datetime(row["updated_at"]),
        )

    @classmethod
    def _row_to_task(cls, row: Any) -> AgentTaskRecord:
        return AgentTaskRecord(
            task_id=str(row["task_id"]),
            user_id=str(row["user_id"]),
            instruction_id=row.get("instruction_id"),
            type=row["type"],
            status=row["status"],
            summary=row.get("summary"),
            scheduled_for=cls._parse_datetime_optional(row.get("scheduled_for")),
            error_message=row.get("error_message"),
            metadata=cls._parse_json(row.get("metadata")),
            started_at=cls._parse_datetime_optional(row.get("started_at")),
            completed_at=cls._parse_datetime_optional(row.get("completed_at")),
            cancelled_at=cls._parse_datetime_optional(row.get("cancelled_at")),
            created_at=cls._parse_datetime(row["created_at"]),
            updated_at=cls._parse_datetime(row["updated_at"]),
        )

    @classmethod
    def _row_to_step(cls, row: Any) -> TaskStepRecord:
        return TaskStepRecord(
            step_id=str(row["step_id"]),
            task_id=str(row["task_id"]),
            index=int(row["step_index"]),
            title=row["title"],
            status=row["status"],
            input=cls._parse_json(row.get("input")),
            output=cls._parse_json(row.get("output")),
            error=cls._parse_json(row.get("error")),
            started_at=cls._parse_datetime_optional(row.get("started_at")),
            completed_at=cls._parse_datetime_optional(row.get("completed_at")),
            created_at=cls._parse_datetime(row["created_at"]),
            updated_at=cls._parse_datetime(row["updated_at"]),
        )

    @classmethod
    def _row_to_context(cls, row: Any) -> TaskContextRecord:
        return TaskContextRecord(
            task_id=str(row["task_id"]),
            key=row["key"],
            value=cls._parse_json(row.get("value")),
            created_at=cls._parse_datetime(row["created_at"]),
            updated_at=cls._parse_datetime(row["updated_at"]),
        )
