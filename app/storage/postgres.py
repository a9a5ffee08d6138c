"""PostgreSQL repository storing records as JSONB documents."""

from __future__ import annotations

import asyncio
import json
from datetime import datetime
from typing import cast

import asyncpg
from structlog import get_logger

from app.core.database import Database
from app.core.errors import DuplicateApplicationError, NotFoundError
from app.models.workflow import (
    Application,
    ApplicationStatus,
    CompletionRecord,
    Lead,
    Task,
    TaskType,
)
from app.storage.base import (
    ApplicationMutator,
    CompletionMutator,
    LeadMutator,
    TaskFinalizer,
    TaskMutator,
)
from app.types.database import ApplicationRowTD, CompletionRowTD, LeadRowTD, TaskRowTD

logger = get_logger()

_APPLICATION_COLUMNS = (
    "application_id, applicant_email, status, document::text AS document, "
    "version, submitted_at, updated_at"
)
_LEAD_COLUMNS = "lead_id, application_id, email, status, document::text AS document, version"
_TASK_COLUMNS = "task_id, type, status, is_active, document::text AS document, version"
_COMPLETION_COLUMNS = "task_id, lead_id, status, document::text AS document, removed_at"


def _application_from_row(row: ApplicationRowTD) -> Application:
    return Application.model_validate_json(row["document"])


def _lead_from_row(row: LeadRowTD) -> Lead:
    return Lead.model_validate_json(row["document"])


def _task_from_rows(row: TaskRowTD, completions: list[CompletionRowTD]) -> Task:
    document = json.loads(row["document"])
    document["completions"] = {c["lead_id"]: json.loads(c["document"]) for c in completions}
    return Task.model_validate(document)


def _lead_document(lead: Lead) -> str:
    # can_access_dashboard is derived and never persisted
    return lead.model_dump_json(exclude={"can_access_dashboard"})


def _task_document(task: Task) -> str:
    return task.model_dump_json(exclude={"completions"})


class PostgresRepository:
    """
    Repository over an asyncpg pool.

    Writers lock their rows with SELECT ... FOR UPDATE inside one transaction:
    the application and lead rows for a pair, the task row for a task.
    """

    name = "postgres"

    def __init__(self, database: Database, *, timeout: float) -> None:
        self.db = database
        self.timeout = timeout

    async def open(self) -> None:
        await self.db.connect()
        logger.info("postgres_repository_opened")

    async def close(self) -> None:
        await self.db.disconnect()

    async def ping(self) -> bool:
        async with asyncio.timeout(self.timeout):
            return await self.db.fetchval("SELECT 1") == 1

    # ============================================
    # Applications and leads
    # ============================================

    async def create_application(self, application: Application, lead: Lead) -> None:
        async with asyncio.timeout(self.timeout):
            try:
                async with self.db.transaction() as conn:
                    await conn.execute(
                        """
                        INSERT INTO applications
                        (application_id, applicant_email, status, document, version,
                         submitted_at, updated_at)
                        VALUES ($1, $2, $3, $4::jsonb, $5, $6, $7)
                        """,
                        application.id,
                        application.applicant_email,
                        application.status.value,
                        application.model_dump_json(),
                        application.version,
                        application.submitted_at,
                        application.updated_at,
                    )
                    await conn.execute(
                        """
                        INSERT INTO leads
                        (lead_id, application_id, email, status, document, version,
                         created_at, updated_at)
                        VALUES ($1, $2, $3, $4, $5::jsonb, $6, $7, $8)
                        """,
                        lead.id,
                        lead.application_id,
                        lead.email,
                        lead.status.value,
                        _lead_document(lead),
                        lead.version,
                        lead.created_at,
                        lead.updated_at,
                    )
            except asyncpg.UniqueViolationError as e:
                raise DuplicateApplicationError(application.applicant_email) from e

    async def get_application(self, application_id: str) -> Application | None:
        async with asyncio.timeout(self.timeout):
            row = await self.db.fetchrow(
                f"SELECT {_APPLICATION_COLUMNS} FROM applications WHERE application_id = $1",
                application_id,
            )
        return _application_from_row(cast(ApplicationRowTD, dict(row))) if row else None

    async def get_application_by_email(self, email: str) -> Application | None:
        async with asyncio.timeout(self.timeout):
            row = await self.db.fetchrow(
                f"SELECT {_APPLICATION_COLUMNS} FROM applications WHERE applicant_email = $1",
                email,
            )
        return _application_from_row(cast(ApplicationRowTD, dict(row))) if row else None

    async def list_applications(
        self, status: ApplicationStatus | None = None
    ) -> list[Application]:
        async with asyncio.timeout(self.timeout):
            rows = await self.db.fetch(
                f"""
                SELECT {_APPLICATION_COLUMNS}
                FROM applications
                WHERE ($1::text IS NULL OR status = $1)
                ORDER BY submitted_at DESC
                """,
                status.value if status else None,
            )
        return [_application_from_row(cast(ApplicationRowTD, dict(r))) for r in rows]

    async def update_application(
        self, application_id: str, mutate: ApplicationMutator
    ) -> tuple[Application, Lead]:
        async with asyncio.timeout(self.timeout):
            async with self.db.transaction() as conn:
                app_row = await conn.fetchrow(
                    f"""
                    SELECT {_APPLICATION_COLUMNS} FROM applications
                    WHERE application_id = $1
                    FOR UPDATE
                    """,
                    application_id,
                )
                if not app_row:
                    raise NotFoundError("Application", application_id)

                lead_row = await conn.fetchrow(
                    f"SELECT {_LEAD_COLUMNS} FROM leads WHERE application_id = $1 FOR UPDATE",
                    application_id,
                )
                if not lead_row:
                    raise NotFoundError("Lead", context={"application_id": application_id})

                application = _application_from_row(cast(ApplicationRowTD, dict(app_row)))
                lead = _lead_from_row(cast(LeadRowTD, dict(lead_row)))

                new_application, new_lead = mutate(application, lead)
                new_application = new_application.model_copy(
                    update={"version": application.version + 1}
                )
                new_lead = new_lead.model_copy(update={"version": lead.version + 1})

                await conn.execute(
                    """
                    UPDATE applications
                    SET status = $2, document = $3::jsonb, version = $4, updated_at = $5
                    WHERE application_id = $1
                    """,
                    application_id,
                    new_application.status.value,
                    new_application.model_dump_json(),
                    new_application.version,
                    new_application.updated_at,
                )
                await self._write_lead(conn, new_lead)

        return new_application, new_lead

    async def get_lead(self, lead_id: str) -> Lead | None:
        async with asyncio.timeout(self.timeout):
            row = await self.db.fetchrow(
                f"SELECT {_LEAD_COLUMNS} FROM leads WHERE lead_id = $1", lead_id
            )
        return _lead_from_row(cast(LeadRowTD, dict(row))) if row else None

    async def get_lead_by_email(self, email: str) -> Lead | None:
        async with asyncio.timeout(self.timeout):
            row = await self.db.fetchrow(
                f"SELECT {_LEAD_COLUMNS} FROM leads WHERE email = $1", email
            )
        return _lead_from_row(cast(LeadRowTD, dict(row))) if row else None

    async def list_leads(self) -> list[Lead]:
        async with asyncio.timeout(self.timeout):
            rows = await self.db.fetch(f"SELECT {_LEAD_COLUMNS} FROM leads ORDER BY created_at")
        return [_lead_from_row(cast(LeadRowTD, dict(r))) for r in rows]

    async def update_lead(self, lead_id: str, mutate: LeadMutator) -> Lead:
        async with asyncio.timeout(self.timeout):
            async with self.db.transaction() as conn:
                row = await conn.fetchrow(
                    f"SELECT {_LEAD_COLUMNS} FROM leads WHERE lead_id = $1 FOR UPDATE", lead_id
                )
                if not row:
                    raise NotFoundError("Lead", lead_id)
                lead = _lead_from_row(cast(LeadRowTD, dict(row)))
                new_lead = mutate(lead).model_copy(update={"version": lead.version + 1})
                await self._write_lead(conn, new_lead)
        return new_lead

    @staticmethod
    async def _write_lead(conn: asyncpg.Connection, lead: Lead) -> None:
        await conn.execute(
            """
            UPDATE leads
            SET status = $2, document = $3::jsonb, version = $4, updated_at = $5
            WHERE lead_id = $1
            """,
            lead.id,
            lead.status.value,
            _lead_document(lead),
            lead.version,
            lead.updated_at,
        )

    # ============================================
    # Tasks
    # ============================================

    async def create_task(self, task: Task) -> None:
        async with asyncio.timeout(self.timeout):
            async with self.db.transaction() as conn:
                await conn.execute(
                    """
                    INSERT INTO tasks
                    (task_id, type, status, is_active, assigned_to_all, due_date, document,
                     version, created_at, updated_at)
                    VALUES ($1, $2, $3, $4, $5, $6, $7::jsonb, $8, $9, $10)
                    """,
                    task.id,
                    task.type.value,
                    task.status.value,
                    task.is_active,
                    task.assigned_to_all,
                    task.due_date,
                    _task_document(task),
                    task.version,
                    task.created_at,
                    task.updated_at,
                )
                await self._write_completions(
                    conn, task.id, list(task.completions.root.values()), task.updated_at
                )

    async def get_task(self, task_id: str) -> Task | None:
        async with asyncio.timeout(self.timeout):
            row = await self.db.fetchrow(
                f"SELECT {_TASK_COLUMNS} FROM tasks WHERE task_id = $1", task_id
            )
            if not row:
                return None
            completions = await self.db.fetch(
                f"SELECT {_COMPLETION_COLUMNS} FROM task_completions WHERE task_id = $1",
                task_id,
            )
        return _task_from_rows(
            cast(TaskRowTD, dict(row)), [cast(CompletionRowTD, dict(c)) for c in completions]
        )

    async def list_tasks(
        self, task_type: TaskType | None = None, *, include_inactive: bool = False
    ) -> list[Task]:
        async with asyncio.timeout(self.timeout):
            rows = await self.db.fetch(
                f"""
                SELECT {_TASK_COLUMNS}
                FROM tasks
                WHERE ($1::text IS NULL OR type = $1)
                  AND ($2 OR is_active)
                ORDER BY created_at DESC
                """,
                task_type.value if task_type else None,
                include_inactive,
            )
            if not rows:
                return []
            completion_rows = await self.db.fetch(
                f"""
                SELECT {_COMPLETION_COLUMNS}
                FROM task_completions
                WHERE task_id = ANY($1::text[])
                """,
                [r["task_id"] for r in rows],
            )

        by_task: dict[str, list[CompletionRowTD]] = {}
        for c in completion_rows:
            by_task.setdefault(c["task_id"], []).append(cast(CompletionRowTD, dict(c)))
        return [
            _task_from_rows(cast(TaskRowTD, dict(r)), by_task.get(r["task_id"], []))
            for r in rows
        ]

    async def _lock_task(self, conn: asyncpg.Connection, task_id: str) -> Task:
        row = await conn.fetchrow(
            f"SELECT {_TASK_COLUMNS} FROM tasks WHERE task_id = $1 FOR UPDATE", task_id
        )
        if not row:
            raise NotFoundError("Task", task_id)
        completions = await conn.fetch(
            f"SELECT {_COMPLETION_COLUMNS} FROM task_completions WHERE task_id = $1", task_id
        )
        return _task_from_rows(
            cast(TaskRowTD, dict(row)), [cast(CompletionRowTD, dict(c)) for c in completions]
        )

    async def update_task(self, task_id: str, mutate: TaskMutator) -> Task:
        async with asyncio.timeout(self.timeout):
            async with self.db.transaction() as conn:
                task = await self._lock_task(conn, task_id)
                before = {k: v.model_dump_json() for k, v in task.completions.root.items()}

                new_task = mutate(task.model_copy(deep=True)).model_copy(
                    update={"version": task.version + 1}
                )
                await self._write_task_row(conn, new_task)

                changed = [
                    record
                    for lead_id, record in new_task.completions.root.items()
                    if before.get(lead_id) != record.model_dump_json()
                ]
                await self._write_completions(conn, task_id, changed, new_task.updated_at)
        return new_task

    async def update_completion(
        self,
        task_id: str,
        lead_id: str,
        mutate: CompletionMutator,
        finalize: TaskFinalizer,
    ) -> tuple[Task, CompletionRecord | None, CompletionRecord]:
        async with asyncio.timeout(self.timeout):
            async with self.db.transaction() as conn:
                task = await self._lock_task(conn, task_id)
                before = task.completions.get(lead_id)
                after = mutate(task, before.model_copy(deep=True) if before else None)

                task.completions.put(after)
                new_task = finalize(task).model_copy(update={"version": task.version + 1})

                # Only this lead's record row changes
                await self._write_completions(conn, task_id, [after], new_task.updated_at)
                await self._write_task_row(conn, new_task)
        return new_task, before, after

    @staticmethod
    async def _write_task_row(conn: asyncpg.Connection, task: Task) -> None:
        await conn.execute(
            """
            UPDATE tasks
            SET status = $2, is_active = $3, assigned_to_all = $4, due_date = $5,
                document = $6::jsonb, version = $7, updated_at = $8
            WHERE task_id = $1
            """,
            task.id,
            task.status.value,
            task.is_active,
            task.assigned_to_all,
            task.due_date,
            _task_document(task),
            task.version,
            task.updated_at,
        )

    @staticmethod
    async def _write_completions(
        conn: asyncpg.Connection,
        task_id: str,
        records: list[CompletionRecord],
        updated_at: datetime,
    ) -> None:
        if not records:
            return
        await conn.executemany(
            """
            INSERT INTO task_completions
            (task_id, lead_id, status, document, removed_at, updated_at)
            VALUES ($1, $2, $3, $4::jsonb, $5, $6)
            ON CONFLICT (task_id, lead_id) DO UPDATE
            SET status = EXCLUDED.status,
                document = EXCLUDED.document,
                removed_at = EXCLUDED.removed_at,
                updated_at = EXCLUDED.updated_at
            """,
            [
                (
                    task_id,
                    r.lead_id,
                    r.status.value,
                    r.model_dump_json(),
                    r.removed_at,
                    updated_at,
                )
                for r in records
            ],
        )
