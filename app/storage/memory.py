"""In-process repository backed by dicts and per-key asyncio locks."""

from __future__ import annotations

import asyncio
from collections import defaultdict
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from structlog import get_logger

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

logger = get_logger()


class MemoryRepository:
    """
    Non-persistent repository for local runs and tests.

    Stored records are never handed out; every read returns a deep copy.
    """

    name = "memory"

    def __init__(self, *, timeout: float) -> None:
        self.timeout = timeout
        self._applications: dict[str, Application] = {}
        self._application_ids_by_email: dict[str, str] = {}
        self._leads: dict[str, Lead] = {}
        self._lead_ids_by_application: dict[str, str] = {}
        self._lead_ids_by_email: dict[str, str] = {}
        self._tasks: dict[str, Task] = {}
        self._locks: defaultdict[str, asyncio.Lock] = defaultdict(asyncio.Lock)
        self._opened = False

    async def open(self) -> None:
        self._opened = True
        logger.info("memory_repository_opened")

    async def close(self) -> None:
        self._opened = False

    async def ping(self) -> bool:
        return self._opened

    @asynccontextmanager
    async def _locked(self, key: str) -> AsyncIterator[None]:
        # Lock wait and body share one deadline
        async with asyncio.timeout(self.timeout):
            async with self._locks[key]:
                yield

    @staticmethod
    def _pair_key(email: str) -> str:
        return f"pair:{email}"

    @staticmethod
    def _task_key(task_id: str) -> str:
        return f"task:{task_id}"

    # ============================================
    # Applications and leads
    # ============================================

    async def create_application(self, application: Application, lead: Lead) -> None:
        async with self._locked(self._pair_key(application.applicant_email)):
            if application.applicant_email in self._application_ids_by_email:
                raise DuplicateApplicationError(application.applicant_email)
            self._applications[application.id] = application.model_copy(deep=True)
            self._application_ids_by_email[application.applicant_email] = application.id
            self._leads[lead.id] = lead.model_copy(deep=True)
            self._lead_ids_by_application[application.id] = lead.id
            self._lead_ids_by_email[lead.email] = lead.id

    async def get_application(self, application_id: str) -> Application | None:
        async with asyncio.timeout(self.timeout):
            application = self._applications.get(application_id)
            return application.model_copy(deep=True) if application else None

    async def get_application_by_email(self, email: str) -> Application | None:
        application_id = self._application_ids_by_email.get(email)
        if application_id is None:
            return None
        return await self.get_application(application_id)

    async def list_applications(
        self, status: ApplicationStatus | None = None
    ) -> list[Application]:
        async with asyncio.timeout(self.timeout):
            rows = [
                a.model_copy(deep=True)
                for a in self._applications.values()
                if status is None or a.status == status
            ]
        rows.sort(key=lambda a: a.submitted_at, reverse=True)
        return rows

    async def update_application(
        self, application_id: str, mutate: ApplicationMutator
    ) -> tuple[Application, Lead]:
        current = self._applications.get(application_id)
        if current is None:
            raise NotFoundError("Application", application_id)

        async with self._locked(self._pair_key(current.applicant_email)):
            application = self._applications[application_id].model_copy(deep=True)
            lead_id = self._lead_ids_by_application.get(application_id)
            if lead_id is None:
                raise NotFoundError("Lead", context={"application_id": application_id})
            lead = self._leads[lead_id].model_copy(deep=True)

            new_application, new_lead = mutate(application, lead)
            new_application = new_application.model_copy(
                update={"version": application.version + 1}
            )
            new_lead = new_lead.model_copy(update={"version": lead.version + 1})

            # Both records are swapped in with no await in between
            self._applications[application_id] = new_application.model_copy(deep=True)
            self._leads[lead_id] = new_lead.model_copy(deep=True)
            return new_application, new_lead

    async def get_lead(self, lead_id: str) -> Lead | None:
        async with asyncio.timeout(self.timeout):
            lead = self._leads.get(lead_id)
            return lead.model_copy(deep=True) if lead else None

    async def get_lead_by_email(self, email: str) -> Lead | None:
        lead_id = self._lead_ids_by_email.get(email)
        if lead_id is None:
            return None
        return await self.get_lead(lead_id)

    async def list_leads(self) -> list[Lead]:
        async with asyncio.timeout(self.timeout):
            rows = [lead.model_copy(deep=True) for lead in self._leads.values()]
        rows.sort(key=lambda lead: lead.created_at)
        return rows

    async def update_lead(self, lead_id: str, mutate: LeadMutator) -> Lead:
        current = self._leads.get(lead_id)
        if current is None:
            raise NotFoundError("Lead", lead_id)

        async with self._locked(self._pair_key(current.email)):
            lead = self._leads[lead_id].model_copy(deep=True)
            new_lead = mutate(lead).model_copy(update={"version": lead.version + 1})
            self._leads[lead_id] = new_lead.model_copy(deep=True)
            return new_lead

    # ============================================
    # Tasks
    # ============================================

    async def create_task(self, task: Task) -> None:
        async with self._locked(self._task_key(task.id)):
            self._tasks[task.id] = task.model_copy(deep=True)

    async def get_task(self, task_id: str) -> Task | None:
        async with asyncio.timeout(self.timeout):
            task = self._tasks.get(task_id)
            return task.model_copy(deep=True) if task else None

    async def list_tasks(
        self, task_type: TaskType | None = None, *, include_inactive: bool = False
    ) -> list[Task]:
        async with asyncio.timeout(self.timeout):
            rows = [
                t.model_copy(deep=True)
                for t in self._tasks.values()
                if (include_inactive or t.is_active) and (task_type is None or t.type == task_type)
            ]
        rows.sort(key=lambda t: t.created_at, reverse=True)
        return rows

    async def update_task(self, task_id: str, mutate: TaskMutator) -> Task:
        if task_id not in self._tasks:
            raise NotFoundError("Task", task_id)

        async with self._locked(self._task_key(task_id)):
            task = self._tasks[task_id].model_copy(deep=True)
            new_task = mutate(task).model_copy(update={"version": task.version + 1})
            self._tasks[task_id] = new_task.model_copy(deep=True)
            return new_task

    async def update_completion(
        self,
        task_id: str,
        lead_id: str,
        mutate: CompletionMutator,
        finalize: TaskFinalizer,
    ) -> tuple[Task, CompletionRecord | None, CompletionRecord]:
        if task_id not in self._tasks:
            raise NotFoundError("Task", task_id)

        async with self._locked(self._task_key(task_id)):
            task = self._tasks[task_id].model_copy(deep=True)
            before = task.completions.get(lead_id)
            after = mutate(task, before.model_copy(deep=True) if before else None)
            task.completions.put(after)
            new_task = finalize(task).model_copy(update={"version": task.version + 1})
            self._tasks[task_id] = new_task.model_copy(deep=True)
            return new_task, before, after
