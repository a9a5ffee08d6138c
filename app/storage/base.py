"""Repository interface shared by the storage backends."""

from __future__ import annotations

from collections.abc import Callable
from typing import Protocol

from app.models.workflow import (
    Application,
    ApplicationStatus,
    CompletionRecord,
    Lead,
    Task,
    TaskType,
)

# Mutators receive the current stored state and return the replacement.
ApplicationMutator = Callable[[Application, Lead], tuple[Application, Lead]]
LeadMutator = Callable[[Lead], Lead]
TaskMutator = Callable[[Task], Task]
CompletionMutator = Callable[[Task, CompletionRecord | None], CompletionRecord]
TaskFinalizer = Callable[[Task], Task]


class WorkflowRepository(Protocol):
    """
    Persistence for applications, leads and tasks.

    Implementations must:
    - serialise writers per application/lead pair and per task
    - run mutators against the current stored state inside that lock
    - bump `version` on every record they rewrite
    - return snapshots the caller cannot use to mutate stored state
    - bound every call by the configured store timeout (TimeoutError)
    """

    name: str

    async def open(self) -> None: ...

    async def close(self) -> None: ...

    async def ping(self) -> bool: ...

    # Applications and leads

    async def create_application(self, application: Application, lead: Lead) -> None: ...

    async def get_application(self, application_id: str) -> Application | None: ...

    async def get_application_by_email(self, email: str) -> Application | None: ...

    async def list_applications(
        self, status: ApplicationStatus | None = None
    ) -> list[Application]: ...

    async def update_application(
        self, application_id: str, mutate: ApplicationMutator
    ) -> tuple[Application, Lead]: ...

    async def get_lead(self, lead_id: str) -> Lead | None: ...

    async def get_lead_by_email(self, email: str) -> Lead | None: ...

    async def list_leads(self) -> list[Lead]: ...

    async def update_lead(self, lead_id: str, mutate: LeadMutator) -> Lead: ...

    # Tasks

    async def create_task(self, task: Task) -> None: ...

    async def get_task(self, task_id: str) -> Task | None: ...

    async def list_tasks(
        self, task_type: TaskType | None = None, *, include_inactive: bool = False
    ) -> list[Task]: ...

    async def update_task(self, task_id: str, mutate: TaskMutator) -> Task: ...

    async def update_completion(
        self,
        task_id: str,
        lead_id: str,
        mutate: CompletionMutator,
        finalize: TaskFinalizer,
    ) -> tuple[Task, CompletionRecord | None, CompletionRecord]:
        """
        Replace one lead's completion record.

        Returns:
            (task after the write, record before, record after)
        """
        ...
