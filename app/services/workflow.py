"""Workflow store: the single writer for applications, leads and tasks."""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from datetime import UTC, datetime
from typing import Any
from uuid import uuid4

from structlog import get_logger

from app.core.errors import (
    ConflictError,
    DuplicateApplicationError,
    NotFoundError,
    ValidationError,
    service_boundary,
)
from app.models.workflow import (
    Actor,
    Application,
    ApplicationStatus,
    ApplicationSubmission,
    CompletionLedger,
    CompletionRecord,
    CompletionStatus,
    Lead,
    ProgressExtra,
    ReviewStatus,
    SubmissionReview,
    Task,
    TaskAssignedEvent,
    TaskCompletedEvent,
    TaskSpec,
    TaskStatus,
    TaskType,
    TransitionContext,
)
from app.services.authorization import Capability, authorize
from app.services.status_graph import apply_to_application, apply_to_lead, transition
from app.services.task_aggregator import TaskAggregate, aggregate, lead_status, refresh
from app.storage.base import LeadMutator, WorkflowRepository

logger = get_logger()

Clock = Callable[[], datetime]
EventHandler = Callable[[Any], Awaitable[None]]

PENDING_REVIEW_STATUSES = (ApplicationStatus.APPLIED, ApplicationStatus.UNDER_REVIEW)


def utc_now() -> datetime:
    return datetime.now(UTC)


def _missing_fields_message(missing: list[str]) -> str:
    return f"Missing required fields: {', '.join(missing)}"


class WorkflowStore:
    """
    Applies the status graph and task aggregator to stored records.

    Every mutation goes through the repository under its per-record lock and
    runs against the current stored state. Cached task status is recomputed
    on every write and every read.
    """

    def __init__(
        self,
        repository: WorkflowRepository,
        *,
        clock: Clock = utc_now,
        strict_transitions: bool = False,
    ) -> None:
        self.repository = repository
        self.clock = clock
        self.strict_transitions = strict_transitions
        self._handlers: dict[type, list[EventHandler]] = {}

    # ============================================
    # Events
    # ============================================

    def subscribe(self, event_type: type, handler: EventHandler) -> None:
        """Register an async handler for TaskCompletedEvent or TaskAssignedEvent."""
        self._handlers.setdefault(event_type, []).append(handler)

    async def _emit(self, event: TaskCompletedEvent | TaskAssignedEvent) -> None:
        for handler in self._handlers.get(type(event), []):
            try:
                await handler(event)
            except Exception:
                # The write already committed; rebuild_metrics repairs missed deliveries
                logger.exception(
                    "event_handler_failed",
                    event_type=type(event).__name__,
                    task_id=event.task_id,
                    lead_id=event.lead_id,
                )

    def aggregate(self, task: Task) -> TaskAggregate:
        """Aggregate for task as of now."""
        return aggregate(task, now=self.clock())

    # ============================================
    # Applications
    # ============================================

    @service_boundary
    async def submit_application(
        self, submission: ApplicationSubmission, actor: Actor | None = None
    ) -> Application:
        """
        Create an application and its mirrored lead.

        Args:
            submission: Applicant name, email and profile
            actor: Caller, when authenticated; a lead may only apply for itself

        Returns:
            The stored application in `applied`

        Raises:
            ValidationError: Required fields blank or email malformed
            ForbiddenError: Lead submitting for another email
            DuplicateApplicationError: Email already applied
        """
        email = submission.email.strip().lower()
        name = submission.name.strip()

        missing = [field for field, value in (("name", name), ("email", email)) if not value]
        missing.extend(submission.profile.missing_fields())
        if missing:
            raise ValidationError(_missing_fields_message(missing), context={"missing": missing})
        if "@" not in email:
            raise ValidationError("Invalid email address", context={"email": email})

        if actor is not None:
            authorize(actor, Capability.SUBMIT_APPLICATION, owner_email=email)

        if await self.repository.get_application_by_email(email) is not None:
            raise DuplicateApplicationError(email)

        now = self.clock()
        application = Application(
            id=str(uuid4()),
            applicant_email=email,
            applicant_name=name,
            profile=submission.profile,
            stage_timestamps={ApplicationStatus.APPLIED: now},
            submitted_at=now,
            updated_at=now,
        )
        lead = Lead(
            id=str(uuid4()),
            name=name,
            email=email,
            application_id=application.id,
            created_at=now,
            updated_at=now,
        )
        await self.repository.create_application(application, lead)

        logger.info(
            "application_submitted",
            application_id=application.id,
            lead_id=lead.id,
        )
        return application

    @service_boundary
    async def transition_application(
        self,
        application_id: str,
        target: ApplicationStatus,
        context: TransitionContext,
        actor: Actor,
        expected_version: int | None = None,
    ) -> tuple[Application, Lead]:
        """
        Move an application (and its lead) to a new status in one write.

        Args:
            application_id: Application to move
            target: Requested status
            context: Notes, interview and decision details; actor_id defaults to actor
            actor: Advocate performing the change
            expected_version: Reject with ConflictError if the stored version differs

        Returns:
            (application, lead) as stored

        Raises:
            ForbiddenError: Actor is not an advocate
            NotFoundError: Unknown application
            InvalidTransitionError: Terminal source, disallowed edge, or missing context
            ConflictError: expected_version does not match
        """
        authorize(actor, Capability.DECIDE_APPLICATION)

        if context.actor_id is None:
            context = context.model_copy(update={"actor_id": actor.id})
        now = self.clock()

        def mutate(application: Application, lead: Lead) -> tuple[Application, Lead]:
            if expected_version is not None and application.version != expected_version:
                raise ConflictError(
                    f"Application {application_id} was modified concurrently",
                    context={
                        "expected_version": expected_version,
                        "current_version": application.version,
                    },
                )
            t = transition(
                application.status, target, context, now=now, strict=self.strict_transitions
            )
            return apply_to_application(application, t), apply_to_lead(lead, t)

        application, lead = await self.repository.update_application(application_id, mutate)

        logger.info(
            "application_transitioned",
            application_id=application_id,
            lead_id=lead.id,
            status=application.status.value,
            actor_id=actor.id,
            version=application.version,
        )
        return application, lead

    @service_boundary
    async def get_application(self, application_id: str, actor: Actor) -> Application:
        application = await self.repository.get_application(application_id)
        if application is None:
            raise NotFoundError("Application", application_id)
        authorize(actor, Capability.VIEW_APPLICATION, owner_email=application.applicant_email)
        return application

    @service_boundary
    async def get_application_by_email(self, email: str, actor: Actor) -> Application:
        email = email.strip().lower()
        authorize(actor, Capability.VIEW_APPLICATION, owner_email=email)
        application = await self.repository.get_application_by_email(email)
        if application is None:
            raise NotFoundError("Application", context={"email": email})
        return application

    @service_boundary
    async def list_applications(
        self, actor: Actor, status: ApplicationStatus | None = None
    ) -> list[Application]:
        """Applications, newest first, optionally filtered by status."""
        authorize(actor, Capability.LIST_APPLICATIONS)
        return await self.repository.list_applications(status)

    @service_boundary
    async def list_pending_reviews(self, actor: Actor) -> list[Application]:
        """Applications still waiting on an advocate, oldest first."""
        authorize(actor, Capability.LIST_APPLICATIONS)
        pending: list[Application] = []
        for status in PENDING_REVIEW_STATUSES:
            pending.extend(await self.repository.list_applications(status))
        pending.sort(key=lambda a: a.submitted_at)
        return pending

    # ============================================
    # Leads
    # ============================================

    @service_boundary
    async def get_lead(self, lead_id: str, actor: Actor) -> Lead:
        lead = await self.repository.get_lead(lead_id)
        if lead is None:
            raise NotFoundError("Lead", lead_id)
        authorize(actor, Capability.VIEW_LEAD, owner_email=lead.email)
        return lead

    @service_boundary
    async def get_lead_by_email(self, email: str, actor: Actor) -> Lead:
        email = email.strip().lower()
        authorize(actor, Capability.VIEW_LEAD, owner_email=email)
        lead = await self.repository.get_lead_by_email(email)
        if lead is None:
            raise NotFoundError("Lead", context={"email": email})
        return lead

    @service_boundary
    async def list_leads(self, actor: Actor) -> list[Lead]:
        authorize(actor, Capability.LIST_LEADS)
        return await self.repository.list_leads()

    @service_boundary
    async def update_lead_metrics(self, lead_id: str, mutate: LeadMutator) -> Lead:
        """
        Write path for derived lead metrics.

        Internal: called by the performance tracker, never by HTTP handlers.
        """
        now = self.clock()
        return await self.repository.update_lead(
            lead_id, lambda lead: mutate(lead).model_copy(update={"updated_at": now})
        )

    # ============================================
    # Tasks
    # ============================================

    @service_boundary
    async def create_task(self, spec: TaskSpec, actor: Actor) -> Task:
        """
        Create a task with an empty pending record per assignee.

        Raises:
            ForbiddenError: Actor is not an advocate
            ValidationError: Title, description or type missing
            NotFoundError: An assignee lead does not exist
        """
        authorize(actor, Capability.MANAGE_TASKS)

        missing = spec.missing_fields()
        if missing:
            raise ValidationError(_missing_fields_message(missing), context={"missing": missing})

        assignees = [] if spec.assigned_to_all else list(dict.fromkeys(spec.assigned_to))
        for lead_id in assignees:
            if await self.repository.get_lead(lead_id) is None:
                raise NotFoundError("Lead", lead_id)

        now = self.clock()
        completions = CompletionLedger()
        for lead_id in assignees:
            completions.put(CompletionRecord(lead_id=lead_id, assigned_at=now))

        task = Task(
            **spec.model_dump(exclude={"assigned_to"}),
            id=str(uuid4()),
            assigned_to=assignees,
            created_by=actor.id,
            completions=completions,
            created_at=now,
            updated_at=now,
        )
        task = refresh(task, now=now)
        await self.repository.create_task(task)

        logger.info(
            "task_created",
            task_id=task.id,
            task_type=task.type.value,
            assignees=len(assignees),
            assigned_to_all=task.assigned_to_all,
        )
        for lead_id in assignees:
            await self._emit(TaskAssignedEvent(task_id=task.id, lead_id=lead_id, assigned_at=now))
        return task

    @service_boundary
    async def assign_task(self, task_id: str, lead_id: str, actor: Actor) -> Task:
        """Add a pending record for lead_id; no-op if already assigned."""
        authorize(actor, Capability.MANAGE_TASKS)
        if await self.repository.get_lead(lead_id) is None:
            raise NotFoundError("Lead", lead_id)

        now = self.clock()
        newly_assigned = False

        def mutate(task: Task) -> Task:
            nonlocal newly_assigned
            if task.assigned_to_all or (
                task.is_assigned(lead_id) and task.completions.get(lead_id) is not None
            ):
                return task
            newly_assigned = True
            assigned_to = list(task.assigned_to)
            if lead_id not in assigned_to:
                assigned_to.append(lead_id)
            # Replaces any tombstone left by an earlier unassignment
            task.completions.put(CompletionRecord(lead_id=lead_id, assigned_at=now))
            task = task.model_copy(update={"assigned_to": assigned_to, "updated_at": now})
            return refresh(task, now=now)

        task = await self.repository.update_task(task_id, mutate)

        if newly_assigned:
            logger.info("task_assigned", task_id=task_id, lead_id=lead_id)
            await self._emit(TaskAssignedEvent(task_id=task_id, lead_id=lead_id, assigned_at=now))
        return task

    @service_boundary
    async def unassign_task(self, task_id: str, lead_id: str, actor: Actor) -> Task:
        """Remove lead_id from the task; its record is tombstoned, not deleted."""
        authorize(actor, Capability.MANAGE_TASKS)
        now = self.clock()

        def mutate(task: Task) -> Task:
            if not task.is_assigned(lead_id):
                raise NotFoundError("Assignee", lead_id, context={"task_id": task_id})
            task.completions.tombstone(lead_id, now)
            task = task.model_copy(
                update={
                    "assigned_to": [a for a in task.assigned_to if a != lead_id],
                    "updated_at": now,
                }
            )
            return refresh(task, now=now)

        task = await self.repository.update_task(task_id, mutate)
        logger.info("task_unassigned", task_id=task_id, lead_id=lead_id)
        return task

    @service_boundary
    async def deactivate_task(self, task_id: str, actor: Actor) -> Task:
        authorize(actor, Capability.MANAGE_TASKS)
        now = self.clock()

        def mutate(task: Task) -> Task:
            return refresh(task.model_copy(update={"is_active": False, "updated_at": now}), now=now)

        task = await self.repository.update_task(task_id, mutate)
        logger.info("task_deactivated", task_id=task_id)
        return task

    @service_boundary
    async def record_progress(
        self,
        task_id: str,
        lead_id: str,
        status: CompletionStatus,
        extra: ProgressExtra | None,
        actor: Actor,
    ) -> tuple[Task, CompletionRecord]:
        """
        Update one lead's completion record.

        Args:
            task_id: Task being worked on
            lead_id: Assignee whose record changes
            status: New record status
            extra: Optional notes and submission URL
            actor: The lead itself, or an advocate

        Returns:
            (task with refreshed aggregate, the lead's record)

        Raises:
            NotFoundError: Unknown task or lead, or lead is not an assignee
            ForbiddenError: A lead updating someone else's record
            ValidationError: Task is inactive
        """
        lead = await self.repository.get_lead(lead_id)
        if lead is None:
            raise NotFoundError("Lead", lead_id)
        authorize(actor, Capability.MUTATE_COMPLETION, owner_email=lead.email)

        extra = extra or ProgressExtra()
        now = self.clock()

        def mutate(task: Task, record: CompletionRecord | None) -> CompletionRecord:
            if not task.is_active:
                raise ValidationError(f"Task {task_id} is inactive", context={"task_id": task_id})
            if record is None:
                if not (task.assigned_to_all and lead.can_access_dashboard):
                    raise NotFoundError("Assignee", lead_id, context={"task_id": task_id})
                # assigned_to_all records are materialised on first progress
                record = CompletionRecord(lead_id=lead_id, assigned_at=now)

            update: dict[str, Any] = {"status": status}
            if status == CompletionStatus.IN_PROGRESS and record.started_at is None:
                update["started_at"] = now
            if status == CompletionStatus.COMPLETED and record.completed_at is None:
                update["completed_at"] = now
            if extra.notes is not None:
                update["notes"] = extra.notes
            if extra.submission_url:
                update["submission_url"] = extra.submission_url
                if task.submission_required:
                    update["review"] = SubmissionReview(status=ReviewStatus.PENDING)
            return record.model_copy(update=update)

        def finalize(task: Task) -> Task:
            return refresh(task.model_copy(update={"updated_at": now}), now=now)

        task, before, after = await self.repository.update_completion(
            task_id, lead_id, mutate, finalize
        )

        logger.info(
            "task_progress_recorded",
            task_id=task_id,
            lead_id=lead_id,
            status=after.status.value,
            task_status=task.status.value,
        )

        first_completion = after.completed_at is not None and (
            before is None or before.completed_at is None
        )
        if first_completion:
            await self._emit(
                TaskCompletedEvent(
                    task_id=task_id,
                    lead_id=lead_id,
                    task_type=task.type,
                    assigned_at=after.assigned_at,
                    started_at=after.started_at,
                    completed_at=after.completed_at,
                )
            )
        return task, after

    @service_boundary
    async def review_submission(
        self,
        task_id: str,
        lead_id: str,
        reviewer: Actor,
        decision: ReviewStatus,
        notes: str | None = None,
    ) -> tuple[Task, CompletionRecord]:
        """
        Set the review sub-state of one record; its status is left alone.

        Raises:
            ForbiddenError: Reviewer is not an advocate
            ValidationError: Decision is not approved or needs_revision
            NotFoundError: Unknown task, or the lead has no submission
        """
        authorize(reviewer, Capability.REVIEW_SUBMISSION)
        if decision == ReviewStatus.PENDING:
            raise ValidationError("Review decision must be approved or needs_revision")

        now = self.clock()

        def mutate(task: Task, record: CompletionRecord | None) -> CompletionRecord:
            if record is None or not record.submission_url:
                raise NotFoundError(
                    "Submission", context={"task_id": task_id, "lead_id": lead_id}
                )
            review = SubmissionReview(
                status=decision, reviewer_id=reviewer.id, notes=notes, reviewed_at=now
            )
            return record.model_copy(update={"review": review})

        def finalize(task: Task) -> Task:
            return refresh(task.model_copy(update={"updated_at": now}), now=now)

        task, _, after = await self.repository.update_completion(
            task_id, lead_id, mutate, finalize
        )
        logger.info(
            "submission_reviewed",
            task_id=task_id,
            lead_id=lead_id,
            decision=decision.value,
            reviewer_id=reviewer.id,
        )
        return task, after

    @service_boundary
    async def get_task(self, task_id: str, actor: Actor) -> Task:
        authorize(actor, Capability.VIEW_TASKS)
        task = await self.repository.get_task(task_id)
        if task is None:
            raise NotFoundError("Task", task_id)
        return refresh(task, now=self.clock())

    @service_boundary
    async def list_tasks(self, actor: Actor, task_type: TaskType | None = None) -> list[Task]:
        """Active tasks, newest first."""
        authorize(actor, Capability.VIEW_TASKS)
        now = self.clock()
        return [refresh(t, now=now) for t in await self.repository.list_tasks(task_type)]

    @service_boundary
    async def list_tasks_for_lead(self, lead_id: str, actor: Actor) -> list[Task]:
        """Active tasks assigned to the lead or to everyone; earliest due first."""
        lead = await self.repository.get_lead(lead_id)
        if lead is None:
            raise NotFoundError("Lead", lead_id)
        authorize(actor, Capability.VIEW_LEAD, owner_email=lead.email)

        now = self.clock()
        tasks = await self.applicable_tasks(lead_id)
        # Newest first, then a stable sort by due date puts undated tasks last
        tasks.sort(key=lambda t: t.created_at, reverse=True)
        tasks.sort(key=lambda t: (t.due_date is None, t.due_date or now))
        return tasks

    async def applicable_tasks(
        self, lead_id: str, *, include_inactive: bool = False, include_removed: bool = False
    ) -> list[Task]:
        """
        Tasks that apply to a lead: an active record, or assigned_to_all.

        include_removed also returns tasks the lead was unassigned from.
        Internal read without an actor, used by the tracker and projector.
        """
        now = self.clock()
        return [
            refresh(t, now=now)
            for t in await self.repository.list_tasks(include_inactive=include_inactive)
            if t.assigned_to_all
            or (t.is_assigned(lead_id) and t.completions.get(lead_id))
            or (include_removed and t.completions.recorded(lead_id) is not None)
        ]

    @service_boundary
    async def get_lead_task_status(self, task_id: str, lead_id: str, actor: Actor) -> TaskStatus:
        """Effective status of one lead on one task, with overdue applied."""
        lead = await self.repository.get_lead(lead_id)
        if lead is None:
            raise NotFoundError("Lead", lead_id)
        authorize(actor, Capability.VIEW_LEAD, owner_email=lead.email)

        task = await self.repository.get_task(task_id)
        if task is None:
            raise NotFoundError("Task", task_id)
        record = task.completions.get(lead_id)
        if record is None and not task.assigned_to_all:
            raise NotFoundError("Assignee", lead_id, context={"task_id": task_id})
        return lead_status(record, task.due_date, self.clock())
