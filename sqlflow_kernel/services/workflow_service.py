"""
sqlflow_kernel.services.workflow_service -- Workflow lifecycle manager.

Responsibility:
    Owns every state transition of a workflow: creation from the template
    bound to the task's instance, approval and rejection of the current
    step, re-submission after rejection, cancellation, scheduling, execution
    through the task runner, and deletion.

Architecture position:
    Kernel > Services.  May import from domain/, models/, selectors/, db/.

Invariants enforced:
    - Precondition checks (state first, then authorisation) run before any
      write.  A failed check leaves the workflow untouched.
    - Every transition locks the workflow row and its current record row
      (SELECT ... FOR UPDATE, lock order workflow -> record) and re-reads
      them, so concurrent transitions on one workflow serialise.  The
      record's version column turns an unlocked lost update into
      ConcurrentTransitionError.
    - Record status changes follow WORKFLOW_TRANSITIONS only.
    - scheduled_at is cleared whenever the record leaves on_process /
      exec_scheduled.
    - Step states move once: initialized -> approved | rejected.
    - The current step only moves forward; a finished or executed record
      keeps pointing at its last operated step.
    - Re-submission appends the rejected record to history and never writes
      to it again.

Failure modes:
    - NotFound for unknown workflows, steps, tasks and users.
    - Conflict for wrong status, non-current or already operated steps,
      lost races, duplicate subjects and tasks already in a workflow.
    - Unauthorized when the caller is not an assignee / creator / admin.
    - BadRequest for unbound templates, empty assignee sets and schedule
      times in the past or outside the maintenance window.
    - Execution failure is NOT raised: the record moves to exec_failed.
"""

from __future__ import annotations

import functools
import inspect
import threading
from datetime import datetime
from typing import Any, Callable

from sqlalchemy import select
from sqlalchemy.orm import Session, selectinload

from sqlflow_kernel.db.base import live
from sqlflow_kernel.domain.clock import Clock
from sqlflow_kernel.domain.identity import (
    IdentityDirectory,
    MaintenancePeriod,
    OperationCode,
    TaskStatus,
    in_maintenance_window,
)
from sqlflow_kernel.domain.runner import RunOutcome, TaskRunner
from sqlflow_kernel.domain.workflow import (
    CANCELABLE_STATUSES,
    OPERABLE_STATUSES,
    SCHEDULABLE_STATUSES,
    StepState,
    Workflow,
    WorkflowStatus,
    can_transition,
    is_first_record,
    plan_approval,
)
from sqlflow_kernel.exceptions import (
    AdminRequiredError,
    EmptyStepTemplatesError,
    InstanceNotFoundError,
    InvalidScheduleError,
    InvalidWorkflowTransitionError,
    MissingCurrentRecordError,
    NoEligibleAssigneesError,
    NotAssigneeError,
    NotWorkflowCreatorError,
    OutsideMaintenanceWindowError,
    ScheduleConditionError,
    StepAlreadyOperatedError,
    StepNotCurrentError,
    TaskAlreadyBoundError,
    TaskInstanceMismatchError,
    TaskNotFoundError,
    TemplateNotBoundError,
    TemplateNotFoundError,
    WorkflowNotFoundError,
    WorkflowScheduledError,
    WorkflowStepNotFoundError,
    WorkflowSubjectConflictError,
)
from sqlflow_kernel.logging_config import LogContext, get_logger
from sqlflow_kernel.models.identity import InstanceModel, UserModel
from sqlflow_kernel.models.task import TaskModel
from sqlflow_kernel.models.template import WorkflowStepTemplateModel, WorkflowTemplateModel
from sqlflow_kernel.models.workflow import (
    WorkflowModel,
    WorkflowRecordModel,
    WorkflowStepModel,
)
from sqlflow_kernel.selectors.identity_selector import IdentitySelector
from sqlflow_kernel.selectors.workflow_selector import WorkflowSelector
from sqlflow_kernel.services.base import BaseService

logger = get_logger("services.workflow")


def run_task(runner: TaskRunner, task_id: int, cancel: threading.Event) -> RunOutcome | None:
    """
    Invoke the runner and normalise its result.

    A runner exception is a failed outcome.  A run that ends without success
    after ``cancel`` was set is reported as cancelled.  ``None`` means the
    runner will report completion later.
    """
    try:
        outcome = runner.run(task_id, cancel)
    except Exception as exc:
        logger.exception("task_runner_raised", extra={"task_id": task_id})
        outcome = RunOutcome.failed(f"{type(exc).__name__}: {exc}")
    if cancel.is_set() and (outcome is None or not outcome.success):
        return RunOutcome.failed("execution cancelled")
    return outcome


def bind_log_context(method: Callable[..., Any]) -> Callable[..., Any]:
    """
    Run a lifecycle method with its workflow, actor and task bound to LogContext.

    Reads ``workflow_id``, ``user_id`` (or ``creator_id``) and ``task_id``
    from the call arguments; absent ones are left unbound.
    """
    signature = inspect.signature(method)

    @functools.wraps(method)
    def wrapper(*args: Any, **kwargs: Any) -> Any:
        arguments = signature.bind(*args, **kwargs).arguments
        with LogContext.bind(
            workflow_id=arguments.get("workflow_id"),
            actor_id=arguments.get("user_id", arguments.get("creator_id")),
            task_id=arguments.get("task_id"),
        ):
            return method(*args, **kwargs)

    return wrapper


class WorkflowService(BaseService):
    """Lifecycle manager for SQL-change workflows."""

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        runner: TaskRunner | None = None,
        directory: IdentityDirectory | None = None,
    ):
        super().__init__(session, clock)
        self._runner = runner
        self._directory = directory or IdentitySelector(session)
        self._selector = WorkflowSelector(session)

    # =====================================================================
    # Loading and locking
    # =====================================================================

    def _lock(self, workflow_id: int) -> tuple[WorkflowModel, WorkflowRecordModel]:
        """Lock and re-read the workflow and its current record."""
        workflow = self.session.execute(
            select(WorkflowModel)
            .where(WorkflowModel.id == workflow_id, live(WorkflowModel))
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if workflow is None:
            raise WorkflowNotFoundError(workflow_id)
        record = self.session.execute(
            select(WorkflowRecordModel)
            .where(
                WorkflowRecordModel.id == workflow.workflow_record_id,
                live(WorkflowRecordModel),
            )
            .options(selectinload(WorkflowRecordModel.steps))
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if record is None:
            raise MissingCurrentRecordError(workflow_id)
        return workflow, record

    def _load_task(self, task_id: int) -> TaskModel:
        task = self.session.get(TaskModel, task_id)
        if task is None or task.is_deleted:
            raise TaskNotFoundError(task_id)
        return task

    def _load_instance(self, instance_id: int) -> InstanceModel:
        instance = self.session.get(InstanceModel, instance_id)
        if instance is None or instance.is_deleted:
            raise InstanceNotFoundError(instance_id)
        return instance

    def _users(self, user_ids: tuple[int, ...]) -> list[UserModel]:
        return list(
            self.session.execute(
                select(UserModel).where(UserModel.id.in_(user_ids)).order_by(UserModel.id)
            ).scalars()
        )

    def _workflow_id_for_task(self, task_id: int) -> int | None:
        try:
            return self._selector.get_workflow_by_task_id(task_id).workflow_id
        except WorkflowNotFoundError:
            return None

    # =====================================================================
    # Guards
    # =====================================================================

    @staticmethod
    def _transition(
        workflow: WorkflowModel,
        record: WorkflowRecordModel,
        target: WorkflowStatus,
        action: str,
    ) -> None:
        current = WorkflowStatus(record.status)
        if not can_transition(current, target):
            raise InvalidWorkflowTransitionError(workflow.id, current.value, action)
        record.status = target.value
        if target not in SCHEDULABLE_STATUSES:
            record.scheduled_at = None
            record.schedule_user_id = None

    @staticmethod
    def _require_status(
        workflow: WorkflowModel,
        record: WorkflowRecordModel,
        allowed: frozenset[WorkflowStatus],
        action: str,
    ) -> WorkflowStatus:
        status = WorkflowStatus(record.status)
        if status not in allowed:
            raise InvalidWorkflowTransitionError(workflow.id, status.value, action)
        return status

    def _require_current_step(
        self, workflow: WorkflowModel, record: WorkflowRecordModel, step_id: int
    ) -> WorkflowStepModel:
        step = next((s for s in record.steps if s.id == step_id), None)
        if step is None:
            other = self.session.get(WorkflowStepModel, step_id)
            if other is None or other.workflow_id != workflow.id:
                raise WorkflowStepNotFoundError(step_id)
            raise StepNotCurrentError(workflow.id, step_id, record.current_workflow_step_id)
        if step.state != StepState.INITIALIZED.value:
            raise StepAlreadyOperatedError(step_id, step.state)
        if step.id != record.current_workflow_step_id:
            raise StepNotCurrentError(workflow.id, step_id, record.current_workflow_step_id)
        return step

    @staticmethod
    def _require_assignee(step: WorkflowStepModel, user_id: int) -> None:
        if user_id not in {u.id for u in step.assignees}:
            raise NotAssigneeError(user_id, step.id)

    @staticmethod
    def _require_creator(workflow: WorkflowModel, user_id: int, action: str) -> None:
        if workflow.create_user_id != user_id:
            raise NotWorkflowCreatorError(user_id, workflow.id, action)

    def _require_maintenance_window(self, task: TaskModel, at: datetime) -> None:
        instance = self._load_instance(task.instance_id)
        periods = [MaintenancePeriod.from_dict(p) for p in (instance.maintenance_periods or [])]
        if not in_maintenance_window(periods, at):
            raise OutsideMaintenanceWindowError(instance.id, at)

    # =====================================================================
    # Create
    # =====================================================================

    @bind_log_context
    def create_workflow(
        self,
        subject: str,
        desc: str,
        creator_id: int,
        task_id: int,
        template_id: int | None = None,
    ) -> Workflow:
        """
        Create a workflow for ``task_id`` from the template bound to its instance.

        Dynamic steps (``approved_by_authorized``) get every user holding
        WORKFLOW_AUDIT on the instance; static steps get their template
        users.  Both are snapshotted on the steps.
        """
        self._directory.get_user(creator_id)
        task = self._load_task(task_id)
        instance = self._load_instance(task.instance_id)
        if instance.workflow_template_id is None:
            raise TemplateNotBoundError(instance.id)
        if template_id is not None and template_id != instance.workflow_template_id:
            raise TemplateNotBoundError(instance.id, template_id)
        template = self.session.get(WorkflowTemplateModel, instance.workflow_template_id)
        if template is None or template.is_deleted:
            raise TemplateNotFoundError(instance.workflow_template_id)
        step_templates: list[WorkflowStepTemplateModel] = list(template.steps)
        if not step_templates:
            raise EmptyStepTemplatesError(template.name)
        if self._selector.subject_exists(subject):
            raise WorkflowSubjectConflictError(subject)
        bound_to = self._workflow_id_for_task(task_id)
        if bound_to is not None:
            raise TaskAlreadyBoundError(task_id, bound_to)

        assignees: list[list[UserModel]] = []
        for st in step_templates:
            if st.approved_by_authorized:
                ids = self._directory.users_with_operation_code(
                    instance.id, OperationCode.WORKFLOW_AUDIT
                )
                users = self._users(ids) if ids else []
            else:
                users = [u for u in st.users if u.deleted_at is None and not u.is_disabled]
            if not users:
                raise NoEligibleAssigneesError(st.step_number, instance.id)
            assignees.append(users)

        now = self.clock.now()
        record = WorkflowRecordModel(
            task=task,
            status=WorkflowStatus.ON_PROCESS.value,
            created_at=now,
            updated_at=now,
        )
        workflow = WorkflowModel(
            subject=subject,
            desc=desc,
            create_user_id=creator_id,
            record=record,
            created_at=now,
            updated_at=now,
        )
        steps = [
            WorkflowStepModel(
                workflow=workflow,
                record=record,
                template=st,
                assignees=users,
                state=StepState.INITIALIZED.value,
                created_at=now,
                updated_at=now,
            )
            for st, users in zip(step_templates, assignees)
        ]
        self.session.add(workflow)
        self._flush("create_workflow")
        record.current_workflow_step_id = steps[0].id
        self._flush("create_workflow", workflow_id=workflow.id, record_id=record.id)

        logger.info(
            "workflow_created",
            extra={
                "workflow_id": workflow.id,
                "record_id": record.id,
                "task_id": task_id,
                "template_id": template.id,
                "creator_id": creator_id,
                "step_count": len(steps),
            },
        )
        return workflow.to_dto()

    # =====================================================================
    # Approve / Reject
    # =====================================================================

    @bind_log_context
    def approve_step(
        self,
        workflow_id: int,
        step_id: int,
        user_id: int,
        cancel: threading.Event | None = None,
    ) -> Workflow:
        """
        Approve the current step.

        Approving a review step advances to the next step (the record waits
        on execution once only the final ``sql_execute`` step is left) or
        finishes the record.  Approving the ``sql_execute`` step runs the task
        now, unless the workflow is scheduled.
        """
        workflow, record = self._lock(workflow_id)
        self._require_status(workflow, record, OPERABLE_STATUSES, "approve")
        step = self._require_current_step(workflow, record, step_id)
        self._require_assignee(step, user_id)

        plan = plan_approval(record.to_dto(), step_id)
        if plan.executes:
            return self._execute_now(workflow, record, user_id, cancel)

        now = self.clock.now()
        step.state = StepState.APPROVED.value
        step.operation_user_id = user_id
        step.operate_at = now
        if plan.status != WorkflowStatus(record.status):
            self._transition(workflow, record, plan.status, "approve")
        if plan.next_step_id is not None:
            record.current_workflow_step_id = plan.next_step_id
        record.updated_at = now
        self._flush("approve_step", workflow_id=workflow.id, record_id=record.id)

        logger.info(
            "workflow_step_approved",
            extra={
                "workflow_id": workflow.id,
                "record_id": record.id,
                "step_id": step_id,
                "actor_id": user_id,
                "status": record.status,
                "next_step_id": plan.next_step_id,
            },
        )
        return workflow.to_dto()

    @bind_log_context
    def reject_step(self, workflow_id: int, step_id: int, user_id: int, reason: str) -> Workflow:
        """Reject the current step; the record becomes rejected and later steps stay initialized."""
        workflow, record = self._lock(workflow_id)
        self._require_status(workflow, record, OPERABLE_STATUSES, "reject")
        step = self._require_current_step(workflow, record, step_id)
        self._require_assignee(step, user_id)

        now = self.clock.now()
        step.state = StepState.REJECTED.value
        step.operation_user_id = user_id
        step.operate_at = now
        step.reason = reason
        self._transition(workflow, record, WorkflowStatus.REJECTED, "reject")
        record.updated_at = now
        self._flush("reject_step", workflow_id=workflow.id, record_id=record.id)

        logger.info(
            "workflow_step_rejected",
            extra={
                "workflow_id": workflow.id,
                "record_id": record.id,
                "step_id": step_id,
                "actor_id": user_id,
                "reason": reason,
            },
        )
        return workflow.to_dto()

    # =====================================================================
    # Re-submit / Cancel
    # =====================================================================

    @bind_log_context
    def resubmit(self, workflow_id: int, user_id: int, task_id: int) -> Workflow:
        """
        Start a new record for a rejected workflow.

        The new steps reuse the old steps' templates and assignee snapshots;
        the rejected record moves to history.
        """
        workflow, record = self._lock(workflow_id)
        self._require_status(
            workflow, record, frozenset({WorkflowStatus.REJECTED}), "resubmit"
        )
        self._require_creator(workflow, user_id, "resubmit")
        task = self._load_task(task_id)
        old_task = self._load_task(record.task_id)
        if task.instance_id != old_task.instance_id:
            raise TaskInstanceMismatchError(task_id, old_task.instance_id, task.instance_id)
        bound_to = self._workflow_id_for_task(task_id)
        if bound_to is not None and bound_to != workflow.id:
            raise TaskAlreadyBoundError(task_id, bound_to)

        now = self.clock.now()
        new_record = WorkflowRecordModel(
            task=task,
            status=WorkflowStatus.ON_PROCESS.value,
            created_at=now,
            updated_at=now,
        )
        new_steps = [
            WorkflowStepModel(
                workflow=workflow,
                record=new_record,
                template=old.template,
                assignees=list(old.assignees),
                state=StepState.INITIALIZED.value,
                created_at=now,
                updated_at=now,
            )
            for old in record.steps
        ]
        record.updated_at = now
        workflow.history.append(record)
        workflow.record = new_record
        workflow.updated_at = now
        self._flush("resubmit", workflow_id=workflow.id, record_id=record.id)
        new_record.current_workflow_step_id = new_steps[0].id
        self._flush("resubmit", workflow_id=workflow.id, record_id=new_record.id)

        logger.info(
            "workflow_resubmitted",
            extra={
                "workflow_id": workflow.id,
                "previous_record_id": record.id,
                "record_id": new_record.id,
                "task_id": task_id,
                "actor_id": user_id,
            },
        )
        return workflow.to_dto()

    @bind_log_context
    def cancel(self, workflow_id: int, user_id: int) -> Workflow:
        """Cancel the workflow. Cancelling a canceled workflow is a no-op."""
        workflow, record = self._lock(workflow_id)
        status = self._require_status(
            workflow,
            record,
            CANCELABLE_STATUSES | {WorkflowStatus.CANCELED},
            "cancel",
        )
        if workflow.create_user_id != user_id and not self._directory.get_user(user_id).is_admin:
            raise NotWorkflowCreatorError(user_id, workflow.id, "cancel")
        if status == WorkflowStatus.CANCELED:
            return workflow.to_dto()

        self._transition(workflow, record, WorkflowStatus.CANCELED, "cancel")
        record.updated_at = self.clock.now()
        self._flush("cancel", workflow_id=workflow.id, record_id=record.id)

        logger.info(
            "workflow_canceled",
            extra={
                "workflow_id": workflow.id,
                "record_id": record.id,
                "previous_status": status.value,
                "actor_id": user_id,
            },
        )
        return workflow.to_dto()

    # =====================================================================
    # Schedule
    # =====================================================================

    @bind_log_context
    def schedule(self, workflow_id: int, user_id: int, scheduled_at: datetime) -> Workflow:
        """Have the scheduler execute the workflow at ``scheduled_at``."""
        workflow, record = self._lock(workflow_id)
        self._require_status(workflow, record, SCHEDULABLE_STATUSES, "schedule")
        if not record.to_dto().awaits_execution_only:
            raise ScheduleConditionError(workflow.id, "review steps are still pending")
        self._require_creator(workflow, user_id, "schedule")
        if scheduled_at.tzinfo is None:
            raise InvalidScheduleError(scheduled_at, "time has no timezone")
        now = self.clock.now()
        if scheduled_at <= now:
            raise InvalidScheduleError(scheduled_at, "time is not in the future")
        self._require_maintenance_window(record.task, scheduled_at)

        record.scheduled_at = scheduled_at
        record.schedule_user_id = user_id
        record.updated_at = now
        self._flush("schedule", workflow_id=workflow.id, record_id=record.id)

        logger.info(
            "workflow_scheduled",
            extra={
                "workflow_id": workflow.id,
                "record_id": record.id,
                "scheduled_at": scheduled_at,
                "actor_id": user_id,
            },
        )
        return workflow.to_dto()

    @bind_log_context
    def unschedule(self, workflow_id: int, user_id: int) -> Workflow:
        workflow, record = self._lock(workflow_id)
        self._require_status(workflow, record, SCHEDULABLE_STATUSES, "unschedule")
        self._require_creator(workflow, user_id, "unschedule")

        record.scheduled_at = None
        record.schedule_user_id = None
        record.updated_at = self.clock.now()
        self._flush("unschedule", workflow_id=workflow.id, record_id=record.id)

        logger.info(
            "workflow_unscheduled",
            extra={"workflow_id": workflow.id, "record_id": record.id, "actor_id": user_id},
        )
        return workflow.to_dto()

    # =====================================================================
    # Execute
    # =====================================================================

    @bind_log_context
    def execute(
        self,
        workflow_id: int,
        user_id: int,
        cancel: threading.Event | None = None,
    ) -> Workflow:
        """
        Run a workflow that waits only on its ``sql_execute`` step.

        Same as approving that step.  The runner is called inside the
        caller's transaction, holding the record lock.
        """
        workflow, record = self._lock(workflow_id)
        self._require_executable(workflow, record, user_id)
        return self._execute_now(workflow, record, user_id, cancel)

    @bind_log_context
    def begin_execution(self, workflow_id: int, user_id: int) -> Workflow:
        """
        Move the workflow to executing without calling the runner.

        For callers that drive the task themselves; they report the outcome
        through ``record_execution_result``.
        """
        workflow, record = self._lock(workflow_id)
        self._require_executable(workflow, record, user_id)
        now = self.clock.now()
        self._require_startable(workflow, record, now)
        self._begin_execution(workflow, record, user_id, now)
        self._flush("begin_execution", workflow_id=workflow.id, record_id=record.id)
        return workflow.to_dto()

    def _require_executable(
        self, workflow: WorkflowModel, record: WorkflowRecordModel, user_id: int
    ) -> None:
        self._require_status(workflow, record, SCHEDULABLE_STATUSES, "execute")
        if not record.to_dto().awaits_execution_only:
            raise ScheduleConditionError(workflow.id, "review steps are still pending")
        self._require_assignee(record.current_step, user_id)

    def _require_startable(
        self, workflow: WorkflowModel, record: WorkflowRecordModel, now: datetime
    ) -> None:
        if record.scheduled_at is not None:
            raise WorkflowScheduledError(workflow.id, record.scheduled_at)
        self._require_maintenance_window(record.task, now)

    def _execute_now(
        self,
        workflow: WorkflowModel,
        record: WorkflowRecordModel,
        user_id: int,
        cancel: threading.Event | None,
    ) -> Workflow:
        if self._runner is None:
            raise RuntimeError("WorkflowService has no task runner configured")
        now = self.clock.now()
        self._require_startable(workflow, record, now)

        self._begin_execution(workflow, record, user_id, now)
        self._flush("execute", workflow_id=workflow.id, record_id=record.id)

        with LogContext.bind(record_id=record.id, task_id=record.task_id):
            outcome = run_task(self._runner, record.task_id, cancel or threading.Event())
        if outcome is None:
            logger.info(
                "workflow_execution_pending",
                extra={"workflow_id": workflow.id, "task_id": record.task_id},
            )
            return workflow.to_dto()
        self._finish_execution(workflow, record, outcome)
        self._flush("execute", workflow_id=workflow.id, record_id=record.id)
        return workflow.to_dto()

    def _begin_execution(
        self,
        workflow: WorkflowModel,
        record: WorkflowRecordModel,
        user_id: int | None,
        now: datetime,
    ) -> None:
        if WorkflowStatus(record.status) == WorkflowStatus.ON_PROCESS:
            self._transition(workflow, record, WorkflowStatus.EXEC_SCHEDULED, "execute")
        self._transition(workflow, record, WorkflowStatus.EXECUTING, "execute")
        step = record.current_step
        step.state = StepState.APPROVED.value
        step.operation_user_id = user_id
        step.operate_at = now
        record.updated_at = now
        record.task.status = TaskStatus.EXECUTING.value
        record.task.exec_start_at = now

        logger.info(
            "workflow_execution_started",
            extra={
                "workflow_id": workflow.id,
                "record_id": record.id,
                "task_id": record.task_id,
                "actor_id": user_id,
            },
        )

    def _finish_execution(
        self,
        workflow: WorkflowModel,
        record: WorkflowRecordModel,
        outcome: RunOutcome,
    ) -> None:
        now = self.clock.now()
        target = WorkflowStatus.FINISHED if outcome.success else WorkflowStatus.EXEC_FAILED
        self._transition(workflow, record, target, "complete execution")
        record.updated_at = now
        record.task.status = (
            TaskStatus.EXEC_SUCCESS.value if outcome.success else TaskStatus.EXEC_FAILED.value
        )
        record.task.exec_end_at = now

        log = logger.info if outcome.success else logger.warning
        log(
            "workflow_execution_finished",
            extra={
                "workflow_id": workflow.id,
                "record_id": record.id,
                "task_id": record.task_id,
                "status": target.value,
                "outcome_message": outcome.message,
            },
        )

    @bind_log_context
    def start_scheduled_execution(self, workflow_id: int) -> Workflow | None:
        """
        Move a due workflow to executing on behalf of its schedule user.

        Returns None when the workflow is no longer due (unscheduled,
        rescheduled, canceled or already picked up).
        """
        workflow, record = self._lock(workflow_id)
        now = self.clock.now()
        dto = record.to_dto()
        due = (
            dto.status in SCHEDULABLE_STATUSES
            and dto.scheduled_at is not None
            and dto.scheduled_at <= now
            and dto.awaits_execution_only
        )
        if not due:
            logger.info(
                "scheduled_execution_skipped",
                extra={"workflow_id": workflow_id, "status": dto.status.value},
            )
            return None
        self._begin_execution(workflow, record, record.schedule_user_id, now)
        self._flush("start_scheduled_execution", workflow_id=workflow.id, record_id=record.id)
        return workflow.to_dto()

    @bind_log_context
    def record_execution_result(self, workflow_id: int, outcome: RunOutcome) -> Workflow:
        """Completion callback for a running workflow."""
        workflow, record = self._lock(workflow_id)
        self._require_status(
            workflow, record, frozenset({WorkflowStatus.EXECUTING}), "complete execution"
        )
        self._finish_execution(workflow, record, outcome)
        self._flush("record_execution_result", workflow_id=workflow.id, record_id=record.id)
        return workflow.to_dto()

    # =====================================================================
    # Delete / queries
    # =====================================================================

    @bind_log_context
    def delete_workflow(self, workflow_id: int, user_id: int | None = None) -> None:
        """
        Remove the workflow with all its records, steps and history links.

        ``user_id`` is required to be the administrator when given; system
        callers such as the expiry scan pass None.
        """
        workflow = self.session.execute(
            select(WorkflowModel)
            .where(WorkflowModel.id == workflow_id, live(WorkflowModel))
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if workflow is None:
            raise WorkflowNotFoundError(workflow_id)
        if user_id is not None and not self._directory.get_user(user_id).is_admin:
            raise AdminRequiredError(user_id, "delete workflows")

        now = self.clock.now()
        records = list(workflow.history)
        if workflow.record is not None:
            records.append(workflow.record)
        for record in records:
            record.deleted_at = now
        for step in workflow.steps:
            step.deleted_at = now
        workflow.history.clear()
        workflow.deleted_at = now
        self._flush("delete_workflow", workflow_id=workflow_id)

        logger.info(
            "workflow_deleted",
            extra={
                "workflow_id": workflow_id,
                "record_count": len(records),
                "actor_id": user_id,
            },
        )

    def get_workflow(self, workflow_id: int) -> Workflow:
        return self._selector.get_workflow(workflow_id)

    def is_first_record(self, workflow_id: int, record_id: int) -> bool:
        """True when ``record_id`` is the workflow's earliest record."""
        workflow = self._selector.get_workflow(workflow_id)
        return is_first_record(workflow.records, record_id)
