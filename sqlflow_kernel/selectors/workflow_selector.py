"""
Module: sqlflow_kernel.selectors.workflow_selector
Responsibility: Read views over workflows: detail, record history, lookups by
    task, subject and instance, and the candidate lists the scheduler scans.
Architecture position: Kernel > Selectors.

Invariants enforced:
    - Soft-deleted workflows are reported as not found.
    - History views list superseded records oldest first and omit steps that
      were never operated on.

Failure modes:
    - WorkflowNotFoundError for unknown or deleted workflows.
    - MissingCurrentRecordError when a live workflow has lost its record.
"""

from dataclasses import replace
from datetime import datetime

from sqlalchemy import or_, select

from sqlflow_kernel.db.base import live
from sqlflow_kernel.domain.identity import Instance
from sqlflow_kernel.domain.workflow import (
    EXPIRABLE_STATUSES,
    SCHEDULABLE_STATUSES,
    Workflow,
    WorkflowRecord,
    WorkflowStatus,
)
from sqlflow_kernel.exceptions import MissingCurrentRecordError, WorkflowNotFoundError
from sqlflow_kernel.models.identity import InstanceModel
from sqlflow_kernel.models.task import TaskModel
from sqlflow_kernel.models.workflow import (
    WorkflowModel,
    WorkflowRecordModel,
    workflow_record_history,
)
from sqlflow_kernel.selectors.base import BaseSelector

RUNNING_STATUSES = (
    WorkflowStatus.ON_PROCESS.value,
    WorkflowStatus.EXEC_SCHEDULED.value,
    WorkflowStatus.EXECUTING.value,
)


class WorkflowSelector(BaseSelector):
    """Workflow detail and lookup queries."""

    def _load(self, workflow_id: int) -> WorkflowModel:
        model = self.session.get(WorkflowModel, workflow_id)
        if model is None or model.is_deleted:
            raise WorkflowNotFoundError(workflow_id)
        if model.record is None or model.record.is_deleted:
            raise MissingCurrentRecordError(workflow_id)
        return model

    def get_workflow(self, workflow_id: int) -> Workflow:
        return self._load(workflow_id).to_dto()

    def get_history(self, workflow_id: int) -> tuple[WorkflowRecord, ...]:
        """Superseded records, oldest first, with only their operated steps."""
        workflow = self._load(workflow_id).to_dto()
        return tuple(replace(r, steps=r.visible_steps) for r in workflow.history)

    def get_workflow_by_task_id(self, task_id: int) -> Workflow:
        """The workflow whose current or historical record wraps ``task_id``."""
        current = select(WorkflowModel.id).join(
            WorkflowRecordModel, WorkflowRecordModel.id == WorkflowModel.workflow_record_id
        ).where(WorkflowRecordModel.task_id == task_id)
        historical = (
            select(workflow_record_history.c.workflow_id)
            .join(
                WorkflowRecordModel,
                WorkflowRecordModel.id == workflow_record_history.c.workflow_record_id,
            )
            .where(WorkflowRecordModel.task_id == task_id)
        )
        workflow_id = self.session.execute(
            select(WorkflowModel.id)
            .where(
                or_(WorkflowModel.id.in_(current), WorkflowModel.id.in_(historical)),
                live(WorkflowModel),
            )
            .order_by(WorkflowModel.id.desc())
            .limit(1)
        ).scalar_one_or_none()
        if workflow_id is None:
            raise WorkflowNotFoundError(f"task:{task_id}")
        return self.get_workflow(workflow_id)

    def get_workflow_by_subject(self, subject: str) -> Workflow:
        workflow_id = self.session.execute(
            select(WorkflowModel.id)
            .where(WorkflowModel.subject == subject, live(WorkflowModel))
            .order_by(WorkflowModel.id.desc())
            .limit(1)
        ).scalar_one_or_none()
        if workflow_id is None:
            raise WorkflowNotFoundError(f"subject:{subject}")
        return self.get_workflow(workflow_id)

    def subject_exists(self, subject: str) -> bool:
        return self.session.execute(
            select(WorkflowModel.id)
            .where(WorkflowModel.subject == subject, live(WorkflowModel))
            .limit(1)
        ).first() is not None

    def task_workflow_is_running(self, task_ids: list[int]) -> bool:
        """True if any of the tasks belongs to a workflow that is still in flight."""
        if not task_ids:
            return False
        row = self.session.execute(
            select(WorkflowModel.id)
            .join(WorkflowRecordModel, WorkflowRecordModel.id == WorkflowModel.workflow_record_id)
            .where(
                WorkflowRecordModel.task_id.in_(task_ids),
                WorkflowRecordModel.status.in_(RUNNING_STATUSES),
                live(WorkflowModel),
            )
            .limit(1)
        ).first()
        return row is not None

    def get_instance_by_workflow_id(self, workflow_id: int) -> Instance:
        instance = self.session.execute(
            select(InstanceModel)
            .join(TaskModel, TaskModel.instance_id == InstanceModel.id)
            .join(WorkflowRecordModel, WorkflowRecordModel.task_id == TaskModel.id)
            .join(WorkflowModel, WorkflowModel.workflow_record_id == WorkflowRecordModel.id)
            .where(WorkflowModel.id == workflow_id, live(WorkflowModel))
        ).scalar_one_or_none()
        if instance is None:
            raise WorkflowNotFoundError(workflow_id)
        return instance.to_dto()

    def list_due_workflow_ids(self, now: datetime) -> list[int]:
        """Workflows whose schedule time has passed and that may still execute."""
        rows = self.session.execute(
            select(WorkflowModel.id)
            .join(WorkflowRecordModel, WorkflowRecordModel.id == WorkflowModel.workflow_record_id)
            .where(
                WorkflowRecordModel.scheduled_at.is_not(None),
                WorkflowRecordModel.scheduled_at <= now,
                WorkflowRecordModel.status.in_([s.value for s in SCHEDULABLE_STATUSES]),
                live(WorkflowModel),
            )
            .order_by(WorkflowRecordModel.scheduled_at, WorkflowModel.id)
        ).scalars().all()
        return list(rows)

    def list_expired_workflow_ids(self, cutoff: datetime) -> list[int]:
        """Workflows created before ``cutoff`` that are finished, canceled or recordless."""
        rows = self.session.execute(
            select(WorkflowModel.id)
            .outerjoin(
                WorkflowRecordModel,
                WorkflowRecordModel.id == WorkflowModel.workflow_record_id,
            )
            .where(
                WorkflowModel.created_at < cutoff,
                or_(
                    WorkflowRecordModel.status.in_([s.value for s in EXPIRABLE_STATUSES]),
                    WorkflowRecordModel.status.is_(None),
                ),
                live(WorkflowModel),
            )
            .order_by(WorkflowModel.id)
        ).scalars().all()
        return list(rows)
