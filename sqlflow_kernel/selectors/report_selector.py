"""
Module: sqlflow_kernel.selectors.report_selector
Responsibility: Aggregate counts over live workflows for dashboards.
Architecture position: Kernel > Selectors.

Invariants enforced:
    - Reads only; no row locks; never raises NotFound.
    - Empty filter sets yield 0 without touching the database.
    - Only the current record of each workflow is counted.
"""

from collections.abc import Iterable
from datetime import datetime
from enum import Enum

from sqlalchemy import func, or_, select

from sqlflow_kernel.db.base import live
from sqlflow_kernel.domain.workflow import StepState, StepType, WorkflowStatus
from sqlflow_kernel.models.task import TaskModel
from sqlflow_kernel.models.template import WorkflowStepTemplateModel
from sqlflow_kernel.models.workflow import (
    WorkflowModel,
    WorkflowRecordModel,
    WorkflowStepModel,
)
from sqlflow_kernel.selectors.base import BaseSelector


def _values(items: Iterable[str | Enum]) -> list[str]:
    return [i.value if isinstance(i, Enum) else str(i) for i in items]


class WorkflowReportSelector(BaseSelector):
    """Reporting surface for workflow statistics."""

    def _count(self, stmt) -> int:
        return int(self.session.execute(stmt).scalar_one())

    def _with_current_record(self):
        return (
            select(func.count(WorkflowModel.id))
            .join(WorkflowRecordModel, WorkflowRecordModel.id == WorkflowModel.workflow_record_id)
            .where(live(WorkflowModel))
        )

    def count_all(self) -> int:
        return self._count(select(func.count(WorkflowModel.id)).where(live(WorkflowModel)))

    def count_by_status(self, statuses: Iterable[WorkflowStatus | str]) -> int:
        values = _values(statuses)
        if not values:
            return 0
        return self._count(
            self._with_current_record().where(WorkflowRecordModel.status.in_(values))
        )

    def count_by_step_type(self, step_types: Iterable[StepType | str]) -> int:
        """Workflows whose current step is of one of the given types."""
        values = _values(step_types)
        if not values:
            return 0
        return self._count(
            self._with_current_record()
            .join(WorkflowStepModel, WorkflowStepModel.id == WorkflowRecordModel.current_workflow_step_id)
            .join(
                WorkflowStepTemplateModel,
                WorkflowStepTemplateModel.id == WorkflowStepModel.workflow_step_template_id,
            )
            .where(WorkflowStepTemplateModel.type.in_(values))
        )

    def count_by_task_status(self, task_statuses: Iterable[str | Enum]) -> int:
        values = _values(task_statuses)
        if not values:
            return 0
        return self._count(
            self._with_current_record()
            .join(TaskModel, TaskModel.id == WorkflowRecordModel.task_id)
            .where(TaskModel.status.in_(values))
        )

    def count_approved(self) -> int:
        """Workflows that finished or whose review steps are all approved."""
        return self._count(
            self._with_current_record()
            .outerjoin(
                WorkflowStepModel,
                WorkflowStepModel.id == WorkflowRecordModel.current_workflow_step_id,
            )
            .outerjoin(
                WorkflowStepTemplateModel,
                WorkflowStepTemplateModel.id == WorkflowStepModel.workflow_step_template_id,
            )
            .where(
                or_(
                    WorkflowRecordModel.status == WorkflowStatus.FINISHED.value,
                    WorkflowStepTemplateModel.type == StepType.SQL_EXECUTE.value,
                )
            )
        )

    def audited_step_ids(self) -> list[int]:
        """
        For each workflow, its last review step when that step is approved.

        The last review step is the highest-id step of the current record
        that is not an ``sql_execute`` step, which is the penultimate step
        for templates that end in execution.
        """
        last_review = (
            select(func.max(WorkflowStepModel.id))
            .join(
                WorkflowStepTemplateModel,
                WorkflowStepTemplateModel.id == WorkflowStepModel.workflow_step_template_id,
            )
            .join(
                WorkflowModel,
                WorkflowModel.workflow_record_id == WorkflowStepModel.workflow_record_id,
            )
            .where(
                WorkflowStepTemplateModel.type != StepType.SQL_EXECUTE.value,
                live(WorkflowModel),
            )
            .group_by(WorkflowStepModel.workflow_record_id)
        )
        rows = self.session.execute(
            select(WorkflowStepModel.id)
            .where(
                WorkflowStepModel.id.in_(last_review),
                WorkflowStepModel.state == StepState.APPROVED.value,
            )
            .order_by(WorkflowStepModel.id)
        ).scalars().all()
        return list(rows)

    def audit_duration_minutes(self, step_ids: Iterable[int]) -> int:
        """Sum over the steps of whole minutes from workflow creation to the step's operation."""
        ids = list(step_ids)
        if not ids:
            return 0
        rows = self.session.execute(
            select(WorkflowModel.created_at, WorkflowStepModel.operate_at)
            .join(WorkflowStepModel, WorkflowStepModel.workflow_id == WorkflowModel.id)
            .where(
                WorkflowStepModel.id.in_(ids),
                WorkflowStepModel.operate_at.is_not(None),
                live(WorkflowModel),
            )
        ).all()
        return sum(int((operate_at - created_at).total_seconds() // 60) for created_at, operate_at in rows)

    def count_between(self, start: datetime, end: datetime) -> int:
        """Workflows created within [start, end]."""
        return self._count(
            select(func.count(WorkflowModel.id)).where(
                WorkflowModel.created_at >= start,
                WorkflowModel.created_at <= end,
                live(WorkflowModel),
            )
        )
