"""
Module: sqlflow_kernel.models.workflow
Responsibility: ORM persistence for workflows, their versioned records,
    record steps with assignee snapshots, and the record history.

Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - A workflow points at exactly one current record (UNIQUE
      workflows.workflow_record_id).
    - Record status and step state values are constrained by CHECK.
    - workflow_records.version is an optimistic version counter; an UPDATE
      from a stale copy raises StaleDataError at flush.
    - Records listed in workflow_record_history are superseded; the
      lifecycle manager never writes to them again.

Failure modes:
    - StaleDataError when two transactions update the same record without
      the row lock (converted to ConcurrentTransitionError by the service).
    - IntegrityError if two workflows claim the same record.
"""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import (
    CheckConstraint,
    Column,
    ForeignKey,
    Index,
    String,
    Table,
    Text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from sqlflow_kernel.db.base import Base, Identifier, TrackedBase, UtcDateTime

if TYPE_CHECKING:
    from sqlflow_kernel.domain.workflow import Workflow, WorkflowRecord, WorkflowStep
    from sqlflow_kernel.models.identity import UserModel
    from sqlflow_kernel.models.task import TaskModel
    from sqlflow_kernel.models.template import WorkflowStepTemplateModel


workflow_step_user = Table(
    "workflow_step_user",
    Base.metadata,
    Column("workflow_step_id", Identifier, ForeignKey("workflow_steps.id"), primary_key=True),
    Column("user_id", Identifier, ForeignKey("users.id"), primary_key=True),
)

workflow_record_history = Table(
    "workflow_record_history",
    Base.metadata,
    Column("workflow_id", Identifier, ForeignKey("workflows.id"), primary_key=True),
    Column(
        "workflow_record_id",
        Identifier,
        ForeignKey("workflow_records.id"),
        primary_key=True,
    ),
)


class WorkflowStepModel(TrackedBase):
    """
    One step of one record.

    Contract:
        ``assignees`` is a snapshot taken when the step was created; later
        changes to the step template or to roles do not affect it.
    """

    __tablename__ = "workflow_steps"

    __table_args__ = (
        CheckConstraint(
            "state IN ('initialized', 'approved', 'rejected')",
            name="ck_workflow_steps_valid_state",
        ),
        Index("ix_workflow_steps_workflow", "workflow_id", "id"),
        Index("ix_workflow_steps_record", "workflow_record_id", "id"),
    )

    workflow_id: Mapped[int] = mapped_column(ForeignKey("workflows.id"), nullable=False)
    workflow_record_id: Mapped[int] = mapped_column(
        ForeignKey("workflow_records.id"), nullable=False,
    )
    workflow_step_template_id: Mapped[int] = mapped_column(
        ForeignKey("workflow_step_templates.id"), nullable=False, index=True,
    )
    state: Mapped[str] = mapped_column(String(32), nullable=False, default="initialized")
    operation_user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id"), nullable=True)
    operate_at: Mapped[datetime | None] = mapped_column(UtcDateTime(), nullable=True)
    reason: Mapped[str] = mapped_column(Text, nullable=False, default="")

    template: Mapped[WorkflowStepTemplateModel] = relationship(lazy="joined")
    assignees: Mapped[list[UserModel]] = relationship(
        secondary=workflow_step_user, order_by="UserModel.id",
    )
    record: Mapped[WorkflowRecordModel] = relationship(back_populates="steps")
    workflow: Mapped[WorkflowModel] = relationship(back_populates="steps")

    @property
    def step_type(self) -> str:
        return self.template.type

    def __repr__(self) -> str:
        return f"<WorkflowStep {self.id} record={self.workflow_record_id} state={self.state}>"

    def to_dto(self) -> WorkflowStep:
        from sqlflow_kernel.domain.workflow import StepState, StepType, WorkflowStep

        return WorkflowStep(
            step_id=self.id,
            workflow_id=self.workflow_id,
            record_id=self.workflow_record_id,
            step_template_id=self.workflow_step_template_id,
            number=self.template.step_number,
            step_type=StepType(self.template.type),
            state=StepState(self.state),
            assignee_ids=tuple(u.id for u in self.assignees),
            operation_user_id=self.operation_user_id,
            operate_at=self.operate_at,
            reason=self.reason,
        )


class WorkflowRecordModel(TrackedBase):
    """
    One attempt at getting a task approved and executed.

    Contract:
        ``current_workflow_step_id`` is a plain column (steps reference the
        record, so a foreign key here would make the schema cyclic).
    """

    __tablename__ = "workflow_records"

    __table_args__ = (
        CheckConstraint(
            "status IN ('on_process', 'rejected', 'canceled', 'exec_scheduled', "
            "'executing', 'exec_failed', 'finished')",
            name="ck_workflow_records_valid_status",
        ),
        Index("ix_workflow_records_status_scheduled", "status", "scheduled_at"),
    )

    task_id: Mapped[int] = mapped_column(ForeignKey("tasks.id"), nullable=False, index=True)
    current_workflow_step_id: Mapped[int | None] = mapped_column(Identifier, nullable=True)
    status: Mapped[str] = mapped_column(String(32), nullable=False, default="on_process")
    scheduled_at: Mapped[datetime | None] = mapped_column(UtcDateTime(), nullable=True)
    schedule_user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id"), nullable=True)
    version: Mapped[int] = mapped_column(nullable=False, default=1)

    steps: Mapped[list[WorkflowStepModel]] = relationship(
        back_populates="record", order_by=WorkflowStepModel.id,
    )
    task: Mapped[TaskModel] = relationship()

    __mapper_args__ = {"version_id_col": version}

    @property
    def current_step(self) -> WorkflowStepModel | None:
        for step in self.steps:
            if step.id == self.current_workflow_step_id:
                return step
        return None

    def __repr__(self) -> str:
        return f"<WorkflowRecord {self.id} task={self.task_id} status={self.status}>"

    def to_dto(self) -> WorkflowRecord:
        from sqlflow_kernel.domain.workflow import WorkflowRecord, WorkflowStatus

        return WorkflowRecord(
            record_id=self.id,
            task_id=self.task_id,
            status=WorkflowStatus(self.status),
            current_step_id=self.current_workflow_step_id,
            created_at=self.created_at,
            steps=tuple(s.to_dto() for s in self.steps),
            scheduled_at=self.scheduled_at,
            schedule_user_id=self.schedule_user_id,
        )


class WorkflowModel(TrackedBase):
    """A SQL change request: subject, creator, current record and history."""

    __tablename__ = "workflows"

    __table_args__ = (
        Index("ix_workflows_created_at", "created_at"),
    )

    subject: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    desc: Mapped[str] = mapped_column(Text, nullable=False, default="")
    create_user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False)
    workflow_record_id: Mapped[int] = mapped_column(
        ForeignKey("workflow_records.id"), nullable=False, unique=True,
    )

    record: Mapped[WorkflowRecordModel] = relationship(
        foreign_keys=[workflow_record_id],
    )
    history: Mapped[list[WorkflowRecordModel]] = relationship(
        secondary=workflow_record_history,
        order_by=[WorkflowRecordModel.created_at, WorkflowRecordModel.id],
    )
    steps: Mapped[list[WorkflowStepModel]] = relationship(
        back_populates="workflow", order_by=WorkflowStepModel.id,
    )

    def __repr__(self) -> str:
        return f"<Workflow {self.id} {self.subject!r} record={self.workflow_record_id}>"

    def to_dto(self) -> Workflow:
        from sqlflow_kernel.domain.workflow import Workflow

        return Workflow(
            workflow_id=self.id,
            subject=self.subject,
            desc=self.desc,
            create_user_id=self.create_user_id,
            created_at=self.created_at,
            record=self.record.to_dto(),
            history=tuple(r.to_dto() for r in self.history),
        )
