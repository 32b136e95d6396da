"""
Module: sqlflow_kernel.models.template
Responsibility: ORM persistence for workflow templates and their ordered
    step templates.

Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - Template names are unique.
    - Step templates attached to a template are numbered 1..N.
    - Replacing a template's steps detaches the old step templates
      (workflow_template_id set to NULL) instead of deleting them, so steps
      of existing workflows keep resolving their type and description.

Failure modes:
    - IntegrityError on duplicate template name.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    ForeignKey,
    Index,
    String,
    Table,
    Text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from sqlflow_kernel.db.base import Base, Identifier, TrackedBase

if TYPE_CHECKING:
    from sqlflow_kernel.domain.workflow import WorkflowStepTemplate, WorkflowTemplate
    from sqlflow_kernel.models.identity import InstanceModel, UserModel


workflow_step_template_user = Table(
    "workflow_step_template_user",
    Base.metadata,
    Column(
        "workflow_step_template_id",
        Identifier,
        ForeignKey("workflow_step_templates.id"),
        primary_key=True,
    ),
    Column("user_id", Identifier, ForeignKey("users.id"), primary_key=True),
)


class WorkflowStepTemplateModel(TrackedBase):
    """One step of a template, with its static assignee set."""

    __tablename__ = "workflow_step_templates"

    __table_args__ = (
        CheckConstraint(
            "type IN ('sql_review', 'sql_execute', 'create_workflow', 'update_workflow')",
            name="ck_workflow_step_templates_valid_type",
        ),
        Index("ix_workflow_step_templates_template_number", "workflow_template_id", "step_number"),
    )

    step_number: Mapped[int] = mapped_column(nullable=False)
    workflow_template_id: Mapped[int | None] = mapped_column(
        ForeignKey("workflow_templates.id"), nullable=True,
    )
    type: Mapped[str] = mapped_column(String(32), nullable=False)
    desc: Mapped[str] = mapped_column(Text, nullable=False, default="")
    approved_by_authorized: Mapped[bool | None] = mapped_column(Boolean, nullable=True)

    users: Mapped[list[UserModel]] = relationship(
        secondary=workflow_step_template_user, order_by="UserModel.id",
    )

    def __repr__(self) -> str:
        return (
            f"<WorkflowStepTemplate {self.id} #{self.step_number} "
            f"{self.type} template={self.workflow_template_id}>"
        )

    def to_dto(self) -> WorkflowStepTemplate:
        from sqlflow_kernel.domain.workflow import StepType, WorkflowStepTemplate

        return WorkflowStepTemplate(
            step_template_id=self.id,
            number=self.step_number,
            step_type=StepType(self.type),
            desc=self.desc,
            approved_by_authorized=bool(self.approved_by_authorized),
            user_ids=tuple(u.id for u in self.users),
            workflow_template_id=self.workflow_template_id,
        )


class WorkflowTemplateModel(TrackedBase):
    """
    Persistent workflow template.

    Contract:
        ``steps`` holds only the attached step templates, ordered by number.
        ``allow_submit_when_less_audit_level`` is an opaque tag passed
        through to callers that gate submission on audit results.
    """

    __tablename__ = "workflow_templates"

    name: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    desc: Mapped[str] = mapped_column(Text, nullable=False, default="")
    allow_submit_when_less_audit_level: Mapped[str] = mapped_column(
        String(32), nullable=False, default="",
    )

    steps: Mapped[list[WorkflowStepTemplateModel]] = relationship(
        order_by=WorkflowStepTemplateModel.step_number,
    )
    instances: Mapped[list[InstanceModel]] = relationship(
        back_populates="workflow_template", order_by="InstanceModel.id",
    )

    def __repr__(self) -> str:
        return f"<WorkflowTemplate {self.id} {self.name}>"

    def to_dto(self) -> WorkflowTemplate:
        from sqlflow_kernel.domain.workflow import WorkflowTemplate

        return WorkflowTemplate(
            template_id=self.id,
            name=self.name,
            desc=self.desc,
            allow_submit_when_less_audit_level=self.allow_submit_when_less_audit_level,
            steps=tuple(s.to_dto() for s in self.steps),
            instance_ids=tuple(i.id for i in self.instances if i.deleted_at is None),
        )
