"""
Module: sqlflow_kernel.models.task
Responsibility: ORM persistence for SQL tasks, the unit of work a workflow
    reviews and eventually executes.  Task auditing lives outside the engine;
    the engine only moves ``status`` and the execution timestamps.

Architecture position: Kernel > Models.  May import from db/base.py only.
"""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import CheckConstraint, ForeignKey, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from sqlflow_kernel.db.base import TrackedBase, UtcDateTime

if TYPE_CHECKING:
    from sqlflow_kernel.domain.identity import Task
    from sqlflow_kernel.models.identity import InstanceModel


class TaskModel(TrackedBase):
    __tablename__ = "tasks"

    __table_args__ = (
        CheckConstraint(
            "status IN ('initialized', 'audited', 'executing', "
            "'exec_success', 'exec_failed')",
            name="ck_tasks_valid_status",
        ),
    )

    instance_id: Mapped[int] = mapped_column(
        ForeignKey("instances.id"), nullable=False, index=True,
    )
    instance_schema: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    sql_content: Mapped[str] = mapped_column(Text, nullable=False, default="")
    status: Mapped[str] = mapped_column(String(32), nullable=False, default="initialized")
    exec_start_at: Mapped[datetime | None] = mapped_column(UtcDateTime(), nullable=True)
    exec_end_at: Mapped[datetime | None] = mapped_column(UtcDateTime(), nullable=True)

    instance: Mapped[InstanceModel] = relationship()

    def __repr__(self) -> str:
        return f"<Task {self.id} instance={self.instance_id} status={self.status}>"

    def to_dto(self) -> Task:
        from sqlflow_kernel.domain.identity import Task, TaskStatus

        return Task(
            task_id=self.id,
            instance_id=self.instance_id,
            status=TaskStatus(self.status),
            instance_schema=self.instance_schema,
            sql_content=self.sql_content,
            exec_start_at=self.exec_start_at,
            exec_end_at=self.exec_end_at,
        )
