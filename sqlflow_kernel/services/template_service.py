"""
sqlflow_kernel.services.template_service -- Workflow template registry.

Responsibility:
    Creates and revises workflow templates, replaces their step lists,
    binds them to instances, and serves template lookups.

Architecture position:
    Kernel > Services.  May import from domain/, models/, db/.

Invariants enforced:
    - Template names are unique among live templates.
    - A template has at least one step, numbered 1..N in the order given.
    - At most one ``sql_execute`` step, and only as the last step.
    - A static step (not ``approved_by_authorized``) names at least one user.
    - Replacing steps detaches the previous step templates instead of
      deleting them; existing workflow steps keep pointing at them.
    - A template that is bound to instances or referenced by live workflow
      steps cannot be deleted.

Failure modes:
    - TemplateNameConflictError on duplicate name.
    - EmptyStepTemplatesError / InvalidStepTemplateError on malformed steps.
    - TemplateNotFoundError, UserNotFoundError, InstanceNotFoundError.
    - TemplateInUseError on delete of a referenced template.
"""

from __future__ import annotations

from collections.abc import Sequence

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from sqlflow_kernel.db.base import live
from sqlflow_kernel.domain.workflow import StepTemplateSpec, StepType, WorkflowTemplate
from sqlflow_kernel.exceptions import (
    EmptyStepTemplatesError,
    InstanceNotFoundError,
    InvalidStepTemplateError,
    TemplateInUseError,
    TemplateNameConflictError,
    TemplateNotFoundError,
    UserNotFoundError,
)
from sqlflow_kernel.logging_config import get_logger
from sqlflow_kernel.models.identity import InstanceModel, UserModel
from sqlflow_kernel.models.template import WorkflowStepTemplateModel, WorkflowTemplateModel
from sqlflow_kernel.models.workflow import WorkflowModel, WorkflowStepModel
from sqlflow_kernel.services.base import BaseService

logger = get_logger("services.template")


def validate_step_specs(name: str, steps: Sequence[StepTemplateSpec]) -> None:
    """Raise if ``steps`` cannot form a template."""
    if not steps:
        raise EmptyStepTemplatesError(name)
    last = len(steps)
    for position, spec in enumerate(steps, start=1):
        step_type = StepType(spec.step_type)
        if step_type == StepType.SQL_EXECUTE and position != last:
            raise InvalidStepTemplateError(position, "sql_execute must be the last step")
        if not spec.approved_by_authorized and not spec.user_ids:
            raise InvalidStepTemplateError(position, "no assignees and not approved_by_authorized")
        if len(set(spec.user_ids)) != len(spec.user_ids):
            raise InvalidStepTemplateError(position, "duplicate assignee")


class TemplateService(BaseService):
    """Write side of the template registry."""

    # -- loaders -----------------------------------------------------------

    def _load_template(self, template_id: int) -> WorkflowTemplateModel:
        model = self.session.get(WorkflowTemplateModel, template_id)
        if model is None or model.is_deleted:
            raise TemplateNotFoundError(template_id)
        return model

    def _load_users(self, user_ids: Sequence[int]) -> list[UserModel]:
        if not user_ids:
            return []
        found = {
            u.id: u
            for u in self.session.execute(
                select(UserModel).where(UserModel.id.in_(user_ids), live(UserModel))
            ).scalars()
        }
        for user_id in user_ids:
            if user_id not in found:
                raise UserNotFoundError(user_id)
        return [found[user_id] for user_id in sorted(user_ids)]

    def _load_instances(self, instance_ids: Sequence[int]) -> list[InstanceModel]:
        if not instance_ids:
            return []
        found = {
            i.id: i
            for i in self.session.execute(
                select(InstanceModel).where(InstanceModel.id.in_(instance_ids), live(InstanceModel))
            ).scalars()
        }
        for instance_id in instance_ids:
            if instance_id not in found:
                raise InstanceNotFoundError(instance_id)
        return [found[instance_id] for instance_id in instance_ids]

    def _name_taken(self, name: str) -> bool:
        return self.session.execute(
            select(WorkflowTemplateModel.id).where(
                WorkflowTemplateModel.name == name, live(WorkflowTemplateModel)
            )
        ).first() is not None

    def _build_steps(self, steps: Sequence[StepTemplateSpec]) -> list[WorkflowStepTemplateModel]:
        now = self.clock.now()
        return [
            WorkflowStepTemplateModel(
                step_number=number,
                type=StepType(spec.step_type).value,
                desc=spec.desc,
                approved_by_authorized=spec.approved_by_authorized,
                users=self._load_users(spec.user_ids),
                created_at=now,
                updated_at=now,
            )
            for number, spec in enumerate(steps, start=1)
        ]

    # -- operations --------------------------------------------------------

    def create_template(
        self,
        name: str,
        desc: str,
        steps: Sequence[StepTemplateSpec],
        allow_submit_when_less_audit_level: str = "",
        instance_ids: Sequence[int] = (),
    ) -> WorkflowTemplate:
        """Create a template with its ordered steps, optionally binding instances."""
        validate_step_specs(name, steps)
        if self._name_taken(name):
            raise TemplateNameConflictError(name)

        now = self.clock.now()
        model = WorkflowTemplateModel(
            name=name,
            desc=desc,
            allow_submit_when_less_audit_level=allow_submit_when_less_audit_level,
            steps=self._build_steps(steps),
            created_at=now,
            updated_at=now,
        )
        self.session.add(model)
        for instance in self._load_instances(instance_ids):
            instance.workflow_template = model
        try:
            self.session.flush()
        except IntegrityError as exc:
            # A soft-deleted template still holds the name.
            raise TemplateNameConflictError(name) from exc

        logger.info(
            "workflow_template_created",
            extra={"template_id": model.id, "template_name": name, "step_count": len(steps)},
        )
        return model.to_dto()

    def update_template(
        self,
        template_id: int,
        desc: str | None = None,
        allow_submit_when_less_audit_level: str | None = None,
    ) -> WorkflowTemplate:
        """Patch scalar fields; ``None`` leaves a field unchanged."""
        model = self._load_template(template_id)
        if desc is not None:
            model.desc = desc
        if allow_submit_when_less_audit_level is not None:
            model.allow_submit_when_less_audit_level = allow_submit_when_less_audit_level
        self._flush("update_template")
        return model.to_dto()

    def update_template_steps(
        self, template_id: int, steps: Sequence[StepTemplateSpec]
    ) -> WorkflowTemplate:
        """Replace the template's step list; previous step templates are detached, not deleted."""
        model = self._load_template(template_id)
        validate_step_specs(model.name, steps)
        detached = [s.id for s in model.steps]
        # Removing from the collection nulls workflow_template_id on the old rows.
        model.steps = self._build_steps(steps)
        self._flush("update_template_steps")

        logger.info(
            "workflow_template_steps_replaced",
            extra={
                "template_id": template_id,
                "detached_step_template_ids": detached,
                "step_count": len(steps),
            },
        )
        return model.to_dto()

    def bind_instances(self, template_id: int, instance_ids: Sequence[int]) -> WorkflowTemplate:
        """Make ``instance_ids`` exactly the set of instances bound to the template."""
        model = self._load_template(template_id)
        instances = self._load_instances(instance_ids)
        wanted = {i.id for i in instances}
        for instance in list(model.instances):
            if instance.id not in wanted:
                instance.workflow_template = None
        for instance in instances:
            instance.workflow_template = model
        self._flush("bind_instances")

        logger.info(
            "workflow_template_instances_bound",
            extra={"template_id": template_id, "instance_ids": sorted(wanted)},
        )
        return model.to_dto()

    def delete_template(self, template_id: int) -> None:
        model = self._load_template(template_id)
        if any(i.deleted_at is None for i in model.instances):
            raise TemplateInUseError(template_id, "bound to instances")
        step_template_ids = [s.id for s in model.steps]
        if step_template_ids:
            in_use = self.session.execute(
                select(WorkflowStepModel.id)
                .join(WorkflowModel, WorkflowModel.id == WorkflowStepModel.workflow_id)
                .where(
                    WorkflowStepModel.workflow_step_template_id.in_(step_template_ids),
                    live(WorkflowModel),
                )
                .limit(1)
            ).first()
            if in_use is not None:
                raise TemplateInUseError(template_id, "referenced by workflows")

        now = self.clock.now()
        model.deleted_at = now
        for step in model.steps:
            step.deleted_at = now
        self._flush("delete_template")
        logger.info("workflow_template_deleted", extra={"template_id": template_id})

    # -- lookups -----------------------------------------------------------

    def get_by_id(self, template_id: int) -> WorkflowTemplate:
        return self._load_template(template_id).to_dto()

    def get_by_name(self, name: str) -> WorkflowTemplate:
        model = self.session.execute(
            select(WorkflowTemplateModel).where(
                WorkflowTemplateModel.name == name, live(WorkflowTemplateModel)
            )
        ).scalar_one_or_none()
        if model is None:
            raise TemplateNotFoundError(name)
        return model.to_dto()

    def list_names(self) -> list[str]:
        return list(
            self.session.execute(
                select(WorkflowTemplateModel.name)
                .where(live(WorkflowTemplateModel))
                .order_by(WorkflowTemplateModel.name)
            ).scalars()
        )
