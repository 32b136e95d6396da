"""
Module: sqlflow_kernel.selectors.identity_selector
Responsibility: Read side of the identity & authorisation directory.
    Implements the ``IdentityDirectory`` protocol used by the lifecycle
    manager to resolve dynamic assignees.
Architecture position: Kernel > Selectors.

Invariants enforced:
    - A user holds operation code C on instance I iff a live, enabled role
      bound to I grants C and the user is a live, enabled member of that role
      directly or through a live, enabled user group.
"""

from sqlalchemy import or_, select

from sqlflow_kernel.db.base import live
from sqlflow_kernel.domain.identity import Instance, OperationCode, Role, Task, User
from sqlflow_kernel.exceptions import (
    InstanceNotFoundError,
    RoleNotFoundError,
    TaskNotFoundError,
    UserNotFoundError,
)
from sqlflow_kernel.models.identity import (
    InstanceModel,
    RoleModel,
    RoleOperationModel,
    UserGroupModel,
    UserModel,
    instance_roles,
    role_user_groups,
    role_users,
    user_group_users,
)
from sqlflow_kernel.models.task import TaskModel
from sqlflow_kernel.selectors.base import BaseSelector


class IdentitySelector(BaseSelector):
    """Directory lookups by id and by name."""

    def get_user(self, user_id: int) -> User:
        model = self.session.get(UserModel, user_id)
        if model is None or model.is_deleted:
            raise UserNotFoundError(user_id)
        return model.to_dto()

    def get_user_by_name(self, name: str) -> User:
        model = self.session.execute(
            select(UserModel).where(UserModel.name == name, live(UserModel))
        ).scalar_one_or_none()
        if model is None:
            raise UserNotFoundError(name)
        return model.to_dto()

    def get_instance(self, instance_id: int) -> Instance:
        model = self.session.get(InstanceModel, instance_id)
        if model is None or model.is_deleted:
            raise InstanceNotFoundError(instance_id)
        return model.to_dto()

    def get_task(self, task_id: int) -> Task:
        model = self.session.get(TaskModel, task_id)
        if model is None or model.is_deleted:
            raise TaskNotFoundError(task_id)
        return model.to_dto()

    def get_role(self, role_id: int) -> Role:
        model = self.session.get(RoleModel, role_id)
        if model is None or model.is_deleted:
            raise RoleNotFoundError(role_id)
        return model.to_dto()

    def users_with_operation_code(
        self, instance_id: int, op_code: OperationCode
    ) -> tuple[int, ...]:
        granting_roles = (
            select(RoleModel.id)
            .join(instance_roles, instance_roles.c.role_id == RoleModel.id)
            .join(RoleOperationModel, RoleOperationModel.role_id == RoleModel.id)
            .where(
                instance_roles.c.instance_id == instance_id,
                RoleOperationModel.op_code == int(op_code),
                RoleModel.is_disabled.is_(False),
                live(RoleModel),
            )
        )
        direct_members = select(role_users.c.user_id).where(
            role_users.c.role_id.in_(granting_roles)
        )
        group_members = (
            select(user_group_users.c.user_id)
            .join(UserGroupModel, UserGroupModel.id == user_group_users.c.user_group_id)
            .join(role_user_groups, role_user_groups.c.user_group_id == UserGroupModel.id)
            .where(
                role_user_groups.c.role_id.in_(granting_roles),
                UserGroupModel.is_disabled.is_(False),
                live(UserGroupModel),
            )
        )
        rows = self.session.execute(
            select(UserModel.id)
            .where(
                or_(UserModel.id.in_(direct_members), UserModel.id.in_(group_members)),
                UserModel.is_disabled.is_(False),
                live(UserModel),
            )
            .order_by(UserModel.id)
        ).scalars().all()
        return tuple(rows)

    def user_has_operation_code(
        self, user_id: int, instance_id: int, op_code: OperationCode
    ) -> bool:
        return user_id in self.users_with_operation_code(instance_id, op_code)
