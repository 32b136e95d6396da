"""
Module: sqlflow_kernel.models.identity
Responsibility: ORM persistence for the identity & authorisation directory:
    users, user groups, roles with their operation codes, and database
    instances.

Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - Names of users, user groups, roles and instances are unique.
    - A role grants operation codes only on the instances it is bound to.
    - An instance is bound to at most one workflow template.

Failure modes:
    - IntegrityError on duplicate names.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from sqlalchemy import JSON, Boolean, Column, ForeignKey, Index, String, Table, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from sqlflow_kernel.db.base import Base, Identifier, TrackedBase

if TYPE_CHECKING:
    from sqlflow_kernel.domain.identity import Instance, Role, User
    from sqlflow_kernel.models.template import WorkflowTemplateModel


user_group_users = Table(
    "user_group_users",
    Base.metadata,
    Column("user_group_id", Identifier, ForeignKey("user_groups.id"), primary_key=True),
    Column("user_id", Identifier, ForeignKey("users.id"), primary_key=True),
)

role_users = Table(
    "role_users",
    Base.metadata,
    Column("role_id", Identifier, ForeignKey("roles.id"), primary_key=True),
    Column("user_id", Identifier, ForeignKey("users.id"), primary_key=True),
)

role_user_groups = Table(
    "role_user_groups",
    Base.metadata,
    Column("role_id", Identifier, ForeignKey("roles.id"), primary_key=True),
    Column("user_group_id", Identifier, ForeignKey("user_groups.id"), primary_key=True),
)

instance_roles = Table(
    "instance_roles",
    Base.metadata,
    Column("instance_id", Identifier, ForeignKey("instances.id"), primary_key=True),
    Column("role_id", Identifier, ForeignKey("roles.id"), primary_key=True),
)


class UserModel(TrackedBase):
    """A person who creates, reviews or executes workflows."""

    __tablename__ = "users"

    name: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    email: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    is_disabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    groups: Mapped[list[UserGroupModel]] = relationship(
        secondary=user_group_users, back_populates="users",
    )

    def __repr__(self) -> str:
        return f"<User {self.id} {self.name}>"

    def to_dto(self) -> User:
        from sqlflow_kernel.domain.identity import User

        return User(
            user_id=self.id,
            name=self.name,
            email=self.email,
            is_disabled=self.is_disabled,
        )


class UserGroupModel(TrackedBase):
    __tablename__ = "user_groups"

    name: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    is_disabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    users: Mapped[list[UserModel]] = relationship(
        secondary=user_group_users, back_populates="groups",
    )


class RoleOperationModel(Base):
    """One operation code granted by a role."""

    __tablename__ = "role_operations"

    __table_args__ = (
        Index("ix_role_operations_role_code", "role_id", "op_code", unique=True),
    )

    role_id: Mapped[int] = mapped_column(ForeignKey("roles.id"), nullable=False)
    op_code: Mapped[int] = mapped_column(nullable=False)


class RoleModel(TrackedBase):
    """
    A named bundle of operation codes.

    Contract:
        Users obtain the role's codes on every instance the role is bound to,
        either directly or through a user group.
    """

    __tablename__ = "roles"

    name: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    desc: Mapped[str] = mapped_column(Text, nullable=False, default="")
    is_disabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    operations: Mapped[list[RoleOperationModel]] = relationship(
        cascade="all, delete-orphan",
        order_by=RoleOperationModel.op_code,
    )
    users: Mapped[list[UserModel]] = relationship(secondary=role_users)
    user_groups: Mapped[list[UserGroupModel]] = relationship(secondary=role_user_groups)
    instances: Mapped[list[InstanceModel]] = relationship(
        secondary=instance_roles, back_populates="roles",
    )

    def to_dto(self) -> Role:
        from sqlflow_kernel.domain.identity import Role

        return Role(
            role_id=self.id,
            name=self.name,
            desc=self.desc,
            is_disabled=self.is_disabled,
            operation_codes=tuple(o.op_code for o in self.operations),
            instance_ids=tuple(sorted(i.id for i in self.instances)),
            user_ids=tuple(sorted(u.id for u in self.users)),
            user_group_ids=tuple(sorted(g.id for g in self.user_groups)),
        )


class InstanceModel(TrackedBase):
    """A database instance that tasks target."""

    __tablename__ = "instances"

    name: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    db_type: Mapped[str] = mapped_column(String(255), nullable=False, default="MySQL")
    maintenance_periods: Mapped[list[dict[str, Any]]] = mapped_column(
        JSON, nullable=False, default=list,
    )
    workflow_template_id: Mapped[int | None] = mapped_column(
        ForeignKey("workflow_templates.id"), nullable=True, index=True,
    )

    roles: Mapped[list[RoleModel]] = relationship(
        secondary=instance_roles, back_populates="instances",
    )
    workflow_template: Mapped[WorkflowTemplateModel | None] = relationship(
        back_populates="instances",
    )

    def __repr__(self) -> str:
        return f"<Instance {self.id} {self.name}>"

    def to_dto(self) -> Instance:
        from sqlflow_kernel.domain.identity import Instance, MaintenancePeriod

        return Instance(
            instance_id=self.id,
            name=self.name,
            db_type=self.db_type,
            workflow_template_id=self.workflow_template_id,
            maintenance_periods=tuple(
                MaintenancePeriod.from_dict(p) for p in (self.maintenance_periods or [])
            ),
        )
