"""
sqlflow_kernel.services.role_service -- Role administration.

Responsibility:
    Creates, updates and deletes roles: the bundles of operation codes that
    decide, per instance, who may audit (and thus be a dynamic assignee of)
    workflows.

Architecture position:
    Kernel > Services.  May import from domain/, models/, db/.

Invariants enforced:
    - Role names are unique among live roles.
    - Every operation code is a known OperationCode.
    - Referenced users, user groups and instances exist and are live.

Failure modes:
    - RoleNameConflictError, InvalidOperationCodeError.
    - RoleNotFoundError, UserNotFoundError, UserGroupNotFoundError,
      InstanceNotFoundError.
"""

from __future__ import annotations

from collections.abc import Sequence
from typing import Any

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from sqlflow_kernel.db.base import live
from sqlflow_kernel.domain.identity import OperationCode, Role
from sqlflow_kernel.exceptions import (
    InstanceNotFoundError,
    InvalidOperationCodeError,
    RoleNameConflictError,
    RoleNotFoundError,
    UserGroupNotFoundError,
    UserNotFoundError,
)
from sqlflow_kernel.logging_config import get_logger
from sqlflow_kernel.models.identity import (
    InstanceModel,
    RoleModel,
    RoleOperationModel,
    UserGroupModel,
    UserModel,
)
from sqlflow_kernel.services.base import BaseService

logger = get_logger("services.role")


class RoleService(BaseService):
    """Write side of the role directory."""

    def _load_role(self, role_id: int) -> RoleModel:
        model = self.session.get(RoleModel, role_id)
        if model is None or model.is_deleted:
            raise RoleNotFoundError(role_id)
        return model

    def _load_many(self, model: Any, ids: Sequence[int], not_found: type) -> list[Any]:
        if not ids:
            return []
        found = {
            row.id: row
            for row in self.session.execute(
                select(model).where(model.id.in_(ids), live(model))
            ).scalars()
        }
        missing = [i for i in ids if i not in found]
        if missing:
            raise not_found(missing[0])
        return [found[i] for i in dict.fromkeys(ids)]

    @staticmethod
    def _operations(op_codes: Sequence[int]) -> list[RoleOperationModel]:
        for code in op_codes:
            if not OperationCode.is_valid(code):
                raise InvalidOperationCodeError(code)
        return [RoleOperationModel(op_code=int(code)) for code in sorted(set(op_codes))]

    def _name_taken(self, name: str, exclude_id: int | None = None) -> bool:
        stmt = select(RoleModel.id).where(RoleModel.name == name, live(RoleModel))
        if exclude_id is not None:
            stmt = stmt.where(RoleModel.id != exclude_id)
        return self.session.execute(stmt).first() is not None

    def create_role(
        self,
        name: str,
        desc: str = "",
        op_codes: Sequence[int] = (),
        instance_ids: Sequence[int] = (),
        user_ids: Sequence[int] = (),
        user_group_ids: Sequence[int] = (),
    ) -> Role:
        if self._name_taken(name):
            raise RoleNameConflictError(name)
        now = self.clock.now()
        model = RoleModel(
            name=name,
            desc=desc,
            operations=self._operations(op_codes),
            instances=self._load_many(InstanceModel, instance_ids, InstanceNotFoundError),
            users=self._load_many(UserModel, user_ids, UserNotFoundError),
            user_groups=self._load_many(UserGroupModel, user_group_ids, UserGroupNotFoundError),
            created_at=now,
            updated_at=now,
        )
        self.session.add(model)
        try:
            self.session.flush()
        except IntegrityError as exc:
            # A soft-deleted role still holds the name.
            raise RoleNameConflictError(name) from exc

        logger.info(
            "role_created",
            extra={"role_id": model.id, "role_name": name, "op_codes": sorted(set(op_codes))},
        )
        return model.to_dto()

    def update_role(
        self,
        role_id: int,
        *,
        desc: str | None = None,
        is_disabled: bool | None = None,
        op_codes: Sequence[int] | None = None,
        instance_ids: Sequence[int] | None = None,
        user_ids: Sequence[int] | None = None,
        user_group_ids: Sequence[int] | None = None,
    ) -> Role:
        """Replace whichever attributes are given; ``None`` leaves one unchanged."""
        model = self._load_role(role_id)
        if desc is not None:
            model.desc = desc
        if is_disabled is not None:
            model.is_disabled = is_disabled
        if op_codes is not None:
            # Keep rows for retained codes; the unit of work inserts before it deletes.
            existing = {o.op_code: o for o in model.operations}
            model.operations = [
                existing.get(o.op_code, o) for o in self._operations(op_codes)
            ]
        if instance_ids is not None:
            model.instances = self._load_many(InstanceModel, instance_ids, InstanceNotFoundError)
        if user_ids is not None:
            model.users = self._load_many(UserModel, user_ids, UserNotFoundError)
        if user_group_ids is not None:
            model.user_groups = self._load_many(
                UserGroupModel, user_group_ids, UserGroupNotFoundError
            )
        self._flush("update_role")

        logger.info("role_updated", extra={"role_id": role_id})
        return model.to_dto()

    def delete_role(self, role_id: int) -> None:
        model = self._load_role(role_id)
        model.deleted_at = self.clock.now()
        model.users = []
        model.user_groups = []
        model.instances = []
        self._flush("delete_role")
        logger.info("role_deleted", extra={"role_id": role_id})
