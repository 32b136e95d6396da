"""
Identity domain types (``sqlflow_kernel.domain.identity``).

Responsibility
--------------
Value objects for the identity & authorisation directory that the
workflow engine consults: users, instances, tasks, operation codes and
instance maintenance periods.  Also defines the ``IdentityDirectory``
protocol the lifecycle manager depends on.

Architecture position
---------------------
**Kernel domain layer** -- pure value objects.  ZERO I/O.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, time
from enum import Enum, IntEnum
from typing import Any, Protocol, Sequence

ADMIN_USER_NAME = "admin"


class OperationCode(IntEnum):
    """Permission codes granted to users through roles on an instance."""

    WORKFLOW_VIEW_OTHERS = 20100
    WORKFLOW_SAVE = 20200
    WORKFLOW_AUDIT = 20300
    WORKFLOW_EXECUTE = 20400
    AUDIT_PLAN_VIEW_OTHERS = 30100
    AUDIT_PLAN_SAVE = 30200
    SQL_QUERY_QUERY = 40100

    @classmethod
    def is_valid(cls, value: int) -> bool:
        return value in cls._value2member_map_


class TaskStatus(str, Enum):
    """Status of the SQL task a workflow wraps."""

    INITIALIZED = "initialized"
    AUDITED = "audited"
    EXECUTING = "executing"
    EXEC_SUCCESS = "exec_success"
    EXEC_FAILED = "exec_failed"


@dataclass(frozen=True)
class MaintenancePeriod:
    """
    A daily window during which SQL may run on an instance.

    A window whose end precedes its start wraps past midnight.
    """

    start_hour: int
    start_minute: int
    end_hour: int
    end_minute: int

    def __post_init__(self) -> None:
        for name in ("start_hour", "end_hour"):
            if not 0 <= getattr(self, name) <= 23:
                raise ValueError(f"{name} must be within 0..23")
        for name in ("start_minute", "end_minute"):
            if not 0 <= getattr(self, name) <= 59:
                raise ValueError(f"{name} must be within 0..59")

    @property
    def start(self) -> time:
        return time(self.start_hour, self.start_minute)

    @property
    def end(self) -> time:
        return time(self.end_hour, self.end_minute)

    def contains(self, when: datetime) -> bool:
        at = when.time().replace(second=0, microsecond=0)
        if self.start <= self.end:
            return self.start <= at <= self.end
        return at >= self.start or at <= self.end

    def to_dict(self) -> dict[str, int]:
        return {
            "start_hour": self.start_hour,
            "start_minute": self.start_minute,
            "end_hour": self.end_hour,
            "end_minute": self.end_minute,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> MaintenancePeriod:
        return cls(
            start_hour=int(data["start_hour"]),
            start_minute=int(data["start_minute"]),
            end_hour=int(data["end_hour"]),
            end_minute=int(data["end_minute"]),
        )


def in_maintenance_window(periods: Sequence[MaintenancePeriod], when: datetime) -> bool:
    """True when ``when`` falls in any period; an instance without periods is always open."""
    if not periods:
        return True
    return any(p.contains(when) for p in periods)


@dataclass(frozen=True)
class User:
    user_id: int
    name: str
    email: str = ""
    is_disabled: bool = False

    @property
    def is_admin(self) -> bool:
        return self.name == ADMIN_USER_NAME


@dataclass(frozen=True)
class Instance:
    instance_id: int
    name: str
    db_type: str
    workflow_template_id: int | None = None
    maintenance_periods: tuple[MaintenancePeriod, ...] = field(default_factory=tuple)


@dataclass(frozen=True)
class Task:
    task_id: int
    instance_id: int
    status: TaskStatus
    instance_schema: str = ""
    sql_content: str = ""
    exec_start_at: datetime | None = None
    exec_end_at: datetime | None = None


@dataclass(frozen=True)
class Role:
    role_id: int
    name: str
    desc: str
    is_disabled: bool
    operation_codes: tuple[int, ...]
    instance_ids: tuple[int, ...]
    user_ids: tuple[int, ...]
    user_group_ids: tuple[int, ...]


class IdentityDirectory(Protocol):
    """Read-only lookups the lifecycle manager needs from the directory."""

    def get_user(self, user_id: int) -> User:
        """Return a live user or raise UserNotFoundError."""
        ...

    def get_instance(self, instance_id: int) -> Instance:
        """Return a live instance or raise InstanceNotFoundError."""
        ...

    def get_task(self, task_id: int) -> Task:
        """Return a live task or raise TaskNotFoundError."""
        ...

    def users_with_operation_code(
        self, instance_id: int, op_code: OperationCode
    ) -> tuple[int, ...]:
        """Ids of enabled users granted ``op_code`` on the instance, ascending."""
        ...
