"""
Workflow domain types (``sqlflow_kernel.domain.workflow``).

Responsibility
--------------
Pure value objects for the approval workflow: record status lifecycle,
step states and types, template and workflow snapshots, and the pure
decisions the lifecycle manager takes on them (what approving a step
leads to, whether a record is waiting only on execution, which record of
a workflow came first).

Architecture position
---------------------
**Kernel domain layer** -- pure value objects.  ZERO I/O.  No imports
from ``db/``, ``services/``, ``selectors/``, or outer layers.

Invariants enforced
-------------------
* ``WORKFLOW_TRANSITIONS`` lists the only valid record status changes.
  ``canceled`` and ``finished`` have no outgoing edges.
* A record's steps are ordered by id, which mirrors template numbering
  at creation time.
* Step states only move ``initialized -> approved`` or
  ``initialized -> rejected``.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Sequence


# =========================================================================
# Status lifecycle
# =========================================================================


class WorkflowStatus(str, Enum):
    """Status of a workflow record."""

    ON_PROCESS = "on_process"
    REJECTED = "rejected"
    CANCELED = "canceled"
    EXEC_SCHEDULED = "exec_scheduled"
    EXECUTING = "executing"
    EXEC_FAILED = "exec_failed"
    FINISHED = "finished"


WORKFLOW_TRANSITIONS: dict[WorkflowStatus, frozenset[WorkflowStatus]] = {
    WorkflowStatus.ON_PROCESS: frozenset({
        WorkflowStatus.EXEC_SCHEDULED,
        WorkflowStatus.FINISHED,
        WorkflowStatus.REJECTED,
        WorkflowStatus.CANCELED,
    }),
    WorkflowStatus.EXEC_SCHEDULED: frozenset({
        WorkflowStatus.EXECUTING,
        WorkflowStatus.REJECTED,
        WorkflowStatus.CANCELED,
    }),
    WorkflowStatus.EXECUTING: frozenset({
        WorkflowStatus.FINISHED,
        WorkflowStatus.EXEC_FAILED,
    }),
    WorkflowStatus.EXEC_FAILED: frozenset({WorkflowStatus.CANCELED}),
    WorkflowStatus.REJECTED: frozenset({WorkflowStatus.CANCELED}),
    WorkflowStatus.CANCELED: frozenset(),
    WorkflowStatus.FINISHED: frozenset(),
}

TERMINAL_WORKFLOW_STATUSES: frozenset[WorkflowStatus] = frozenset({
    WorkflowStatus.CANCELED,
    WorkflowStatus.FINISHED,
})

# Statuses in which the current step may be approved or rejected.
OPERABLE_STATUSES: frozenset[WorkflowStatus] = frozenset({
    WorkflowStatus.ON_PROCESS,
    WorkflowStatus.EXEC_SCHEDULED,
})

SCHEDULABLE_STATUSES: frozenset[WorkflowStatus] = OPERABLE_STATUSES

CANCELABLE_STATUSES: frozenset[WorkflowStatus] = frozenset(
    status
    for status, targets in WORKFLOW_TRANSITIONS.items()
    if WorkflowStatus.CANCELED in targets
)

# Records in these statuses are swept by the expiry scan once past retention.
EXPIRABLE_STATUSES: frozenset[WorkflowStatus] = TERMINAL_WORKFLOW_STATUSES


def can_transition(current: WorkflowStatus, target: WorkflowStatus) -> bool:
    return target in WORKFLOW_TRANSITIONS[current]


class StepState(str, Enum):
    INITIALIZED = "initialized"
    APPROVED = "approved"
    REJECTED = "rejected"


class StepType(str, Enum):
    SQL_REVIEW = "sql_review"
    SQL_EXECUTE = "sql_execute"
    CREATE_WORKFLOW = "create_workflow"
    UPDATE_WORKFLOW = "update_workflow"


# =========================================================================
# Templates
# =========================================================================


@dataclass(frozen=True)
class StepTemplateSpec:
    """Caller-supplied definition of one template step; numbering is positional."""

    step_type: StepType
    desc: str = ""
    approved_by_authorized: bool = False
    user_ids: tuple[int, ...] = ()


@dataclass(frozen=True)
class WorkflowStepTemplate:
    step_template_id: int
    number: int
    step_type: StepType
    desc: str
    approved_by_authorized: bool
    user_ids: tuple[int, ...]
    workflow_template_id: int | None


@dataclass(frozen=True)
class WorkflowTemplate:
    template_id: int
    name: str
    desc: str
    allow_submit_when_less_audit_level: str
    steps: tuple[WorkflowStepTemplate, ...]
    instance_ids: tuple[int, ...] = ()


# =========================================================================
# Workflows
# =========================================================================


@dataclass(frozen=True)
class WorkflowStep:
    step_id: int
    workflow_id: int
    record_id: int
    step_template_id: int
    number: int
    step_type: StepType
    state: StepState
    assignee_ids: tuple[int, ...]
    operation_user_id: int | None = None
    operate_at: datetime | None = None
    reason: str = ""

    @property
    def is_operated(self) -> bool:
        return self.state != StepState.INITIALIZED

    def is_assignee(self, user_id: int) -> bool:
        return user_id in self.assignee_ids


@dataclass(frozen=True)
class ApprovalPlan:
    """
    What approving a given step does to its record.

    ``next_step_id`` is None when no step follows; the current step then
    stays where it is.
    """

    next_step_id: int | None
    status: WorkflowStatus
    executes: bool = False


@dataclass(frozen=True)
class WorkflowRecord:
    record_id: int
    task_id: int
    status: WorkflowStatus
    current_step_id: int | None
    created_at: datetime
    steps: tuple[WorkflowStep, ...] = ()
    scheduled_at: datetime | None = None
    schedule_user_id: int | None = None

    @property
    def current_step(self) -> WorkflowStep | None:
        return self.step(self.current_step_id) if self.current_step_id is not None else None

    @property
    def final_step(self) -> WorkflowStep | None:
        return self.steps[-1] if self.steps else None

    def step(self, step_id: int) -> WorkflowStep | None:
        for s in self.steps:
            if s.step_id == step_id:
                return s
        return None

    def next_step_after(self, step_id: int) -> WorkflowStep | None:
        ids = [s.step_id for s in self.steps]
        if step_id not in ids:
            return None
        pos = ids.index(step_id) + 1
        return self.steps[pos] if pos < len(self.steps) else None

    @property
    def remaining_steps(self) -> tuple[WorkflowStep, ...]:
        return tuple(s for s in self.steps if s.state == StepState.INITIALIZED)

    @property
    def awaits_execution_only(self) -> bool:
        """Every step before the final ``sql_execute`` step is approved."""
        remaining = self.remaining_steps
        return (
            self.status in OPERABLE_STATUSES
            and len(remaining) == 1
            and remaining[0] is self.final_step
            and remaining[0].step_type == StepType.SQL_EXECUTE
            and self.current_step_id == remaining[0].step_id
        )

    @property
    def visible_steps(self) -> tuple[WorkflowStep, ...]:
        """Steps that were operated on; what a history view shows."""
        return tuple(s for s in self.steps if s.state != StepState.INITIALIZED)


def plan_approval(record: WorkflowRecord, step_id: int) -> ApprovalPlan:
    """
    Decide the record's next status when ``step_id`` is approved.

    - An ``sql_execute`` step runs the task.
    - Otherwise the next step becomes current; when that next step is the
      final ``sql_execute`` step the record waits on execution.
    - Approving the final non-execute step finishes the record.
    """
    step = record.step(step_id)
    if step is None:
        raise ValueError(f"Step {step_id} does not belong to record {record.record_id}")
    if step.step_type == StepType.SQL_EXECUTE:
        return ApprovalPlan(next_step_id=None, status=WorkflowStatus.EXECUTING, executes=True)
    nxt = record.next_step_after(step_id)
    if nxt is None:
        return ApprovalPlan(next_step_id=None, status=WorkflowStatus.FINISHED)
    if nxt is record.final_step and nxt.step_type == StepType.SQL_EXECUTE:
        return ApprovalPlan(next_step_id=nxt.step_id, status=WorkflowStatus.EXEC_SCHEDULED)
    return ApprovalPlan(next_step_id=nxt.step_id, status=WorkflowStatus.ON_PROCESS)


def is_first_record(records: Sequence[WorkflowRecord], record_id: int) -> bool:
    """True when ``record_id`` is the earliest record, ordered by (created_at, id)."""
    if not records:
        return False
    first = min(records, key=lambda r: (r.created_at, r.record_id))
    return first.record_id == record_id


@dataclass(frozen=True)
class Workflow:
    workflow_id: int
    subject: str
    desc: str
    create_user_id: int
    created_at: datetime
    record: WorkflowRecord
    history: tuple[WorkflowRecord, ...] = field(default_factory=tuple)

    @property
    def status(self) -> WorkflowStatus:
        return self.record.status

    @property
    def current_step(self) -> WorkflowStep | None:
        return self.record.current_step

    @property
    def records(self) -> tuple[WorkflowRecord, ...]:
        """History followed by the current record."""
        return self.history + (self.record,)

    def is_creator(self, user_id: int) -> bool:
        return self.create_user_id == user_id
