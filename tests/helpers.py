"""Shared builders for the workflow engine tests."""

import os
import threading
from datetime import datetime, timezone

from sqlalchemy.orm import Session

from sqlflow_kernel.domain.runner import RunOutcome
from sqlflow_kernel.domain.workflow import StepTemplateSpec, StepType, Workflow
from sqlflow_kernel.models.identity import InstanceModel, UserModel
from sqlflow_kernel.models.task import TaskModel

USER_NAMES = ("alice", "bob", "carol", "dave", "eve", "frank", "admin")

# A Monday, inside business hours.
START_TIME = datetime(2026, 2, 2, 10, 0, 0, tzinfo=timezone.utc)


def postgres_url() -> str | None:
    url = os.environ.get("DATABASE_URL")
    if url and url.startswith("postgresql"):
        return url
    return None


# =============================================================================
# Directory seed
# =============================================================================


def seed_directory(session: Session) -> dict[str, int]:
    """Create the standard users and return name -> id."""
    users = [UserModel(name=name, email=f"{name}@example.com") for name in USER_NAMES]
    session.add_all(users)
    session.flush()
    return {u.name: u.id for u in users}


def seed_instance(session: Session, name: str = "mysql-prod", periods=None) -> int:
    instance = InstanceModel(name=name, db_type="MySQL", maintenance_periods=periods or [])
    session.add(instance)
    session.flush()
    return instance.id


def seed_task(session: Session, instance_id: int, sql: str = "ALTER TABLE t ADD INDEX i(c);") -> int:
    task = TaskModel(
        instance_id=instance_id,
        instance_schema="app",
        sql_content=sql,
        status="audited",
    )
    session.add(task)
    session.flush()
    return task.id


# =============================================================================
# Step specs
# =============================================================================


def review(*user_ids: int, desc: str = "") -> StepTemplateSpec:
    return StepTemplateSpec(step_type=StepType.SQL_REVIEW, desc=desc, user_ids=tuple(user_ids))


def execute(*user_ids: int) -> StepTemplateSpec:
    return StepTemplateSpec(step_type=StepType.SQL_EXECUTE, user_ids=tuple(user_ids))


def dynamic_review() -> StepTemplateSpec:
    return StepTemplateSpec(step_type=StepType.SQL_REVIEW, approved_by_authorized=True)


def step_ids(workflow: Workflow) -> list[int]:
    return [s.step_id for s in workflow.record.steps]


# =============================================================================
# Runner
# =============================================================================


class FakeRunner:
    """Task runner with a scripted outcome; records every call."""

    def __init__(
        self,
        outcome: RunOutcome | None = None,
        error: Exception | None = None,
        pending: bool = False,
    ):
        self.outcome = outcome if outcome is not None else RunOutcome.succeeded("ok")
        self.error = error
        self.pending = pending
        self.calls: list[int] = []
        self._lock = threading.Lock()

    def run(self, task_id: int, cancel: threading.Event) -> RunOutcome | None:
        with self._lock:
            self.calls.append(task_id)
        if self.error is not None:
            raise self.error
        if self.pending:
            return None
        return self.outcome


class BlockingRunner(FakeRunner):
    """Runner that waits on ``release`` (or cancellation) before finishing."""

    def __init__(self, outcome: RunOutcome | None = None):
        super().__init__(outcome)
        self.started = threading.Event()
        self.release = threading.Event()

    def run(self, task_id: int, cancel: threading.Event) -> RunOutcome | None:
        with self._lock:
            self.calls.append(task_id)
        self.started.set()
        while not self.release.is_set():
            if cancel.wait(timeout=0.01):
                return RunOutcome.failed("stopped")
        return self.outcome
