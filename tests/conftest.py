"""
Pytest fixtures for the workflow engine test suite.

Provides:
- SQLite database sessions (in-memory per test, file-backed for threaded tests)
- A seeded directory: users, one instance, tasks, audit roles
- Template and workflow factories
- A controllable task runner

Environment Variables:
- DATABASE_URL: PostgreSQL connection URL.  Only tests marked ``postgres``
  use it; they are skipped when it is unset or not PostgreSQL.

All datetimes are timezone-aware UTC, as they load back from the database.
"""

import json
import logging
from io import StringIO
from typing import Callable

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker

import sqlflow_kernel.models  # noqa: F401  (registers all tables)
from sqlflow_kernel.db.base import Base
from sqlflow_kernel.domain.clock import DeterministicClock
from sqlflow_kernel.domain.identity import OperationCode
from sqlflow_kernel.domain.workflow import Workflow
from sqlflow_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    reset_logging,
)
from sqlflow_kernel.services.role_service import RoleService
from sqlflow_kernel.services.template_service import TemplateService
from sqlflow_kernel.services.workflow_service import WorkflowService
from tests.helpers import (
    START_TIME,
    FakeRunner,
    execute,
    review,
    seed_directory,
    seed_instance,
    seed_task,
)


# =============================================================================
# Logging fixtures
# =============================================================================


@pytest.fixture(autouse=True, scope="session")
def _configure_test_logging():
    """Configure structured logging for the test suite."""
    reset_logging()
    configure_logging(level=logging.DEBUG)
    yield
    reset_logging()


@pytest.fixture(autouse=True)
def _clear_log_context():
    """Clear LogContext between tests to prevent cross-test contamination."""
    LogContext.clear()
    yield
    LogContext.clear()


@pytest.fixture
def captured_logs():
    """
    Capture sqlflow logs as parsed JSON dicts.

    Usage::

        def test_something(captured_logs, workflow_service):
            workflow_service.cancel(wf_id, user_id)
            logs = captured_logs()
            assert any(r["message"] == "workflow_canceled" for r in logs)
    """
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    root = logging.getLogger("sqlflow")
    previous_level = root.level
    root.setLevel(logging.DEBUG)
    root.addHandler(handler)

    def _get_records() -> list[dict]:
        lines = stream.getvalue().strip().split("\n")
        return [json.loads(line) for line in lines if line]

    yield _get_records

    root.removeHandler(handler)
    root.setLevel(previous_level)


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "postgres: mark test as requiring PostgreSQL"
    )


# =============================================================================
# Database
# =============================================================================


@pytest.fixture
def engine():
    eng = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(eng)
    yield eng
    eng.dispose()


@pytest.fixture
def file_engine(tmp_path):
    """File-backed SQLite, shared by every thread and session of a test."""
    eng = create_engine(
        f"sqlite:///{tmp_path / 'workflows.db'}",
        connect_args={"check_same_thread": False, "timeout": 30},
    )
    Base.metadata.create_all(eng)
    yield eng
    eng.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, expire_on_commit=False)


@pytest.fixture
def session(session_factory) -> Session:
    sess = session_factory()
    try:
        yield sess
    finally:
        sess.close()


@pytest.fixture
def clock():
    return DeterministicClock(fixed_time=START_TIME)


# =============================================================================
# Directory
# =============================================================================


@pytest.fixture
def users(session) -> dict[str, int]:
    return seed_directory(session)


@pytest.fixture
def instance_id(session) -> int:
    return seed_instance(session)


@pytest.fixture
def make_task(session, instance_id) -> Callable[..., int]:
    def _make(instance: int | None = None, sql: str = "ALTER TABLE t ADD INDEX i(c);") -> int:
        return seed_task(session, instance if instance is not None else instance_id, sql)

    return _make


@pytest.fixture
def grant_audit(session, clock, instance_id, users) -> Callable[..., int]:
    """Grant WORKFLOW_AUDIT on the instance to the named users through a new role."""
    counter = iter(range(1, 1000))

    def _grant(*names: str, instance: int | None = None) -> int:
        role = RoleService(session, clock).create_role(
            name=f"auditors-{next(counter)}",
            op_codes=[OperationCode.WORKFLOW_AUDIT],
            instance_ids=[instance if instance is not None else instance_id],
            user_ids=[users[n] for n in names],
        )
        return role.role_id

    return _grant


# =============================================================================
# Templates and workflows
# =============================================================================


@pytest.fixture
def template_service(session, clock) -> TemplateService:
    return TemplateService(session, clock)


@pytest.fixture
def linear_template(template_service, users, instance_id):
    """T1: review by alice, review by bob, execute by carol; bound to the instance."""
    return template_service.create_template(
        name="T1",
        desc="two reviews then execute",
        steps=[review(users["alice"]), review(users["bob"]), execute(users["carol"])],
        instance_ids=[instance_id],
    )


@pytest.fixture
def runner() -> FakeRunner:
    return FakeRunner()


@pytest.fixture
def workflow_service(session, clock, runner) -> WorkflowService:
    return WorkflowService(session, clock=clock, runner=runner)


@pytest.fixture
def linear_workflow(workflow_service, linear_template, users, make_task) -> Workflow:
    """Workflow W for a fresh task created by dave on template T1."""
    return workflow_service.create_workflow(
        subject="add index on t",
        desc="speeds up the report query",
        creator_id=users["dave"],
        task_id=make_task(),
    )
