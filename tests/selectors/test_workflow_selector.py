"""Tests for WorkflowSelector and IdentitySelector read views."""

from datetime import timedelta

import pytest

from sqlflow_kernel.domain.identity import OperationCode
from sqlflow_kernel.domain.workflow import StepState, WorkflowStatus
from sqlflow_kernel.exceptions import (
    InstanceNotFoundError,
    TaskNotFoundError,
    UserNotFoundError,
    WorkflowNotFoundError,
)
from sqlflow_kernel.models.identity import RoleModel, UserGroupModel, UserModel
from sqlflow_kernel.selectors.identity_selector import IdentitySelector
from sqlflow_kernel.selectors.workflow_selector import WorkflowSelector
from tests.helpers import step_ids


@pytest.fixture
def selector(session):
    return WorkflowSelector(session)


def _reject_and_resubmit(service, workflow, users, task_id=None):
    service.reject_step(workflow.workflow_id, step_ids(workflow)[0], users["alice"], "redo")
    return service.resubmit(
        workflow.workflow_id, users["dave"], task_id or workflow.record.task_id
    )


class TestGetWorkflow:
    def test_get(self, selector, linear_workflow):
        assert selector.get_workflow(linear_workflow.workflow_id) == linear_workflow

    def test_missing(self, selector):
        with pytest.raises(WorkflowNotFoundError):
            selector.get_workflow(5555)

    def test_by_subject(self, selector, linear_workflow):
        assert selector.get_workflow_by_subject("add index on t").workflow_id == (
            linear_workflow.workflow_id
        )
        assert selector.subject_exists("add index on t")
        assert not selector.subject_exists("something else")
        with pytest.raises(WorkflowNotFoundError):
            selector.get_workflow_by_subject("something else")


class TestHistory:
    def test_history_shows_operated_steps_only(
        self, selector, workflow_service, linear_workflow, users
    ):
        _reject_and_resubmit(workflow_service, linear_workflow, users)
        history = selector.get_history(linear_workflow.workflow_id)
        assert len(history) == 1
        assert [s.state for s in history[0].steps] == [StepState.REJECTED]
        assert history[0].status == WorkflowStatus.REJECTED

    def test_history_empty_without_resubmit(self, selector, linear_workflow):
        assert selector.get_history(linear_workflow.workflow_id) == ()

    def test_history_ordered_oldest_first(
        self, selector, workflow_service, linear_workflow, users, clock
    ):
        first = linear_workflow.record.record_id
        wf = _reject_and_resubmit(workflow_service, linear_workflow, users)
        clock.advance(minutes=1)
        second = wf.record.record_id
        _reject_and_resubmit(workflow_service, wf, users)
        assert [r.record_id for r in selector.get_history(wf.workflow_id)] == [first, second]


class TestLookupByTask:
    def test_current_task(self, selector, linear_workflow):
        found = selector.get_workflow_by_task_id(linear_workflow.record.task_id)
        assert found.workflow_id == linear_workflow.workflow_id

    def test_historical_task(self, selector, workflow_service, linear_workflow, users, make_task):
        old_task = linear_workflow.record.task_id
        _reject_and_resubmit(workflow_service, linear_workflow, users, task_id=make_task())
        assert selector.get_workflow_by_task_id(old_task).workflow_id == linear_workflow.workflow_id

    def test_unknown_task(self, selector, linear_workflow):
        with pytest.raises(WorkflowNotFoundError):
            selector.get_workflow_by_task_id(777)

    def test_deleted_workflow_not_found(self, selector, workflow_service, linear_workflow):
        workflow_service.delete_workflow(linear_workflow.workflow_id)
        with pytest.raises(WorkflowNotFoundError):
            selector.get_workflow_by_task_id(linear_workflow.record.task_id)

    def test_task_workflow_is_running(self, selector, workflow_service, linear_workflow, users):
        task_id = linear_workflow.record.task_id
        assert selector.task_workflow_is_running([task_id])
        assert not selector.task_workflow_is_running([])
        assert not selector.task_workflow_is_running([task_id + 100])
        workflow_service.cancel(linear_workflow.workflow_id, users["dave"])
        assert not selector.task_workflow_is_running([task_id])

    def test_instance_by_workflow(self, selector, linear_workflow, instance_id, linear_template):
        instance = selector.get_instance_by_workflow_id(linear_workflow.workflow_id)
        assert instance.instance_id == instance_id
        assert instance.workflow_template_id == linear_template.template_id


class TestScanCandidates:
    def _ready(self, workflow_service, workflow, users):
        s1, s2, _ = step_ids(workflow)
        workflow_service.approve_step(workflow.workflow_id, s1, users["alice"])
        workflow_service.approve_step(workflow.workflow_id, s2, users["bob"])

    def test_due(self, selector, workflow_service, linear_workflow, users, clock):
        self._ready(workflow_service, linear_workflow, users)
        at = clock.now() + timedelta(hours=1)
        workflow_service.schedule(linear_workflow.workflow_id, users["dave"], at)

        assert selector.list_due_workflow_ids(clock.now()) == []
        assert selector.list_due_workflow_ids(at) == [linear_workflow.workflow_id]

    def test_canceled_is_not_due(self, selector, workflow_service, linear_workflow, users, clock):
        self._ready(workflow_service, linear_workflow, users)
        at = clock.now() + timedelta(hours=1)
        workflow_service.schedule(linear_workflow.workflow_id, users["dave"], at)
        workflow_service.cancel(linear_workflow.workflow_id, users["dave"])
        assert selector.list_due_workflow_ids(at + timedelta(days=1)) == []

    def test_expired(self, selector, workflow_service, linear_workflow, users, clock):
        workflow_service.cancel(linear_workflow.workflow_id, users["dave"])
        cutoff_before = clock.now()
        cutoff_after = clock.now() + timedelta(seconds=1)
        assert selector.list_expired_workflow_ids(cutoff_before) == []
        assert selector.list_expired_workflow_ids(cutoff_after) == [linear_workflow.workflow_id]

    def test_open_workflow_never_expires(self, selector, linear_workflow, clock):
        assert selector.list_expired_workflow_ids(clock.now() + timedelta(days=365)) == []


class TestIdentitySelector:
    @pytest.fixture
    def directory(self, session):
        return IdentitySelector(session)

    def test_lookups(self, directory, users, instance_id, make_task):
        assert directory.get_user(users["alice"]).name == "alice"
        assert directory.get_user_by_name("admin").is_admin
        assert directory.get_instance(instance_id).name == "mysql-prod"
        assert directory.get_task(make_task()).instance_id == instance_id

    def test_missing(self, directory):
        with pytest.raises(UserNotFoundError):
            directory.get_user(999)
        with pytest.raises(UserNotFoundError):
            directory.get_user_by_name("mallory")
        with pytest.raises(InstanceNotFoundError):
            directory.get_instance(999)
        with pytest.raises(TaskNotFoundError):
            directory.get_task(999)

    def test_disabled_user_excluded(self, session, directory, grant_audit, users, instance_id):
        grant_audit("eve", "frank")
        session.get(UserModel, users["eve"]).is_disabled = True
        session.flush()
        assert directory.users_with_operation_code(
            instance_id, OperationCode.WORKFLOW_AUDIT
        ) == (users["frank"],)

    def test_disabled_role_excluded(self, session, directory, grant_audit, instance_id):
        role_id = grant_audit("eve")
        session.get(RoleModel, role_id).is_disabled = True
        session.flush()
        assert directory.users_with_operation_code(instance_id, OperationCode.WORKFLOW_AUDIT) == ()

    def test_group_and_direct_members_merge(
        self, session, directory, grant_audit, users, instance_id
    ):
        role_id = grant_audit("eve")
        group = UserGroupModel(name="dba")
        group.users = [session.get(UserModel, users["eve"]), session.get(UserModel, users["frank"])]
        session.add(group)
        session.get(RoleModel, role_id).user_groups = [group]
        session.flush()
        assert directory.users_with_operation_code(
            instance_id, OperationCode.WORKFLOW_AUDIT
        ) == (users["eve"], users["frank"])

        group.is_disabled = True
        session.flush()
        assert directory.users_with_operation_code(
            instance_id, OperationCode.WORKFLOW_AUDIT
        ) == (users["eve"],)
