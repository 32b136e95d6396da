"""Tests for the workflow dashboard counts."""

from datetime import timedelta

import pytest

from sqlflow_kernel.domain.identity import TaskStatus
from sqlflow_kernel.domain.runner import RunOutcome
from sqlflow_kernel.domain.workflow import StepType, WorkflowStatus
from sqlflow_kernel.selectors.report_selector import WorkflowReportSelector
from sqlflow_kernel.services.workflow_service import WorkflowService
from tests.helpers import START_TIME, FakeRunner, review, step_ids


@pytest.fixture
def report(session):
    return WorkflowReportSelector(session)


@pytest.fixture
def reviewed_workflow(workflow_service, linear_workflow, users, clock):
    """Linear workflow with both reviews approved, the second 90 minutes in."""
    s1, s2, _ = step_ids(linear_workflow)
    clock.advance(minutes=30)
    workflow_service.approve_step(linear_workflow.workflow_id, s1, users["alice"])
    clock.advance(minutes=60)
    return workflow_service.approve_step(linear_workflow.workflow_id, s2, users["bob"])


class TestEmptyFilters:
    def test_empty_filters_count_zero(self, report, linear_workflow):
        assert report.count_by_status([]) == 0
        assert report.count_by_step_type([]) == 0
        assert report.count_by_task_status([]) == 0
        assert report.audit_duration_minutes([]) == 0

    def test_no_workflows(self, report, clock):
        assert report.count_all() == 0
        assert report.count_approved() == 0
        assert report.audited_step_ids() == []


class TestCounts:
    def test_in_review(self, report, linear_workflow):
        assert report.count_all() == 1
        assert report.count_by_status([WorkflowStatus.ON_PROCESS]) == 1
        assert report.count_by_status(["finished", "canceled"]) == 0
        assert report.count_by_step_type([StepType.SQL_REVIEW]) == 1
        assert report.count_by_step_type([StepType.SQL_EXECUTE]) == 0
        assert report.count_by_task_status([TaskStatus.AUDITED]) == 1
        assert report.count_approved() == 0

    def test_awaiting_execution_counts_as_approved(self, report, reviewed_workflow):
        assert report.count_by_status([WorkflowStatus.EXEC_SCHEDULED]) == 1
        assert report.count_by_step_type(["sql_execute"]) == 1
        assert report.count_approved() == 1

    def test_finished_counts_as_approved(
        self, report, workflow_service, reviewed_workflow, users
    ):
        workflow_service.approve_step(
            reviewed_workflow.workflow_id, step_ids(reviewed_workflow)[2], users["carol"]
        )
        assert report.count_by_status([WorkflowStatus.FINISHED]) == 1
        assert report.count_by_step_type([StepType.SQL_REVIEW]) == 0
        assert report.count_by_step_type([StepType.SQL_EXECUTE]) == 1
        assert report.count_by_task_status([TaskStatus.EXEC_SUCCESS]) == 1
        assert report.count_approved() == 1

    def test_failed_execution_counts_as_approved(
        self, session, clock, report, reviewed_workflow, users
    ):
        service = WorkflowService(session, clock, runner=FakeRunner(RunOutcome.failed("boom")))
        failed = service.approve_step(
            reviewed_workflow.workflow_id, step_ids(reviewed_workflow)[2], users["carol"]
        )
        assert failed.status == WorkflowStatus.EXEC_FAILED
        assert report.count_by_task_status([TaskStatus.EXEC_FAILED]) == 1
        assert report.count_approved() == 1

    def test_review_only_finished_counts_as_approved(
        self, report, workflow_service, template_service, users, instance_id, make_task
    ):
        template_service.create_template(
            "reviews", "", [review(users["alice"])], instance_ids=[instance_id]
        )
        wf = workflow_service.create_workflow("s", "", users["dave"], make_task())
        workflow_service.approve_step(wf.workflow_id, step_ids(wf)[0], users["alice"])
        assert report.count_by_step_type([StepType.SQL_REVIEW]) == 1
        assert report.count_approved() == 1

    def test_deleted_workflows_not_counted(self, report, workflow_service, linear_workflow):
        workflow_service.delete_workflow(linear_workflow.workflow_id)
        assert report.count_all() == 0
        assert report.count_by_status([WorkflowStatus.ON_PROCESS]) == 0

    def test_count_between_is_inclusive(self, report, linear_workflow):
        assert report.count_between(START_TIME, START_TIME) == 1
        assert report.count_between(
            START_TIME + timedelta(seconds=1), START_TIME + timedelta(days=1)
        ) == 0


class TestAuditedSteps:
    def test_last_review_step_when_approved(self, report, reviewed_workflow):
        assert report.audited_step_ids() == [step_ids(reviewed_workflow)[1]]

    def test_not_yet_audited(self, report, workflow_service, linear_workflow, users):
        workflow_service.approve_step(
            linear_workflow.workflow_id, step_ids(linear_workflow)[0], users["alice"]
        )
        assert report.audited_step_ids() == []

    def test_audit_duration(self, report, reviewed_workflow):
        s1, s2, _ = step_ids(reviewed_workflow)
        assert report.audit_duration_minutes([s2]) == 90
        assert report.audit_duration_minutes([s1, s2]) == 120

    def test_unoperated_steps_have_no_duration(self, report, linear_workflow):
        assert report.audit_duration_minutes(step_ids(linear_workflow)) == 0
