"""
Typed exception hierarchy for the workflow engine.

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

All exceptions inherit from WorkflowKernelError:

    WorkflowKernelError (base)
    |
    +-- BadRequestError
    |   +-- EmptyStepTemplatesError
    |   +-- InvalidStepTemplateError
    |   +-- TemplateNotBoundError
    |   +-- NoEligibleAssigneesError
    |   +-- InvalidScheduleError
    |   +-- OutsideMaintenanceWindowError
    |   +-- InvalidOperationCodeError
    |   +-- TaskInstanceMismatchError
    |
    +-- NotFoundError
    |   +-- WorkflowNotFoundError
    |   +-- WorkflowStepNotFoundError
    |   +-- TemplateNotFoundError
    |   +-- TaskNotFoundError
    |   +-- UserNotFoundError
    |   +-- UserGroupNotFoundError
    |   +-- InstanceNotFoundError
    |   +-- RoleNotFoundError
    |
    +-- ConflictError
    |   +-- InvalidWorkflowTransitionError
    |   +-- StepNotCurrentError
    |   +-- StepAlreadyOperatedError
    |   +-- ScheduleConditionError
    |   +-- WorkflowScheduledError
    |   +-- ConcurrentTransitionError
    |   +-- TemplateNameConflictError
    |   +-- TemplateInUseError
    |   +-- WorkflowSubjectConflictError
    |   +-- TaskAlreadyBoundError
    |   +-- RoleNameConflictError
    |   +-- OperationCancelledError
    |
    +-- UnauthorizedError
    |   +-- NotAssigneeError
    |   +-- NotWorkflowCreatorError
    |   +-- AdminRequiredError
    |
    +-- DataConflictError
    |   +-- MissingCurrentRecordError
    |
    +-- StorageError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category      | HTTP | When Raised
--------------|------|------------------------------------------------------
BadRequest    | 400  | Malformed input, empty step list, unknown template,
              |      | zero eligible assignees, bad schedule time
NotFound      | 404  | Referenced entity absent (or soft-deleted)
Conflict      | 409  | Precondition on state failed, duplicate name,
              |      | lost a concurrent transition
Unauthorized  | 403  | Caller is not an assignee / creator / admin
DataConflict  | 500  | Persisted state violates a structural invariant
Storage       | 500  | Underlying database error, wrapped with ``from exc``

Execution failure is NOT an exception: a runner failure moves the record to
``exec_failed`` and the operation returns normally.

===============================================================================
"""

from datetime import datetime


class WorkflowKernelError(Exception):
    """
    Base exception for all workflow engine errors.

    Every subclass carries a machine-readable ``code`` and the HTTP status a
    surface should answer with.
    """

    code: str = "WORKFLOW_KERNEL_ERROR"
    http_status: int = 500


# Bad request


class BadRequestError(WorkflowKernelError):
    """Base exception for malformed input."""

    code: str = "BAD_REQUEST"
    http_status: int = 400


class EmptyStepTemplatesError(BadRequestError):
    """A template or workflow would have no steps."""

    code: str = "EMPTY_STEP_TEMPLATES"

    def __init__(self, template_name: str):
        self.template_name = template_name
        super().__init__(f"Workflow template {template_name!r} has no steps")


class InvalidStepTemplateError(BadRequestError):
    """A step template list is malformed."""

    code: str = "INVALID_STEP_TEMPLATE"

    def __init__(self, position: int, reason: str):
        self.position = position
        self.reason = reason
        super().__init__(f"Invalid step template at position {position}: {reason}")


class TemplateNotBoundError(BadRequestError):
    """The task's instance has no template, or a different one."""

    code: str = "TEMPLATE_NOT_BOUND"

    def __init__(self, instance_id: int, template_id: int | None = None):
        self.instance_id = instance_id
        self.template_id = template_id
        if template_id is None:
            message = f"Instance {instance_id} is not bound to a workflow template"
        else:
            message = (
                f"Workflow template {template_id} is not the template bound "
                f"to instance {instance_id}"
            )
        super().__init__(message)


class NoEligibleAssigneesError(BadRequestError):
    """A step would be created with an empty assignee set."""

    code: str = "NO_ELIGIBLE_ASSIGNEES"

    def __init__(self, step_number: int, instance_id: int):
        self.step_number = step_number
        self.instance_id = instance_id
        super().__init__(
            f"Step {step_number} has no eligible assignees on instance {instance_id}"
        )


class InvalidScheduleError(BadRequestError):
    """Requested execution time is not acceptable."""

    code: str = "INVALID_SCHEDULE"

    def __init__(self, scheduled_at: datetime, reason: str):
        self.scheduled_at = scheduled_at
        self.reason = reason
        super().__init__(f"Cannot schedule at {scheduled_at.isoformat()}: {reason}")


class OutsideMaintenanceWindowError(BadRequestError):
    """Execution requested outside the instance's maintenance periods."""

    code: str = "OUTSIDE_MAINTENANCE_WINDOW"

    def __init__(self, instance_id: int, at: datetime):
        self.instance_id = instance_id
        self.at = at
        super().__init__(
            f"{at.isoformat()} is outside the maintenance periods of instance {instance_id}"
        )


class InvalidOperationCodeError(BadRequestError):
    """Unknown operation code in a role definition."""

    code: str = "INVALID_OPERATION_CODE"

    def __init__(self, op_code: int):
        self.op_code = op_code
        super().__init__(f"Unknown operation code: {op_code}")


class TaskInstanceMismatchError(BadRequestError):
    """Re-submitted task targets a different instance."""

    code: str = "TASK_INSTANCE_MISMATCH"

    def __init__(self, task_id: int, expected_instance_id: int, actual_instance_id: int):
        self.task_id = task_id
        self.expected_instance_id = expected_instance_id
        self.actual_instance_id = actual_instance_id
        super().__init__(
            f"Task {task_id} targets instance {actual_instance_id}, "
            f"expected instance {expected_instance_id}"
        )


# Not found


class NotFoundError(WorkflowKernelError):
    """Base exception for absent entities."""

    code: str = "NOT_FOUND"
    http_status: int = 404

    entity_type: str = "entity"

    def __init__(self, entity_id: int | str):
        self.entity_id = entity_id
        super().__init__(f"{self.entity_type} not found: {entity_id}")


class WorkflowNotFoundError(NotFoundError):
    code: str = "WORKFLOW_NOT_FOUND"
    entity_type = "Workflow"


class WorkflowStepNotFoundError(NotFoundError):
    code: str = "WORKFLOW_STEP_NOT_FOUND"
    entity_type = "Workflow step"


class TemplateNotFoundError(NotFoundError):
    code: str = "TEMPLATE_NOT_FOUND"
    entity_type = "Workflow template"


class TaskNotFoundError(NotFoundError):
    code: str = "TASK_NOT_FOUND"
    entity_type = "Task"


class UserNotFoundError(NotFoundError):
    code: str = "USER_NOT_FOUND"
    entity_type = "User"


class UserGroupNotFoundError(NotFoundError):
    code: str = "USER_GROUP_NOT_FOUND"
    entity_type = "User group"


class InstanceNotFoundError(NotFoundError):
    code: str = "INSTANCE_NOT_FOUND"
    entity_type = "Instance"


class RoleNotFoundError(NotFoundError):
    code: str = "ROLE_NOT_FOUND"
    entity_type = "Role"


# Conflict


class ConflictError(WorkflowKernelError):
    """Base exception for failed state preconditions and uniqueness."""

    code: str = "CONFLICT"
    http_status: int = 409


class InvalidWorkflowTransitionError(ConflictError):
    """The record's status does not permit the requested action."""

    code: str = "INVALID_WORKFLOW_TRANSITION"

    def __init__(self, workflow_id: int, status: str, action: str):
        self.workflow_id = workflow_id
        self.status = status
        self.action = action
        super().__init__(
            f"Cannot {action} workflow {workflow_id} in status '{status}'"
        )


class StepNotCurrentError(ConflictError):
    """Operated step is not the record's current step."""

    code: str = "STEP_NOT_CURRENT"

    def __init__(self, workflow_id: int, step_id: int, current_step_id: int | None):
        self.workflow_id = workflow_id
        self.step_id = step_id
        self.current_step_id = current_step_id
        super().__init__(
            f"Step {step_id} is not the current step of workflow {workflow_id} "
            f"(current: {current_step_id})"
        )


class StepAlreadyOperatedError(ConflictError):
    """Step has already been approved or rejected."""

    code: str = "STEP_ALREADY_OPERATED"

    def __init__(self, step_id: int, state: str):
        self.step_id = step_id
        self.state = state
        super().__init__(f"Step {step_id} is already {state}")


class ScheduleConditionError(ConflictError):
    """Steps other than the final execute step are still pending."""

    code: str = "SCHEDULE_CONDITION_NOT_MET"

    def __init__(self, workflow_id: int, reason: str):
        self.workflow_id = workflow_id
        self.reason = reason
        super().__init__(f"Workflow {workflow_id} cannot be scheduled: {reason}")


class WorkflowScheduledError(ConflictError):
    """Immediate execution requested on a workflow owned by the scheduler."""

    code: str = "WORKFLOW_SCHEDULED"

    def __init__(self, workflow_id: int, scheduled_at: datetime):
        self.workflow_id = workflow_id
        self.scheduled_at = scheduled_at
        super().__init__(
            f"Workflow {workflow_id} is scheduled at {scheduled_at.isoformat()}; "
            "unschedule it before executing"
        )


class ConcurrentTransitionError(ConflictError):
    """Another transaction changed the record first."""

    code: str = "CONCURRENT_TRANSITION"

    def __init__(self, workflow_id: int | None, record_id: int | None):
        self.workflow_id = workflow_id
        self.record_id = record_id
        super().__init__(
            f"Workflow record {record_id} of workflow {workflow_id} was "
            "modified by another transaction"
        )


class TemplateNameConflictError(ConflictError):
    code: str = "TEMPLATE_NAME_CONFLICT"

    def __init__(self, name: str):
        self.name = name
        super().__init__(f"Workflow template already exists: {name}")


class TemplateInUseError(ConflictError):
    code: str = "TEMPLATE_IN_USE"

    def __init__(self, template_id: int, reason: str):
        self.template_id = template_id
        self.reason = reason
        super().__init__(f"Workflow template {template_id} is in use: {reason}")


class WorkflowSubjectConflictError(ConflictError):
    code: str = "WORKFLOW_SUBJECT_CONFLICT"

    def __init__(self, subject: str):
        self.subject = subject
        super().__init__(f"Workflow subject already exists: {subject}")


class TaskAlreadyBoundError(ConflictError):
    code: str = "TASK_ALREADY_BOUND"

    def __init__(self, task_id: int, workflow_id: int):
        self.task_id = task_id
        self.workflow_id = workflow_id
        super().__init__(f"Task {task_id} already belongs to workflow {workflow_id}")


class RoleNameConflictError(ConflictError):
    code: str = "ROLE_NAME_CONFLICT"

    def __init__(self, name: str):
        self.name = name
        super().__init__(f"Role already exists: {name}")


class OperationCancelledError(ConflictError):
    """Caller cancelled the operation before commit."""

    code: str = "OPERATION_CANCELLED"

    def __init__(self):
        super().__init__("Operation cancelled before commit")


# Unauthorized


class UnauthorizedError(WorkflowKernelError):
    """Base exception for callers lacking the right to act."""

    code: str = "UNAUTHORIZED"
    http_status: int = 403


class NotAssigneeError(UnauthorizedError):
    code: str = "NOT_ASSIGNEE"

    def __init__(self, user_id: int, step_id: int):
        self.user_id = user_id
        self.step_id = step_id
        super().__init__(f"User {user_id} is not an assignee of step {step_id}")


class NotWorkflowCreatorError(UnauthorizedError):
    code: str = "NOT_WORKFLOW_CREATOR"

    def __init__(self, user_id: int, workflow_id: int, action: str):
        self.user_id = user_id
        self.workflow_id = workflow_id
        self.action = action
        super().__init__(
            f"User {user_id} may not {action} workflow {workflow_id}: not the creator"
        )


class AdminRequiredError(UnauthorizedError):
    code: str = "ADMIN_REQUIRED"

    def __init__(self, user_id: int, action: str):
        self.user_id = user_id
        self.action = action
        super().__init__(f"User {user_id} may not {action}: administrator required")


# Data conflict


class DataConflictError(WorkflowKernelError):
    """Persisted state violates a structural invariant."""

    code: str = "DATA_CONFLICT"
    http_status: int = 500


class MissingCurrentRecordError(DataConflictError):
    code: str = "MISSING_CURRENT_RECORD"

    def __init__(self, workflow_id: int):
        self.workflow_id = workflow_id
        super().__init__(f"Workflow {workflow_id} has no current record")


# Storage


class StorageError(WorkflowKernelError):
    """Underlying database error. The original error is chained as __cause__."""

    code: str = "STORAGE_ERROR"
    http_status: int = 500

    def __init__(self, operation: str, detail: str):
        self.operation = operation
        self.detail = detail
        super().__init__(f"Storage error during {operation}: {detail}")
