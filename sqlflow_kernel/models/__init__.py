"""ORM models for the workflow engine."""

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
from sqlflow_kernel.models.template import (
    WorkflowStepTemplateModel,
    WorkflowTemplateModel,
    workflow_step_template_user,
)
from sqlflow_kernel.models.workflow import (
    WorkflowModel,
    WorkflowRecordModel,
    WorkflowStepModel,
    workflow_record_history,
    workflow_step_user,
)

__all__ = [
    "InstanceModel",
    "RoleModel",
    "RoleOperationModel",
    "UserGroupModel",
    "UserModel",
    "TaskModel",
    "WorkflowStepTemplateModel",
    "WorkflowTemplateModel",
    "WorkflowModel",
    "WorkflowRecordModel",
    "WorkflowStepModel",
    "instance_roles",
    "role_user_groups",
    "role_users",
    "user_group_users",
    "workflow_record_history",
    "workflow_step_template_user",
    "workflow_step_user",
]
