"""Write services. Each flushes within the caller's transaction."""

from sqlflow_kernel.services.base import BaseService
from sqlflow_kernel.services.role_service import RoleService
from sqlflow_kernel.services.template_service import TemplateService
from sqlflow_kernel.services.workflow_service import WorkflowService, run_task

__all__ = [
    "BaseService",
    "RoleService",
    "TemplateService",
    "WorkflowService",
    "run_task",
]
