"""Read-only query selectors."""

from sqlflow_kernel.selectors.base import BaseSelector
from sqlflow_kernel.selectors.identity_selector import IdentitySelector
from sqlflow_kernel.selectors.report_selector import WorkflowReportSelector
from sqlflow_kernel.selectors.workflow_selector import WorkflowSelector

__all__ = [
    "BaseSelector",
    "IdentitySelector",
    "WorkflowReportSelector",
    "WorkflowSelector",
]
