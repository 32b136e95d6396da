"""
Task runner protocol (``sqlflow_kernel.domain.runner``).

The engine never issues SQL itself.  Execution is delegated to a runner
supplied by the embedding application (the driver layer).  A runner may
finish synchronously by returning a ``RunOutcome``, or return ``None`` and
later report through ``WorkflowService.record_execution_result``.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass
from typing import Protocol, runtime_checkable


@dataclass(frozen=True)
class RunOutcome:
    success: bool
    message: str = ""

    @classmethod
    def succeeded(cls, message: str = "") -> RunOutcome:
        return cls(success=True, message=message)

    @classmethod
    def failed(cls, message: str) -> RunOutcome:
        return cls(success=False, message=message)


@runtime_checkable
class TaskRunner(Protocol):
    """
    Executes a task's SQL against its instance.

    Contract:
        ``cancel`` is set when the caller abandons the execution.  A runner
        that observes it should stop and return a failed outcome.
        Exceptions raised by ``run`` are treated as failed outcomes.
    """

    def run(self, task_id: int, cancel: threading.Event) -> RunOutcome | None:
        ...
