"""
BaseService -- abstract base for all kernel services.

Responsibility:
    Provides the common constructor and flush contract for every write
    service.  Services receive a SQLAlchemy ``Session`` and persist with
    ``flush()`` -- never ``commit()``.

Architecture position:
    Kernel > Services -- imperative shell.

Invariants enforced:
    - Transaction boundaries: services flush within the caller's
      transaction and never commit or roll back.  ``session_scope()``
      (or the test harness) owns commit/rollback.
    - Storage errors surface as typed kernel errors: an optimistic version
      mismatch becomes ``ConcurrentTransitionError``; any other
      ``SQLAlchemyError`` becomes ``StorageError`` chained to the original.
"""

from abc import ABC

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from sqlflow_kernel.domain.clock import Clock, SystemClock
from sqlflow_kernel.exceptions import ConcurrentTransitionError, StorageError


class BaseService(ABC):
    """
    Abstract base class for all kernel services.

    Non-goals:
        - Does NOT manage transaction lifecycle (commit/rollback).
        - Does NOT provide read-only views; those live in selectors/.
    """

    def __init__(self, session: Session, clock: Clock | None = None):
        self.session = session
        self.clock = clock or SystemClock()

    def _flush(
        self,
        operation: str,
        *,
        workflow_id: int | None = None,
        record_id: int | None = None,
    ) -> None:
        try:
            self.session.flush()
        except StaleDataError as exc:
            raise ConcurrentTransitionError(workflow_id, record_id) from exc
        except SQLAlchemyError as exc:
            raise StorageError(operation, str(exc)) from exc
