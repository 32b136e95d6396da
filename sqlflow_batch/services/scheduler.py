"""
WorkflowScheduler -- In-process due-scan and expiry-scan loops.

Contract:
    - ``dispatch_due()`` finds workflows whose ``scheduled_at`` has passed
      and hands each to a bounded worker pool that executes it through the
      task runner.
    - ``expire()`` deletes finished / canceled workflows older than the
      retention period.
    - ``start()`` / ``stop()`` run both scans on background threads.

Architecture: sqlflow_batch/services.  Drives sqlflow_kernel's
    WorkflowService and WorkflowSelector; owns no persistent state.

Invariants enforced:
    - All timestamps come from the injected Clock.
    - A workflow is executed by at most one worker of this process at a time
      (in-flight set under a mutex).  The record row lock and the status
      re-check in ``start_scheduled_execution`` cover other processes.
    - Each workflow is executed and each expired workflow deleted in its
      own transaction; one failure never aborts the rest of a scan.
    - Failures are logged and counted in ``stats``; the next tick retries
      whatever is still due.
"""

from __future__ import annotations

import threading
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Callable
from uuid import uuid4

from sqlalchemy.orm import Session

from sqlflow_config.settings import SchedulerSettings
from sqlflow_kernel.db.engine import session_scope
from sqlflow_kernel.domain.clock import Clock, SystemClock
from sqlflow_kernel.domain.runner import TaskRunner
from sqlflow_kernel.domain.workflow import Workflow
from sqlflow_kernel.logging_config import LogContext, get_logger
from sqlflow_kernel.selectors.workflow_selector import WorkflowSelector
from sqlflow_kernel.services.workflow_service import WorkflowService, run_task

logger = get_logger("batch.scheduler")


@dataclass
class SchedulerStats:
    """Counters for the two scans. Updated from worker threads."""

    due_dispatched: int = 0
    executions_completed: int = 0
    execution_failures: int = 0
    scan_failures: int = 0
    expired_deleted: int = 0
    expiry_failures: int = 0
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False, compare=False)

    def incr(self, name: str, amount: int = 1) -> None:
        with self._lock:
            setattr(self, name, getattr(self, name) + amount)


class WorkflowScheduler:
    """In-process scheduler for due executions and retention expiry.

    Non-goals:
        - NOT a distributed scheduler (no leader election); running several
          processes is safe only because every transition re-checks state
          under the record lock.
    """

    def __init__(
        self,
        session_factory: Callable[[], Session],
        runner: TaskRunner,
        clock: Clock | None = None,
        *,
        due_interval_seconds: float = 30,
        expiry_interval_seconds: float = 3600,
        retention: timedelta = timedelta(days=30),
        max_workers: int = 4,
    ):
        self._session_factory = session_factory
        self._runner = runner
        self._clock = clock or SystemClock()
        self._due_interval = due_interval_seconds
        self._expiry_interval = expiry_interval_seconds
        self._retention = retention
        self._max_workers = max_workers

        self._in_flight: set[int] = set()
        self._in_flight_lock = threading.Lock()
        self._pool: ThreadPoolExecutor | None = None
        self._pool_lock = threading.Lock()
        self._stop_event = threading.Event()
        self._cancel_event = threading.Event()
        self._threads: list[threading.Thread] = []

        self.stats = SchedulerStats()

    @classmethod
    def from_settings(
        cls,
        settings: SchedulerSettings,
        session_factory: Callable[[], Session],
        runner: TaskRunner,
        clock: Clock | None = None,
    ) -> WorkflowScheduler:
        return cls(
            session_factory,
            runner,
            clock,
            due_interval_seconds=settings.due_scan_interval_seconds,
            expiry_interval_seconds=settings.expiry_scan_interval_seconds,
            retention=settings.retention,
            max_workers=settings.max_workers,
        )

    # -------------------------------------------------------------------------
    # Public API
    # -------------------------------------------------------------------------

    def dispatch_due(self) -> list[Future]:
        """Submit every due workflow not already in flight (public for testing).

        Returns one future per submitted workflow; each resolves to the
        workflow's final DTO, or None if it was skipped or failed.
        """
        session = self._session_factory()
        try:
            due_ids = WorkflowSelector(session).list_due_workflow_ids(self._clock.now())
        except Exception:
            self.stats.incr("scan_failures")
            logger.exception("due_scan_failed")
            return []
        finally:
            session.close()

        futures: list[Future] = []
        for workflow_id in due_ids:
            with self._in_flight_lock:
                if workflow_id in self._in_flight:
                    continue
                self._in_flight.add(workflow_id)
            try:
                future = self._executor().submit(self._execute_scheduled, workflow_id)
            except RuntimeError:
                # Pool already shut down by stop().
                with self._in_flight_lock:
                    self._in_flight.discard(workflow_id)
                logger.warning("due_dispatch_refused", extra={"workflow_id": workflow_id})
                break
            futures.append(future)

        if futures:
            self.stats.incr("due_dispatched", len(futures))
            logger.info(
                "due_workflows_dispatched",
                extra={"dispatched": len(futures), "due": len(due_ids)},
            )
        return futures

    def expire(self) -> int:
        """Delete workflows past retention (public for testing).

        Returns the number of workflows deleted.
        """
        cutoff = self._clock.now() - self._retention
        session = self._session_factory()
        try:
            expired_ids = WorkflowSelector(session).list_expired_workflow_ids(cutoff)
        except Exception:
            self.stats.incr("scan_failures")
            logger.exception("expiry_scan_failed")
            return 0
        finally:
            session.close()

        deleted = 0
        for workflow_id in expired_ids:
            if self._stop_event.is_set():
                break
            try:
                with session_scope(self._session_factory) as session:
                    with LogContext.bind(workflow_id=workflow_id):
                        self._service(session).delete_workflow(workflow_id)
                deleted += 1
            except Exception:
                self.stats.incr("expiry_failures")
                logger.exception(
                    "expired_workflow_delete_failed",
                    extra={"workflow_id": workflow_id},
                )

        self.stats.incr("expired_deleted", deleted)
        logger.info(
            "expiry_scan_completed",
            extra={"candidates": len(expired_ids), "deleted": deleted, "cutoff": cutoff},
        )
        return deleted

    def in_flight(self) -> frozenset[int]:
        with self._in_flight_lock:
            return frozenset(self._in_flight)

    def start(self) -> None:
        """Start both scans on background threads."""
        if self.is_running:
            return
        self._stop_event.clear()
        self._cancel_event.clear()
        self._threads = [
            threading.Thread(
                target=self._run_loop,
                args=(self.dispatch_due, self._due_interval, "due"),
                name="workflow-due-scan",
                daemon=True,
            ),
            threading.Thread(
                target=self._run_loop,
                args=(self.expire, self._expiry_interval, "expiry"),
                name="workflow-expiry-scan",
                daemon=True,
            ),
        ]
        for thread in self._threads:
            thread.start()
        logger.info(
            "scheduler_started",
            extra={
                "due_interval": self._due_interval,
                "expiry_interval": self._expiry_interval,
                "retention_days": self._retention.days,
                "max_workers": self._max_workers,
            },
        )

    def stop(self, timeout: float = 30.0, cancel_running: bool = False) -> None:
        """Signal stop, wait for the loops and drain the worker pool.

        Args:
            timeout: Max seconds to wait for each loop thread.
            cancel_running: Also signal cancellation to running executions;
                the runner decides how quickly to honour it.
        """
        self._stop_event.set()
        if cancel_running:
            self._cancel_event.set()
        for thread in self._threads:
            if thread.is_alive():
                thread.join(timeout=timeout)
        with self._pool_lock:
            pool, self._pool = self._pool, None
        if pool is not None:
            pool.shutdown(wait=True)
        logger.info("scheduler_stopped")

    @property
    def is_running(self) -> bool:
        return any(t.is_alive() for t in self._threads)

    # -------------------------------------------------------------------------
    # Internal
    # -------------------------------------------------------------------------

    def _service(self, session: Session) -> WorkflowService:
        return WorkflowService(session, clock=self._clock, runner=self._runner)

    def _executor(self) -> ThreadPoolExecutor:
        with self._pool_lock:
            if self._pool is None:
                self._pool = ThreadPoolExecutor(
                    max_workers=self._max_workers,
                    thread_name_prefix="workflow-exec",
                )
            return self._pool

    def _run_loop(self, tick: Callable[[], object], interval: float, name: str) -> None:
        """Background loop. Exits when stop_event is set."""
        while not self._stop_event.is_set():
            try:
                tick()
            except Exception:
                logger.exception("scheduler_tick_failed", extra={"loop": name})
            self._stop_event.wait(timeout=interval)

    def _execute_scheduled(self, workflow_id: int) -> Workflow | None:
        """Worker body, run under a fresh correlation id."""
        with LogContext.bind(correlation_id=str(uuid4()), workflow_id=workflow_id):
            return self._do_execute_scheduled(workflow_id)

    def _do_execute_scheduled(self, workflow_id: int) -> Workflow | None:
        """Start, run, then record the result in a second transaction."""
        try:
            with session_scope(self._session_factory) as session:
                started = self._service(session).start_scheduled_execution(workflow_id)
            if started is None:
                return None

            with LogContext.bind(
                record_id=started.record.record_id, task_id=started.record.task_id
            ):
                outcome = run_task(self._runner, started.record.task_id, self._cancel_event)
            if outcome is None:
                logger.info(
                    "scheduled_execution_pending",
                    extra={"workflow_id": workflow_id, "task_id": started.record.task_id},
                )
                return started

            with session_scope(self._session_factory) as session:
                finished = self._service(session).record_execution_result(workflow_id, outcome)
            self.stats.incr("executions_completed")
            return finished
        except Exception:
            self.stats.incr("execution_failures")
            logger.exception("scheduled_execution_failed", extra={"workflow_id": workflow_id})
            return None
        finally:
            with self._in_flight_lock:
                self._in_flight.discard(workflow_id)
