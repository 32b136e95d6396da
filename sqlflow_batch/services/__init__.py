from sqlflow_batch.services.scheduler import SchedulerStats, WorkflowScheduler

__all__ = ["SchedulerStats", "WorkflowScheduler"]
