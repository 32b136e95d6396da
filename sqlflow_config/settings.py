"""
Runtime settings schema.

Frozen dataclasses for the two things a deployment configures: the
database engine and the background scheduler.  Parsed from YAML by
``sqlflow_config.loader``.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import timedelta


@dataclass(frozen=True)
class EngineSettings:
    """Arguments for ``sqlflow_kernel.db.engine.init_engine_from_url``."""

    database_url: str = "sqlite:///sqlflow.db"
    echo: bool = False
    pool_size: int = 20
    max_overflow: int = 10
    pool_timeout: int = 30
    pool_recycle: int = 1800

    def __post_init__(self) -> None:
        if not self.database_url:
            raise ValueError("database_url must not be empty")
        if self.pool_size < 1:
            raise ValueError(f"pool_size must be >= 1, got {self.pool_size}")
        if self.max_overflow < 0:
            raise ValueError(f"max_overflow must be >= 0, got {self.max_overflow}")


@dataclass(frozen=True)
class SchedulerSettings:
    """Intervals and limits for ``WorkflowScheduler``."""

    due_scan_interval_seconds: float = 30
    expiry_scan_interval_seconds: float = 3600
    retention_days: int = 30
    max_workers: int = 4

    def __post_init__(self) -> None:
        if self.due_scan_interval_seconds <= 0:
            raise ValueError("due_scan_interval_seconds must be positive")
        if self.expiry_scan_interval_seconds <= 0:
            raise ValueError("expiry_scan_interval_seconds must be positive")
        if self.retention_days < 1:
            raise ValueError(f"retention_days must be >= 1, got {self.retention_days}")
        if self.max_workers < 1:
            raise ValueError(f"max_workers must be >= 1, got {self.max_workers}")

    @property
    def retention(self) -> timedelta:
        return timedelta(days=self.retention_days)


@dataclass(frozen=True)
class Settings:
    engine: EngineSettings = field(default_factory=EngineSettings)
    scheduler: SchedulerSettings = field(default_factory=SchedulerSettings)
