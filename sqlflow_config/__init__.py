"""
sqlflow_config -- Deployment settings for the workflow engine.

Responsibility:
    Single entry point for runtime settings via ``load_settings()``.
    Settings are frozen dataclasses; nothing else reads configuration
    files.

Architecture position:
    Configuration.  Sits beside ``sqlflow_kernel`` and
    ``sqlflow_batch``; the kernel never imports from here.
"""

from sqlflow_config.loader import load_settings, parse_settings
from sqlflow_config.settings import EngineSettings, SchedulerSettings, Settings

__all__ = [
    "EngineSettings",
    "SchedulerSettings",
    "Settings",
    "load_settings",
    "parse_settings",
]
