"""
Settings loader (``sqlflow_config.loader``).

Responsibility
--------------
Reads one YAML file and parses it into ``sqlflow_config.settings``
dataclasses.  Missing sections and keys fall back to the dataclass
defaults; unknown ones are rejected so that typos surface at startup.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Unknown section or key, wrong top-level shape, or an out-of-range
  value  -> ``ValueError``.

Example
-------
::

    engine:
      database_url: postgresql://wf:wf@localhost/sqlflow
      pool_size: 10
    scheduler:
      due_scan_interval_seconds: 15
      retention_days: 90
"""

from __future__ import annotations

import dataclasses
from pathlib import Path
from typing import Any

import yaml

from sqlflow_config.settings import EngineSettings, SchedulerSettings, Settings
from sqlflow_kernel.logging_config import get_logger

logger = get_logger("config.loader")

_SECTIONS: dict[str, type] = {
    "engine": EngineSettings,
    "scheduler": SchedulerSettings,
}


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
        ValueError: if the top level is not a mapping.
    """
    with open(path, encoding="utf-8") as f:
        data = yaml.safe_load(f)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValueError(f"{path}: top level must be a mapping, got {type(data).__name__}")
    return data


def _parse_section(name: str, cls: type, data: Any) -> Any:
    if data is None:
        return cls()
    if not isinstance(data, dict):
        raise ValueError(f"section '{name}' must be a mapping")
    known = {f.name for f in dataclasses.fields(cls)}
    unknown = sorted(set(data) - known)
    if unknown:
        raise ValueError(f"unknown key(s) in section '{name}': {', '.join(unknown)}")
    return cls(**data)


def parse_settings(data: dict[str, Any]) -> Settings:
    unknown = sorted(set(data) - set(_SECTIONS))
    if unknown:
        raise ValueError(f"unknown configuration section(s): {', '.join(unknown)}")
    return Settings(
        **{name: _parse_section(name, cls, data.get(name)) for name, cls in _SECTIONS.items()}
    )


def load_settings(path: str | Path | None = None) -> Settings:
    """Load settings from ``path``; defaults when ``path`` is None."""
    if path is None:
        return Settings()
    path = Path(path)
    settings = parse_settings(load_yaml_file(path))
    logger.info(
        "settings_loaded",
        extra={
            "path": str(path),
            "dialect": settings.engine.database_url.split(":", 1)[0],
            "retention_days": settings.scheduler.retention_days,
        },
    )
    return settings
