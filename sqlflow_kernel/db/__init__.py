"""Database layer - engine, base classes, transactional scope."""

from sqlflow_kernel.db.base import Base, Identifier, TrackedBase, live
from sqlflow_kernel.db.engine import (
    create_tables,
    get_engine,
    get_session,
    get_session_factory,
    init_engine_from_url,
    session_scope,
)

__all__ = [
    "get_engine",
    "get_session",
    "get_session_factory",
    "init_engine_from_url",
    "session_scope",
    "create_tables",
    "Base",
    "TrackedBase",
    "Identifier",
    "live",
]
