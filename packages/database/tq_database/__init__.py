"""tq_database - Database models and session management for TriageQueue."""

from tq_database.base import Base
from tq_database.session import dispose_engine, get_async_session, get_session_factory

__all__ = [
    "Base",
    "dispose_engine",
    "get_async_session",
    "get_session_factory",
]
