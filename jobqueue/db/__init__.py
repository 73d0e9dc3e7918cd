"""
Database module.
Contains database connection, models, and repository implementations.
"""

from jobqueue.db.connection import (
    close_db,
    create_schema,
    create_session_factory,
    get_engine,
    get_session_context,
    get_session_factory,
    get_test_engine,
    init_db,
)
from jobqueue.db.models import Base, Job, db_now

__all__ = [
    "get_session_context",
    "get_session_factory",
    "create_session_factory",
    "create_schema",
    "get_engine",
    "get_test_engine",
    "init_db",
    "close_db",
    "Job",
    "Base",
    "db_now",
]
