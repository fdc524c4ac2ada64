"""
Database Connection and Utilities

Async SQLAlchemy engine and session management.
"""

from shared.database.postgres import (
    Base,
    close_db,
    get_db,
    get_engine,
    get_session_factory,
    init_db,
    init_engine,
)

__all__ = [
    "Base",
    "get_db",
    "get_engine",
    "get_session_factory",
    "init_db",
    "init_engine",
    "close_db",
]
