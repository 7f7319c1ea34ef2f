"""
Database Infrastructure Package for the Entitlement Engine

Exports engine/session management used by the SQL store, Alembic and the
maintenance script.
"""

from app.infrastructure.db.database import (
    DatabaseManager,
    get_db_manager,
    get_session,
    get_session_context,
    init_db,
    close_db,
    normalize_database_url,
)


__all__ = [
    "DatabaseManager",
    "get_db_manager",
    "get_session",
    "get_session_context",
    "init_db",
    "close_db",
    "normalize_database_url",
]
