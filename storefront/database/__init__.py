"""
Database Module
"""
from .connection import (
    init_database,
    close_database,
    get_db,
    get_engine,
    get_session_factory,
    create_engine_for_url,
    create_session_factory,
    create_tables,
    check_database_health,
)
from .models import Base

__all__ = [
    "init_database",
    "close_database",
    "get_db",
    "get_engine",
    "get_session_factory",
    "create_engine_for_url",
    "create_session_factory",
    "create_tables",
    "check_database_health",
    "Base",
]
