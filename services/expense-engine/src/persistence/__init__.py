"""Persistence primitives for the expense engine."""

from persistence.database import (
    DB_URL_ENV_VAR,
    DEFAULT_DB_FILENAME,
    DEFAULT_DB_PATH,
    SessionLocal,
    build_engine,
    get_database_url,
    get_engine,
    get_session_factory,
    init_db,
)
from persistence.models import AuditEvent, Base, TransactionRecord
from persistence.repository import SqlTransactionRepository

__all__ = [
    "AuditEvent",
    "Base",
    "DB_URL_ENV_VAR",
    "DEFAULT_DB_FILENAME",
    "DEFAULT_DB_PATH",
    "SessionLocal",
    "SqlTransactionRepository",
    "TransactionRecord",
    "build_engine",
    "get_database_url",
    "get_engine",
    "get_session_factory",
    "init_db",
]
