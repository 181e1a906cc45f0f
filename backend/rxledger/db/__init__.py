"""
Database connections for RxLedger.

- PostgreSQL/SQLite: relational index mirroring ledger records (via SQLAlchemy)
"""

from .postgres import db, init_db, get_db_session

__all__ = [
    "db",
    "init_db",
    "get_db_session",
]
