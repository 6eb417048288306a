"""
Database connection management.

Provides SQLite connection for the account mirror and object catalog.
"""

import sqlite3
from pathlib import Path


def get_connection(db_path: str = "vault_guard.db") -> sqlite3.Connection:
    """Create and return a SQLite database connection.

    Connections are opened per operation, so request threads and the
    reconciliation thread never share one. The busy timeout lets concurrent
    writers for different addresses queue instead of failing.

    Args:
        db_path: Path to SQLite database file

    Returns:
        SQLite connection with foreign key constraints enabled
    """
    path = Path(db_path)
    conn = sqlite3.connect(str(path), timeout=30.0)
    conn.execute("PRAGMA foreign_keys = ON")
    return conn
