"""
Database connection management.

Provides SQLite connection for the provenance ledger.
"""

import sqlite3
from pathlib import Path

DEFAULT_DB_PATH = "llm_provenance.db"


def get_connection(db_path: str = DEFAULT_DB_PATH) -> sqlite3.Connection:
    """Create and return a SQLite connection for the provenance ledger.

    Connections are short-lived and never shared between threads.

    Args:
        db_path: Path to SQLite database file

    Returns:
        SQLite connection with foreign key constraints enabled
    """
    path = Path(db_path)
    conn = sqlite3.connect(str(path), timeout=10.0)
    conn.execute("PRAGMA foreign_keys = ON")
    conn.execute("PRAGMA busy_timeout = 10000")
    return conn
