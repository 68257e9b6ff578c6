"""
Database connection management.

Provides SQLite connections for the knowledge cache and the cost ledger.
"""

import sqlite3
from pathlib import Path

DEFAULT_DB_PATH = "ai_smart_router.db"

# Seconds a writer waits on a locked database before failing
BUSY_TIMEOUT = 30.0


def get_connection(db_path: str = DEFAULT_DB_PATH) -> sqlite3.Connection:
    """Create and return a SQLite database connection with foreign keys enabled.

    Every call opens its own connection, so concurrent request threads never
    share one. The busy timeout makes concurrent writers queue on the
    database lock instead of failing.

    Args:
        db_path: Path to SQLite database file

    Returns:
        SQLite connection with foreign key constraints enabled
    """
    path = Path(db_path)
    conn = sqlite3.connect(str(path), timeout=BUSY_TIMEOUT)
    conn.execute("PRAGMA foreign_keys = ON")
    return conn
