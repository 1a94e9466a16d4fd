"""
Database connection management.

Provides SQLite connections shared by the counter store and the usage ledger.
"""

import sqlite3
from pathlib import Path

DEFAULT_DB_PATH = "pagespeed_watcher.db"

# Seconds a writer waits for a competing writer's lock before failing
BUSY_TIMEOUT = 30.0


def get_connection(db_path: str = DEFAULT_DB_PATH) -> sqlite3.Connection:
    """Create and return a SQLite connection.

    Args:
        db_path: Path to SQLite database file

    Returns:
        SQLite connection with a busy timeout so concurrent writers queue
    """
    path = Path(db_path)
    conn = sqlite3.connect(str(path), timeout=BUSY_TIMEOUT)
    conn.execute("PRAGMA foreign_keys = ON")
    return conn
