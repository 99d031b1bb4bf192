"""
Database connection management.

Provides SQLite connections for the reference billing store. Query paths
open read-only connections; only schema setup and seeding write.
"""

import sqlite3
from pathlib import Path

DEFAULT_DB_PATH = "billing_query.db"
# Seconds to wait on a locked database before failing
BUSY_TIMEOUT_SECONDS = 5.0


def get_connection(db_path: str = DEFAULT_DB_PATH, read_only: bool = False) -> sqlite3.Connection:
    """Create and return a SQLite database connection.

    Args:
        db_path: Path to SQLite database file
        read_only: Reject writes on this connection

    Returns:
        SQLite connection
    """
    conn = sqlite3.connect(str(Path(db_path)), timeout=BUSY_TIMEOUT_SECONDS)
    if read_only:
        conn.execute("PRAGMA query_only = ON")
    return conn
