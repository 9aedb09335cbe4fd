"""
Database connection management.

Provides SQLite connection for durable event storage.
"""

import sqlite3
from pathlib import Path


class StoreUnavailableError(RuntimeError):
    """Raised when the durable backing store cannot be reached or read."""


def get_connection(db_path: str = "agent_analytics.db", create: bool = True) -> sqlite3.Connection:
    """Create and return a SQLite database connection.

    Args:
        db_path: Path to SQLite database file
        create: Create the file when missing; otherwise a missing file is an error

    Returns:
        SQLite connection

    Raises:
        StoreUnavailableError: If the database cannot be opened
    """
    path = Path(db_path)
    try:
        if create:
            conn = sqlite3.connect(str(path))
        else:
            if not path.exists():
                raise StoreUnavailableError(f"Event database not found: {db_path}")
            conn = sqlite3.connect(f"file:{path}?mode=rw", uri=True)
    except sqlite3.Error as e:
        raise StoreUnavailableError(f"Cannot open event database {db_path}: {e}") from e
    conn.row_factory = sqlite3.Row
    return conn
