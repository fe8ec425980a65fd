"""
Database connection management.

Provides SQLite connections for usage counter persistence.
"""

import sqlite3
from pathlib import Path

DEFAULT_DB_PATH = "ai_quota_router.db"

# Seconds a writer waits on a locked database before giving up
BUSY_TIMEOUT_SECONDS = 30.0


def get_connection(db_path: str = DEFAULT_DB_PATH) -> sqlite3.Connection:
    """Create and return a SQLite database connection with foreign keys enabled.
    
    Concurrent writers wait on the database lock for up to
    BUSY_TIMEOUT_SECONDS instead of failing immediately.
    
    Args:
        db_path: Path to SQLite database file
        
    Returns:
        SQLite connection with foreign key constraints enabled
    """
    path = Path(db_path)
    conn = sqlite3.connect(str(path), timeout=BUSY_TIMEOUT_SECONDS)
    conn.execute("PRAGMA foreign_keys = ON")
    return conn
