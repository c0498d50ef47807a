"""
SQLite connection handling and schema for the ledger database.
"""

import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Generator, Union


@contextmanager
def get_db(db_path: Union[str, Path]) -> Generator[sqlite3.Connection, None, None]:
    """Get a SQLite database connection."""
    Path(db_path).parent.mkdir(parents=True, exist_ok=True)
    # Autocommit mode; callers open explicit transactions where they need one
    conn = sqlite3.connect(str(db_path), timeout=30, isolation_level=None)
    try:
        yield conn
    finally:
        conn.close()


def init_db(db_path: Union[str, Path]):
    """Initialize the database with required tables."""
    with get_db(db_path) as conn:
        cursor = conn.cursor()

        # Write-once verdict ledger; UNIQUE (address, reviewer) is the create-if-absent guard
        cursor.execute('''
            CREATE TABLE IF NOT EXISTS records (
                seq INTEGER PRIMARY KEY AUTOINCREMENT,
                address TEXT NOT NULL,
                reviewer TEXT NOT NULL,
                verdict TEXT NOT NULL,
                recorded_at REAL NOT NULL,
                origin TEXT,
                UNIQUE (address, reviewer)
            )
        ''')

        cursor.execute('''
            CREATE TABLE IF NOT EXISTS remotes (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                name TEXT NOT NULL UNIQUE,
                endpoint_uri TEXT NOT NULL,
                auth_material TEXT NOT NULL DEFAULT '{}',
                latest_seen REAL NOT NULL DEFAULT 0,
                last_sent REAL NOT NULL DEFAULT 0
            )
        ''')

        # Create indexes for performance
        cursor.execute('CREATE INDEX IF NOT EXISTS idx_records_recorded_at ON records(recorded_at)')
        cursor.execute('CREATE INDEX IF NOT EXISTS idx_records_address ON records(address)')


def health_check(db_path: Union[str, Path]) -> bool:
    """Check database health."""
    try:
        with get_db(db_path) as conn:
            cursor = conn.cursor()
            cursor.execute("SELECT name FROM sqlite_master WHERE type='table';")
            tables = cursor.fetchall()

            # Check if required tables exist
            table_names = [table[0] for table in tables]
            required_tables = ['records', 'remotes']

            return all(table in table_names for table in required_tables)
    except sqlite3.Error:
        return False
