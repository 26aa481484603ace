"""
SQLite foundation for the document store.
"""

import sqlite3
from contextlib import contextmanager
from typing import Generator

from .config import DB_PATH, SQLITE_TIMEOUT_SEC, ensure_db_directory


def connect(db_path: str = None) -> sqlite3.Connection:
    """Open a connection in autocommit mode; transactions are begun explicitly."""
    path = db_path or DB_PATH
    ensure_db_directory(path)
    conn = sqlite3.connect(path, timeout=SQLITE_TIMEOUT_SEC, isolation_level=None, check_same_thread=False)
    return conn


@contextmanager
def get_db(db_path: str = None) -> Generator[sqlite3.Connection, None, None]:
    """Get a SQLite database connection."""
    conn = connect(db_path)
    try:
        yield conn
    finally:
        conn.close()


def init_db(db_path: str = None):
    """Initialize the database with required tables."""
    with get_db(db_path) as conn:
        cursor = conn.cursor()

        # One row per document; deletes keep a tombstone so versions never repeat
        cursor.execute('''
            CREATE TABLE IF NOT EXISTS documents (
                collection TEXT NOT NULL,
                doc_id TEXT NOT NULL,
                owner TEXT,
                data TEXT NOT NULL DEFAULT '{}',
                version INTEGER NOT NULL DEFAULT 0,
                deleted BOOLEAN NOT NULL DEFAULT FALSE,
                updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                PRIMARY KEY (collection, doc_id)
            )
        ''')

        # Ledger lookups by actor
        cursor.execute('CREATE INDEX IF NOT EXISTS idx_documents_owner ON documents(collection, owner)')


def health_check(db_path: str = None):
    """Check database health."""
    try:
        with get_db(db_path) as conn:
            cursor = conn.cursor()
            cursor.execute("SELECT name FROM sqlite_master WHERE type='table';")
            table_names = [table[0] for table in cursor.fetchall()]
            return 'documents' in table_names
    except sqlite3.Error:
        return False
