"""
SQLite foundation for the record store: connection setup, schema and health check.
"""

import sqlite3

from .config import ensure_db_directory
from .errors import StoreUnavailable

REQUIRED_TABLES = ['records', 'vectors', 'edges', 'sessions', 'clusters', 'privacy_rules']


def connect(db_path: str) -> sqlite3.Connection:
    """Open a connection for the record store.

    File databases use WAL journaling. The connection may be shared across
    threads; callers serialise access themselves.
    """
    try:
        ensure_db_directory(db_path)
        conn = sqlite3.connect(db_path, check_same_thread=False)
        conn.row_factory = sqlite3.Row
        if db_path != ":memory:":
            conn.execute("PRAGMA journal_mode=WAL")
        conn.execute("PRAGMA foreign_keys=ON")
        return conn
    except (sqlite3.Error, OSError) as e:
        raise StoreUnavailable(f"Could not open record store at {db_path}: {e}") from e


def init_db(conn: sqlite3.Connection) -> None:
    """Initialize the database with required tables and lookup indices."""
    try:
        with conn:
            cursor = conn.cursor()

            cursor.execute('''
                CREATE TABLE IF NOT EXISTS records (
                    id TEXT PRIMARY KEY,
                    url TEXT NOT NULL,
                    title TEXT NOT NULL DEFAULT '',
                    body_text TEXT NOT NULL DEFAULT '',
                    timestamp INTEGER NOT NULL,
                    keywords TEXT NOT NULL DEFAULT '[]',  -- JSON array, order preserved
                    domain TEXT NOT NULL DEFAULT '',
                    session_id TEXT,
                    tab_ref INTEGER
                )
            ''')
            cursor.execute('CREATE INDEX IF NOT EXISTS idx_records_domain ON records(domain)')
            cursor.execute('CREATE INDEX IF NOT EXISTS idx_records_ts ON records(timestamp DESC)')
            cursor.execute('CREATE INDEX IF NOT EXISTS idx_records_session ON records(session_id)')
            cursor.execute('CREATE INDEX IF NOT EXISTS idx_records_url ON records(url)')

            cursor.execute('''
                CREATE TABLE IF NOT EXISTS vectors (
                    record_id TEXT PRIMARY KEY,
                    components BLOB NOT NULL,  -- float64, little endian
                    dimension INTEGER NOT NULL,
                    model_tag TEXT NOT NULL,
                    generated_at INTEGER NOT NULL
                )
            ''')

            cursor.execute('''
                CREATE TABLE IF NOT EXISTS edges (
                    id TEXT PRIMARY KEY,
                    from_id TEXT NOT NULL,
                    to_id TEXT NOT NULL,
                    strength REAL NOT NULL,
                    created_at INTEGER NOT NULL
                )
            ''')
            cursor.execute('CREATE INDEX IF NOT EXISTS idx_edges_from ON edges(from_id, strength DESC)')
            cursor.execute('CREATE INDEX IF NOT EXISTS idx_edges_to ON edges(to_id)')

            cursor.execute('''
                CREATE TABLE IF NOT EXISTS sessions (
                    id TEXT PRIMARY KEY,
                    start_time INTEGER NOT NULL,
                    end_time INTEGER
                )
            ''')
            cursor.execute('CREATE INDEX IF NOT EXISTS idx_sessions_start ON sessions(start_time)')

            cursor.execute('''
                CREATE TABLE IF NOT EXISTS clusters (
                    id TEXT PRIMARY KEY,
                    name TEXT NOT NULL,
                    member_ids TEXT NOT NULL DEFAULT '[]',
                    created_at INTEGER NOT NULL
                )
            ''')

            cursor.execute('''
                CREATE TABLE IF NOT EXISTS privacy_rules (
                    id TEXT PRIMARY KEY,
                    kind TEXT NOT NULL CHECK (kind IN ('domain', 'date', 'keyword')),
                    value TEXT NOT NULL,
                    status TEXT NOT NULL DEFAULT 'active' CHECK (status IN ('active', 'inactive')),
                    created_at INTEGER NOT NULL
                )
            ''')
            cursor.execute('CREATE INDEX IF NOT EXISTS idx_rules_status ON privacy_rules(status)')
    except sqlite3.Error as e:
        raise StoreUnavailable(f"Could not initialise record store schema: {e}") from e


def health_check(conn: sqlite3.Connection) -> bool:
    """Check database health."""
    try:
        cursor = conn.execute("SELECT name FROM sqlite_master WHERE type='table'")
        table_names = [row[0] for row in cursor.fetchall()]
        return all(table in table_names for table in REQUIRED_TABLES)
    except sqlite3.Error:
        return False
