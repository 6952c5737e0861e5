"""SQLite database connection and schema management."""

from __future__ import annotations

import sqlite3
from pathlib import Path

from mailtidy.config import Config, load_config

_SCHEMA_PATH = Path(__file__).parent / "schema.sql"

TABLES = [
    "users", "emails", "sync_status", "sync_sessions",
    "reports", "email_candidates", "newsletter_senders",
]


def get_db(config: Config | None = None, db_path: str | None = None) -> sqlite3.Connection:
    """Return a configured SQLite connection.

    Uses WAL mode and row_factory=sqlite3.Row for dict-like access.
    """
    if db_path is None:
        if config is None:
            config = load_config()
        db_path = config.storage.sqlite_path

    # The API shares this connection between concurrent requests: async routes
    # interleave on the event loop and sync dependencies run in the threadpool.
    # Store functions commit before returning, so no transaction spans an await.
    conn = sqlite3.connect(db_path, timeout=10, check_same_thread=False)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA journal_mode=WAL")
    conn.execute("PRAGMA foreign_keys=ON")
    conn.execute("PRAGMA busy_timeout=5000")
    return conn


def init_db(conn: sqlite3.Connection) -> None:
    """Create all tables from schema.sql."""
    schema = _SCHEMA_PATH.read_text()
    conn.executescript(schema)


def reset_db(config: Config | None = None) -> sqlite3.Connection:
    """Drop and recreate the database. Returns a fresh connection."""
    if config is None:
        config = load_config()

    db_path = Path(config.storage.sqlite_path)
    if db_path.exists():
        db_path.unlink()

    conn = get_db(config)
    init_db(conn)
    return conn


def migrate_db(conn: sqlite3.Connection) -> list[str]:
    """Add columns introduced after a database was first created.

    ``CREATE TABLE IF NOT EXISTS`` never alters an existing table, so a
    database created before ``newsletter_senders.latest_date`` existed lacks it.
    Uses PRAGMA table_info to detect missing columns and ALTER TABLE to add them.
    Returns list of migration actions taken.
    """
    migrations: list[str] = []

    expected_columns = [
        ("newsletter_senders", "latest_date", "TEXT"),
    ]

    for table, column, col_type in expected_columns:
        existing = conn.execute(f"PRAGMA table_info({table})").fetchall()
        existing_names = {row["name"] for row in existing}
        if existing_names and column not in existing_names:
            conn.execute(f"ALTER TABLE {table} ADD COLUMN {column} {col_type}")
            migrations.append(f"Added {table}.{column} ({col_type})")

    if migrations:
        conn.commit()

    return migrations


def db_stats(conn: sqlite3.Connection) -> dict[str, int]:
    """Return row counts for all tables."""
    stats = {}
    for table in TABLES:
        try:
            row = conn.execute(f"SELECT COUNT(*) as cnt FROM {table}").fetchone()
            stats[table] = row["cnt"]
        except sqlite3.OperationalError:
            stats[table] = -1  # table doesn't exist
    return stats
