"""Tests for schema creation and migration."""

import sqlite3

import pytest

from mailtidy.database import TABLES, db_stats, get_db, init_db, migrate_db


def test_init_creates_all_tables(db):
    names = {
        r["name"] for r in db.execute("SELECT name FROM sqlite_master WHERE type = 'table'")
    }
    for table in TABLES:
        assert table in names


def test_init_is_idempotent(db):
    """Running the schema twice is harmless."""
    init_db(db)
    assert db_stats(db)["emails"] == 0


def test_emails_unique_per_user(db):
    db.execute("INSERT INTO users (email) VALUES ('a@x.com')")
    db.execute("INSERT INTO users (email) VALUES ('b@x.com')")
    row = "INSERT INTO emails (user_email, gmail_id, date, last_synced) VALUES (?, 'm1', '2024-01-01T00:00:00+00:00', '2024-01-02T00:00:00+00:00')"
    db.execute(row, ("a@x.com",))
    db.execute(row, ("b@x.com",))
    with pytest.raises(sqlite3.IntegrityError):
        db.execute(row, ("a@x.com",))


def test_report_children_cascade(db):
    db.execute("INSERT INTO users (email) VALUES ('a@x.com')")
    db.execute(
        "INSERT INTO reports (id, user_email, created_at) VALUES ('r1', 'a@x.com', '2024-01-01')"
    )
    db.execute("INSERT INTO email_candidates (report_id, gmail_id, recommendation) VALUES ('r1', 'm1', 'delete')")
    db.execute("INSERT INTO newsletter_senders (report_id, sender_email) VALUES ('r1', 's@x.com')")
    db.execute("DELETE FROM reports WHERE id = 'r1'")

    stats = db_stats(db)
    assert stats["email_candidates"] == 0
    assert stats["newsletter_senders"] == 0


def test_migrate_adds_missing_columns():
    """A sender table from before latest_date gains the column."""
    conn = sqlite3.connect(":memory:")
    conn.row_factory = sqlite3.Row
    conn.execute(
        "CREATE TABLE newsletter_senders (id INTEGER PRIMARY KEY, report_id TEXT, sender_email TEXT)"
    )

    actions = migrate_db(conn)

    columns = {r["name"] for r in conn.execute("PRAGMA table_info(newsletter_senders)")}
    assert "latest_date" in columns
    assert actions == ["Added newsletter_senders.latest_date (TEXT)"]


def test_migrate_skips_missing_tables():
    conn = sqlite3.connect(":memory:")
    conn.row_factory = sqlite3.Row
    assert migrate_db(conn) == []


def test_migrate_current_schema_is_noop(db):
    assert migrate_db(db) == []


def test_get_db_file(tmp_path):
    conn = get_db(db_path=str(tmp_path / "t.db"))
    init_db(conn)
    assert conn.execute("PRAGMA journal_mode").fetchone()[0] == "wal"
    conn.close()
