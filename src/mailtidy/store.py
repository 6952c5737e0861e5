"""Persistence layer: every read and write of mailbox, sync and report state.

All functions take the connection first and are scoped by the owning user's
email address, so one user's calls never touch another user's rows.
"""

from __future__ import annotations

import json
import sqlite3
import uuid
from datetime import datetime

from mailtidy.analysis.report import percentage
from mailtidy.errors import CandidateNotFoundError, ReportNotFoundError
from mailtidy.models import (
    AnalysisRequest,
    Attachment,
    Category,
    CleanupReport,
    DomainStat,
    Message,
    Recommendation,
    SenderFrequencyReport,
    SenderStat,
    SessionStatus,
    SyncSession,
    SyncStatus,
    from_iso,
    to_iso,
    utcnow,
)

_DELETE_VALUES = (Recommendation.DELETE.value, Recommendation.ARCHIVE.value)


# --- Users ---

def upsert_user(db: sqlite3.Connection, email: str, name: str | None = None) -> None:
    db.execute(
        """INSERT INTO users (email, name) VALUES (?, ?)
           ON CONFLICT(email) DO UPDATE SET name = COALESCE(excluded.name, users.name)""",
        (email, name),
    )
    db.commit()


# --- Emails ---

def _row_to_message(row: sqlite3.Row) -> Message:
    attachments = [
        Attachment(filename=a.get("filename", ""), size=a.get("size", 0))
        for a in json.loads(row["attachments"] or "[]")
    ]
    return Message(
        gmail_id=row["gmail_id"],
        thread_id=row["thread_id"],
        subject=row["subject"] or "",
        sender_email=row["sender_email"] or "",
        sender_name=row["sender_name"] or "",
        recipient=row["recipient"] or "",
        date=from_iso(row["date"]),
        size=row["size"] or 0,
        labels=json.loads(row["labels"] or "[]"),
        snippet=row["snippet"] or "",
        attachments=attachments,
        category=Category(row["category"]) if row["category"] else None,
        last_synced=from_iso(row["last_synced"]) if row["last_synced"] else None,
    )


def upsert_emails(db: sqlite3.Connection, user_email: str, messages: list[Message]) -> int:
    """Insert or refresh cached messages, keyed by Gmail ID.

    Returns the number of rows that did not exist before.
    """
    if not messages:
        return 0

    ids = [m.gmail_id for m in messages]
    existing: set[str] = set()
    # Stay under SQLite's bound-parameter limit
    for start in range(0, len(ids), 500):
        chunk = ids[start:start + 500]
        placeholders = ",".join("?" * len(chunk))
        rows = db.execute(
            f"SELECT gmail_id FROM emails WHERE user_email = ? AND gmail_id IN ({placeholders})",
            (user_email, *chunk),
        ).fetchall()
        existing.update(r["gmail_id"] for r in rows)

    now = to_iso(utcnow())
    db.executemany(
        """INSERT INTO emails
           (user_email, gmail_id, thread_id, subject, sender_email, sender_name,
            recipient, date, size, labels, snippet, has_attachments, attachments,
            category, last_synced)
           VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
           ON CONFLICT(user_email, gmail_id) DO UPDATE SET
               thread_id = excluded.thread_id,
               subject = excluded.subject,
               sender_email = excluded.sender_email,
               sender_name = excluded.sender_name,
               recipient = excluded.recipient,
               date = excluded.date,
               size = excluded.size,
               labels = excluded.labels,
               snippet = excluded.snippet,
               has_attachments = excluded.has_attachments,
               attachments = excluded.attachments,
               category = excluded.category,
               last_synced = excluded.last_synced""",
        [
            (
                user_email, m.gmail_id, m.thread_id, m.subject, m.sender_email,
                m.sender_name, m.recipient, to_iso(m.date), m.size,
                json.dumps(m.labels), m.snippet, m.has_attachments,
                json.dumps([{"filename": a.filename, "size": a.size} for a in m.attachments]),
                m.category.value if m.category else None, now,
            )
            for m in messages
        ],
    )
    db.commit()
    return len(set(ids) - existing)


def delete_emails(db: sqlite3.Connection, user_email: str, gmail_ids: list[str]) -> int:
    deleted = 0
    for start in range(0, len(gmail_ids), 500):
        chunk = gmail_ids[start:start + 500]
        placeholders = ",".join("?" * len(chunk))
        cur = db.execute(
            f"DELETE FROM emails WHERE user_email = ? AND gmail_id IN ({placeholders})",
            (user_email, *chunk),
        )
        deleted += cur.rowcount
    db.commit()
    return deleted


def cleanup_emails_in_range(
    db: sqlite3.Connection,
    user_email: str,
    keep_ids: list[str],
    start: datetime | None,
    end: datetime,
) -> int:
    """Delete cached messages dated within [start, end] that are not in ``keep_ids``.

    A ``start`` of None means the whole cache is in scope.
    """
    db.execute("CREATE TEMP TABLE IF NOT EXISTS synced_ids (gmail_id TEXT PRIMARY KEY)")
    db.execute("DELETE FROM synced_ids")
    db.executemany(
        "INSERT OR IGNORE INTO synced_ids (gmail_id) VALUES (?)",
        [(gid,) for gid in keep_ids],
    )

    sql = """DELETE FROM emails
             WHERE user_email = ?
               AND gmail_id NOT IN (SELECT gmail_id FROM synced_ids)"""
    params: list = [user_email]
    if start is not None:
        sql += " AND date >= ? AND date <= ?"
        params.extend([to_iso(start), to_iso(end)])

    cur = db.execute(sql, params)
    db.execute("DELETE FROM synced_ids")
    db.commit()
    return cur.rowcount


def count_emails(db: sqlite3.Connection, user_email: str) -> int:
    row = db.execute(
        "SELECT COUNT(*) AS cnt FROM emails WHERE user_email = ?", (user_email,)
    ).fetchone()
    return row["cnt"]


def get_emails(
    db: sqlite3.Connection,
    user_email: str,
    start: datetime | None = None,
    limit: int | None = None,
) -> list[Message]:
    """Cached messages newest first, optionally from ``start`` onwards."""
    sql = "SELECT * FROM emails WHERE user_email = ?"
    params: list = [user_email]
    if start is not None:
        sql += " AND date >= ?"
        params.append(to_iso(start))
    sql += " ORDER BY date DESC"
    if limit is not None:
        sql += " LIMIT ?"
        params.append(limit)
    return [_row_to_message(r) for r in db.execute(sql, params).fetchall()]


# --- Sync status (one row per user) ---

def get_sync_status_row(db: sqlite3.Connection, user_email: str) -> sqlite3.Row | None:
    return db.execute(
        "SELECT * FROM sync_status WHERE user_email = ?", (user_email,)
    ).fetchone()


def get_sync_status(db: sqlite3.Connection, user_email: str) -> SyncStatus:
    row = get_sync_status_row(db, user_email)
    if row is None:
        return SyncStatus()
    return SyncStatus(
        in_progress=bool(row["sync_in_progress"]),
        last_sync=row["last_sync"],
        total_emails=row["total_emails"] or 0,
        error_message=row["error_message"],
    )


def claim_sync(db: sqlite3.Connection, user_email: str) -> bool:
    """Atomically mark a sync as running. False if one already is."""
    now = to_iso(utcnow())
    db.execute(
        "INSERT OR IGNORE INTO sync_status (user_email, sync_in_progress, updated_at) VALUES (?, 0, ?)",
        (user_email, now),
    )
    cur = db.execute(
        """UPDATE sync_status
           SET sync_in_progress = 1, error_message = NULL, updated_at = ?
           WHERE user_email = ? AND sync_in_progress = 0""",
        (now, user_email),
    )
    db.commit()
    return cur.rowcount == 1


def update_sync_status(db: sqlite3.Connection, user_email: str, **fields) -> None:
    """Set the given sync_status columns; ``updated_at`` is always refreshed."""
    fields["updated_at"] = to_iso(utcnow())
    assignments = ", ".join(f"{k} = ?" for k in fields)
    db.execute(
        "INSERT OR IGNORE INTO sync_status (user_email) VALUES (?)", (user_email,)
    )
    db.execute(
        f"UPDATE sync_status SET {assignments} WHERE user_email = ?",
        (*fields.values(), user_email),
    )
    db.commit()


# --- Sync sessions ---

def _row_to_session(row: sqlite3.Row) -> SyncSession:
    return SyncSession(
        id=row["id"],
        user_email=row["user_email"],
        started_at=row["started_at"],
        status=SessionStatus(row["status"]),
        completed_at=row["completed_at"],
        options=json.loads(row["options"] or "{}"),
        start_date=row["start_date"],
        end_date=row["end_date"],
        emails_processed=row["emails_processed"],
        total_emails=row["total_emails"],
        current_batch=row["current_batch"],
        total_batches=row["total_batches"],
        error_message=row["error_message"],
    )


def create_session(
    db: sqlite3.Connection,
    user_email: str,
    options: dict,
    start: datetime | None,
    end: datetime,
) -> SyncSession:
    session_id = uuid.uuid4().hex
    now = to_iso(utcnow())
    db.execute(
        """INSERT INTO sync_sessions
           (id, user_email, started_at, status, options, start_date, end_date, updated_at)
           VALUES (?, ?, ?, ?, ?, ?, ?, ?)""",
        (
            session_id, user_email, now, SessionStatus.IN_PROGRESS.value,
            json.dumps(options), to_iso(start) if start else None, to_iso(end), now,
        ),
    )
    db.commit()
    return get_session(db, session_id)


def update_session(db: sqlite3.Connection, session_id: str, **fields) -> None:
    if isinstance(fields.get("status"), SessionStatus):
        fields["status"] = fields["status"].value
    fields["updated_at"] = to_iso(utcnow())
    assignments = ", ".join(f"{k} = ?" for k in fields)
    db.execute(
        f"UPDATE sync_sessions SET {assignments} WHERE id = ?",
        (*fields.values(), session_id),
    )
    db.commit()


def get_session(db: sqlite3.Connection, session_id: str) -> SyncSession | None:
    row = db.execute("SELECT * FROM sync_sessions WHERE id = ?", (session_id,)).fetchone()
    return _row_to_session(row) if row else None


def latest_session(db: sqlite3.Connection, user_email: str) -> SyncSession | None:
    row = db.execute(
        """SELECT * FROM sync_sessions WHERE user_email = ?
           ORDER BY started_at DESC, rowid DESC LIMIT 1""",
        (user_email,),
    ).fetchone()
    return _row_to_session(row) if row else None


def fail_open_sessions(db: sqlite3.Connection, user_email: str, message: str) -> int:
    """Mark any session still in progress as failed."""
    now = to_iso(utcnow())
    cur = db.execute(
        """UPDATE sync_sessions
           SET status = ?, error_message = ?, completed_at = ?, updated_at = ?
           WHERE user_email = ? AND status = ?""",
        (SessionStatus.FAILED.value, message, now, now, user_email,
         SessionStatus.IN_PROGRESS.value),
    )
    db.commit()
    return cur.rowcount


# --- Sender aggregation ---

_DOMAIN_EXPR = """CASE WHEN INSTR(sender_email, '@') > 0
                       THEN LOWER(SUBSTR(sender_email, INSTR(sender_email, '@') + 1))
                       ELSE 'unknown' END"""


def sender_frequency(
    db: sqlite3.Connection,
    user_email: str,
    start: datetime | None = None,
    limit: int = 100,
) -> SenderFrequencyReport:
    """Group cached messages by sender in SQL, then nest senders under their domain.

    ``limit`` caps the number of domains, largest first; every sender of a
    kept domain is returned. Percentages and averages are filled in once the
    overall total is known.
    """
    where = "WHERE user_email = ?"
    params: list = [user_email]
    if start is not None:
        where += " AND date >= ?"
        params.append(to_iso(start))

    totals = db.execute(
        f"SELECT COUNT(*) AS cnt, COALESCE(SUM(size), 0) AS size FROM emails {where}",
        params,
    ).fetchone()

    sender_rows = db.execute(
        f"""SELECT sender_email, sender_name, category, {_DOMAIN_EXPR} AS domain,
                   COUNT(*) AS count, COALESCE(SUM(size), 0) AS total_size,
                   MAX(date) AS latest_date
            FROM emails {where}
            GROUP BY sender_email, sender_name, category
            ORDER BY count DESC, total_size DESC""",
        params,
    ).fetchall()

    domain_rows = db.execute(
        f"""SELECT {_DOMAIN_EXPR} AS domain,
                   COUNT(DISTINCT sender_email) AS unique_senders,
                   COUNT(*) AS total_count,
                   COALESCE(SUM(size), 0) AS total_size
            FROM emails {where}
            GROUP BY domain
            ORDER BY total_count DESC, total_size DESC
            LIMIT ?""",
        (*params, limit),
    ).fetchall()

    total = totals["cnt"]
    domains = [
        DomainStat(
            domain=r["domain"] or "unknown",
            unique_senders=r["unique_senders"],
            total_count=r["total_count"],
            total_size=r["total_size"],
            percentage=percentage(r["total_count"], total),
            avg_email_size=round(r["total_size"] / r["total_count"]),
        )
        for r in domain_rows
    ]
    by_domain = {d.domain: d for d in domains}

    senders: list[SenderStat] = []
    for r in sender_rows:
        domain = by_domain.get(r["domain"] or "unknown")
        if domain is None:
            continue
        stat = SenderStat(
            sender_email=r["sender_email"],
            sender_name=r["sender_name"] or r["sender_email"].split("@")[0],
            count=r["count"],
            total_size=r["total_size"],
            category=Category(r["category"]) if r["category"] else None,
            percentage=percentage(r["count"], total),
            avg_email_size=round(r["total_size"] / r["count"]),
            latest_date=r["latest_date"],
        )
        domain.senders.append(stat)
        senders.append(stat)

    return SenderFrequencyReport(
        total_emails=total, total_size=totals["size"], senders=senders, domains=domains,
    )



# --- Reports ---

def _insert_report(
    db: sqlite3.Connection,
    user_email: str,
    request: AnalysisRequest,
    analysis_type: str,
    **columns,
) -> str:
    report_id = uuid.uuid4().hex
    columns.update(
        id=report_id,
        user_email=user_email,
        analysis_type=analysis_type,
        query=request.query,
        description=request.description,
        mode=request.mode.value,
        created_at=to_iso(utcnow()),
    )
    names = ", ".join(columns)
    placeholders = ", ".join("?" * len(columns))
    db.execute(f"INSERT INTO reports ({names}) VALUES ({placeholders})", tuple(columns.values()))
    return report_id


def _insert_senders(db: sqlite3.Connection, report_id: str, senders: list[SenderStat]) -> None:
    db.executemany(
        """INSERT INTO newsletter_senders
           (report_id, sender_email, sender_name, count, total_size, category,
            percentage, avg_email_size, latest_date)
           VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)""",
        [
            (report_id, s.sender_email, s.sender_name, s.count, s.total_size,
             s.category.value if s.category else None, s.percentage, s.avg_email_size,
             s.latest_date)
            for s in senders
        ],
    )


def save_cleanup_report(
    db: sqlite3.Connection,
    user_email: str,
    report: CleanupReport,
    request: AnalysisRequest,
) -> str:
    """Persist a cleanup report with its candidates and senders. Returns its ID."""
    usage = report.token_usage
    report_id = _insert_report(
        db, user_email, request, report.analysis_type.value,
        total_emails=report.total_emails,
        deletion_candidates=len(report.deletion_candidates),
        keep_candidates=len(report.keep_candidates),
        newsletter_count=len(report.senders),
        total_size=report.total_size,
        potential_savings=report.potential_savings,
        input_tokens=usage.input_tokens,
        output_tokens=usage.output_tokens,
        total_tokens=usage.total_tokens,
        ai_request_count=usage.ai_request_count,
        estimated_cost=report.estimated_cost,
    )
    db.executemany(
        """INSERT INTO email_candidates
           (report_id, gmail_id, subject, sender_email, sender_name, date, size,
            category, recommendation, reasoning, confidence, priority, space_impact,
            follow_up)
           VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
        [
            (
                report_id, c.gmail_id, c.subject, c.sender_email, c.sender_name,
                to_iso(c.date), c.size, c.category.value, c.recommendation.value,
                c.reasoning, c.confidence.value,
                c.priority.value if c.priority else None,
                c.space_impact.value if c.space_impact else None,
                c.follow_up,
            )
            for c in report.deletion_candidates + report.keep_candidates
        ],
    )
    _insert_senders(db, report_id, report.senders)
    db.commit()
    report.id = report_id
    return report_id


def save_sender_frequency_report(
    db: sqlite3.Connection,
    user_email: str,
    report: SenderFrequencyReport,
    request: AnalysisRequest,
) -> str:
    report_id = _insert_report(
        db, user_email, request, report.analysis_type.value,
        total_emails=report.total_emails,
        newsletter_count=len(report.senders),
        total_size=report.total_size,
        summary=json.dumps(report.summary),
    )
    _insert_senders(db, report_id, report.senders)
    db.commit()
    report.id = report_id
    return report_id


def list_reports(db: sqlite3.Connection, user_email: str) -> list[dict]:
    rows = db.execute(
        """SELECT id, analysis_type, query, description, mode, total_emails,
                  deletion_candidates, keep_candidates, newsletter_count,
                  total_size, potential_savings, total_tokens, estimated_cost,
                  created_at
           FROM reports WHERE user_email = ?
           ORDER BY created_at DESC, rowid DESC""",
        (user_email,),
    ).fetchall()
    return [dict(r) for r in rows]


def get_report(db: sqlite3.Connection, user_email: str, report_id: str) -> dict:
    row = db.execute(
        "SELECT * FROM reports WHERE id = ? AND user_email = ?", (report_id, user_email)
    ).fetchone()
    if row is None:
        raise ReportNotFoundError(f"Report not found: {report_id}")

    report = dict(row)
    report["summary"] = json.loads(report["summary"] or "{}")
    candidates = db.execute(
        "SELECT * FROM email_candidates WHERE report_id = ? ORDER BY date DESC",
        (report_id,),
    ).fetchall()
    report["deletion_candidates_list"] = [
        dict(c) for c in candidates if c["recommendation"] in _DELETE_VALUES
    ]
    report["keep_candidates_list"] = [
        dict(c) for c in candidates if c["recommendation"] not in _DELETE_VALUES
    ]
    report["senders"] = [
        dict(s) for s in db.execute(
            "SELECT * FROM newsletter_senders WHERE report_id = ? ORDER BY count DESC",
            (report_id,),
        ).fetchall()
    ]
    return report


def delete_report(db: sqlite3.Connection, user_email: str, report_id: str) -> None:
    cur = db.execute(
        "DELETE FROM reports WHERE id = ? AND user_email = ?", (report_id, user_email)
    )
    db.commit()
    if cur.rowcount == 0:
        raise ReportNotFoundError(f"Report not found: {report_id}")


def _recount_report(db: sqlite3.Connection, report_id: str) -> dict:
    row = db.execute(
        """SELECT
               COALESCE(SUM(CASE WHEN recommendation IN (?, ?) THEN 1 ELSE 0 END), 0) AS deletes,
               COALESCE(SUM(CASE WHEN recommendation IN (?, ?) THEN 0 ELSE 1 END), 0) AS keeps,
               COALESCE(SUM(CASE WHEN recommendation IN (?, ?) THEN size ELSE 0 END), 0) AS savings
            FROM email_candidates WHERE report_id = ?""",
        (*_DELETE_VALUES, *_DELETE_VALUES, *_DELETE_VALUES, report_id),
    ).fetchone()
    counts = {
        "deletion_candidates": row["deletes"],
        "keep_candidates": row["keeps"],
        "potential_savings": row["savings"],
    }
    db.execute(
        """UPDATE reports
           SET deletion_candidates = ?, keep_candidates = ?, potential_savings = ?
           WHERE id = ?""",
        (counts["deletion_candidates"], counts["keep_candidates"],
         counts["potential_savings"], report_id),
    )
    return counts


def move_candidate(
    db: sqlite3.Connection,
    user_email: str,
    report_id: str,
    gmail_id: str,
    new_type: Recommendation,
) -> dict:
    """Flip one candidate between the delete and keep lists and recount the report."""
    if new_type == Recommendation.ARCHIVE:
        new_type = Recommendation.DELETE
    owner = db.execute(
        "SELECT 1 FROM reports WHERE id = ? AND user_email = ?", (report_id, user_email)
    ).fetchone()
    if owner is None:
        raise ReportNotFoundError(f"Report not found: {report_id}")

    cur = db.execute(
        "UPDATE email_candidates SET recommendation = ? WHERE report_id = ? AND gmail_id = ?",
        (new_type.value, report_id, gmail_id),
    )
    if cur.rowcount == 0:
        db.rollback()
        raise CandidateNotFoundError(f"Email {gmail_id} is not part of report {report_id}")

    counts = _recount_report(db, report_id)
    db.commit()
    return counts


def cleanup_reports_after_deletion(
    db: sqlite3.Connection, user_email: str, gmail_ids: list[str]
) -> dict:
    """Drop deleted messages from this user's reports.

    Counts and savings are recomputed; a report left with no candidates is
    deleted. Returns how many reports were updated and deleted.
    """
    updated = 0
    removed = 0
    if not gmail_ids:
        return {"updated": 0, "deleted": 0}

    placeholders = ",".join("?" * len(gmail_ids))
    report_ids = [
        r["report_id"] for r in db.execute(
            f"""SELECT DISTINCT c.report_id FROM email_candidates c
                JOIN reports r ON r.id = c.report_id
                WHERE r.user_email = ? AND c.gmail_id IN ({placeholders})""",
            (user_email, *gmail_ids),
        ).fetchall()
    ]

    for report_id in report_ids:
        db.execute(
            f"DELETE FROM email_candidates WHERE report_id = ? AND gmail_id IN ({placeholders})",
            (report_id, *gmail_ids),
        )
        counts = _recount_report(db, report_id)
        if counts["deletion_candidates"] + counts["keep_candidates"] == 0:
            db.execute("DELETE FROM reports WHERE id = ?", (report_id,))
            removed += 1
        else:
            updated += 1

    db.commit()
    return {"updated": updated, "deleted": removed}
