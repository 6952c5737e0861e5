"""Tests for deleting messages from Gmail and the local store."""

import asyncio

from conftest import USER, FakeGmailService, fast_limiter, http_error, make_message, make_raw

from mailtidy import store
from mailtidy.analysis.report import build_cleanup_report
from mailtidy.gmail.cleanup import REAUTH_MESSAGE, MailboxCleaner
from mailtidy.gmail.client import GmailClient
from mailtidy.models import AnalysisRequest, AnalysisResult, Recommendation


def make_cleaner(db, ids, batch_size=50):
    store.upsert_user(db, USER)
    store.upsert_emails(db, USER, [make_message(i) for i in ids])
    service = FakeGmailService([make_raw(i) for i in ids])
    cleaner = MailboxCleaner(GmailClient(lambda: service, fast_limiter()), db, batch_size=batch_size)
    return cleaner, service


def test_batch_delete_success(db):
    ids = [f"m{i}" for i in range(120)]
    cleaner, service = make_cleaner(db, ids)

    result = asyncio.run(cleaner.delete_messages(USER, ids))

    assert len(result.successful) == 120
    assert result.failed == []
    assert [len(b) for b in service.batch_deleted] == [50, 50, 20]
    assert store.count_emails(db, USER) == 0
    assert result.summary == "120 of 120 messages deleted"


def test_duplicate_ids_deleted_once(db):
    cleaner, service = make_cleaner(db, ["a", "b"])
    result = asyncio.run(cleaner.delete_messages(USER, ["a", "b", "a"]))
    assert result.successful == ["a", "b"]
    assert service.batch_deleted == [["a", "b"]]


def test_falls_back_to_trash(db):
    """A failed batchDelete moves messages to the trash one by one."""
    cleaner, service = make_cleaner(db, ["a", "b", "c"])
    service.batch_delete_error = http_error(500, "backend")
    service.trash_errors["b"] = http_error(404, "Not Found")

    result = asyncio.run(cleaner.delete_messages(USER, ["a", "b", "c"]))

    assert result.successful == ["a", "c"]
    assert [f["id"] for f in result.failed] == ["b"]
    assert not result.requires_reauth
    remaining = {m.gmail_id for m in store.get_emails(db, USER)}
    assert remaining == {"b"}


def test_auth_failure_requires_reauth(db):
    cleaner, service = make_cleaner(db, ["a", "b", "c"], batch_size=2)
    service.batch_delete_error = http_error(401, "Invalid Credentials")

    result = asyncio.run(cleaner.delete_messages(USER, ["a", "b", "c"]))

    assert result.requires_reauth
    assert result.successful == []
    assert {f["id"] for f in result.failed} == {"a", "b", "c"}
    assert all(f["error"] == REAUTH_MESSAGE for f in result.failed)
    assert service.trashed == []
    assert store.count_emails(db, USER) == 3


def test_deleted_messages_leave_reports(db):
    cleaner, _ = make_cleaner(db, ["a", "b"])
    items = [
        (make_message("a", size=10), AnalysisResult(recommendation=Recommendation.DELETE)),
        (make_message("b", size=20), AnalysisResult(recommendation=Recommendation.DELETE)),
    ]
    report_id = store.save_cleanup_report(db, USER, build_cleanup_report(items), AnalysisRequest())

    asyncio.run(cleaner.delete_messages(USER, ["a"]))

    report = store.get_report(db, USER, report_id)
    assert report["deletion_candidates"] == 1
    assert report["potential_savings"] == 20
