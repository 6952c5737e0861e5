"""Tests for the JSON API."""

from datetime import timedelta

import pytest
from conftest import USER, FakeGmailService, FakeProvider, all_high, http_error, make_message, make_raw
from fastapi.testclient import TestClient

from mailtidy import store
from mailtidy.analysis.report import build_cleanup_report
from mailtidy.config import Config
from mailtidy.context import AppContext
from mailtidy.database import get_db, init_db
from mailtidy.models import AnalysisRequest, AnalysisResult, Recommendation, utcnow
from mailtidy.web.app import create_app


@pytest.fixture
def api():
    """Test client over a fake mailbox; the connection is shared with the server thread."""
    conn = get_db(db_path=":memory:")
    init_db(conn)
    now = utcnow()
    service = FakeGmailService([
        make_raw(f"m{i}", subject=f"Hello {i}", date=now - timedelta(hours=i + 1)) for i in range(4)
    ])
    config = Config()
    config.rate_limit.min_delay_ms = 0
    ctx = AppContext(config=config, db=conn, service_factory=lambda: service, provider=FakeProvider(all_high))
    with TestClient(create_app(ctx)) as client:
        yield client, ctx, service
    conn.close()


def saved_report(db):
    store.upsert_user(db, USER)
    items = [
        (make_message("d1", size=10), AnalysisResult(recommendation=Recommendation.DELETE)),
        (make_message("k1", size=20), AnalysisResult(recommendation=Recommendation.KEEP)),
    ]
    return store.save_cleanup_report(db, USER, build_cleanup_report(items), AnalysisRequest())


def test_sync_then_status(api):
    client, _, service = api

    resp = client.post("/api/sync", json={"timeRange": "7d"})
    assert resp.status_code == 200
    body = resp.json()
    assert body["success"] is True
    assert body["total_emails"] == 4
    assert body["new_emails"] == 4
    assert service.list_queries[-1] == "newer_than:7d -in:spam -in:trash"

    status = client.get("/api/sync/status").json()
    assert status["in_progress"] is False
    assert status["total_emails"] == 4
    assert status["session"]["status"] == "completed"
    assert status["rate_limit"]["max_requests"] == 7500


def test_sync_conflict(api):
    client, ctx, _ = api
    store.upsert_user(ctx.db, USER)
    store.claim_sync(ctx.db, USER)

    assert client.post("/api/sync", json={}).status_code == 409

    reset = client.post("/api/sync/reset").json()
    assert reset["in_progress"] is False
    assert reset["error_message"] == "Sync manually reset by user"


def test_sync_rejects_bad_range(api):
    client, _, _ = api
    assert client.post("/api/sync", json={"timeRange": "2w"}).status_code == 422


def test_analyze(api):
    client, _, _ = api
    client.post("/api/sync", json={"timeRange": "7d"})

    resp = client.post("/api/analyze", json={"query": "newer_than:7d", "mode": "fast"})

    assert resp.status_code == 200
    report = resp.json()
    assert report["total_emails"] == 4
    assert len(report["deletion_candidates"]) == 4
    assert report["token_usage"]["ai_request_count"] == 1
    assert report["token_usage"]["total_tokens"] == 210
    assert report["id"]


def test_analyze_sender_frequency(api):
    client, _, _ = api
    client.post("/api/sync", json={"timeRange": "7d"})

    report = client.post("/api/analyze", json={"analysisType": "sender_frequency"}).json()

    assert report["analysis_type"] == "sender_frequency"
    assert report["senders"][0]["sender_email"] == "alice@example.com"
    assert report["summary"]["total_emails"] == 4


def test_analyze_nothing_found_is_client_error(api):
    client, _, service = api
    service.order = []
    resp = client.post("/api/analyze", json={"query": "label:empty"})
    assert resp.status_code == 400
    assert "No emails found" in resp.json()["error"]


def test_auth_error_asks_for_reauth(api):
    client, ctx, service = api
    ctx._user_email = USER
    service.list_error = http_error(401, "Invalid Credentials")

    resp = client.post("/api/sync", json={})
    assert resp.status_code == 401
    assert resp.json()["requires_reauth"] is True


def test_reports_crud(api):
    client, ctx, _ = api
    report_id = saved_report(ctx.db)

    listed = client.get("/api/reports").json()
    assert [r["id"] for r in listed] == [report_id]

    report = client.get(f"/api/reports/{report_id}").json()
    assert len(report["deletion_candidates_list"]) == 1

    resp = client.post(f"/api/reports/{report_id}/move-email", json={"emailId": "d1", "newType": "keep"})
    assert resp.json() == {
        "success": True, "deletion_candidates": 0, "keep_candidates": 2, "potential_savings": 0,
    }
    assert client.post(
        f"/api/reports/{report_id}/move-email", json={"emailId": "zzz", "newType": "keep"}
    ).status_code == 404

    assert client.delete(f"/api/reports/{report_id}").json() == {"success": True}
    assert client.get(f"/api/reports/{report_id}").status_code == 404


def test_delete_emails(api):
    client, ctx, service = api
    report_id = saved_report(ctx.db)

    resp = client.post("/api/delete-emails", json={"emailIds": ["d1"]})

    body = resp.json()
    assert body["success"] is True
    assert body["message"] == "1 of 1 messages deleted"
    assert service.batch_deleted == [["d1"]]
    report = client.get(f"/api/reports/{report_id}").json()
    assert report["deletion_candidates"] == 0


def test_delete_emails_requires_ids(api):
    client, _, _ = api
    assert client.post("/api/delete-emails", json={"emailIds": []}).status_code == 422
