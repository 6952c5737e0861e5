"""Tests for Gmail message parsing and error handling."""

import asyncio
from datetime import datetime, timezone
from unittest.mock import MagicMock, patch

import pytest
from conftest import FakeGmailService, fast_limiter, http_error, make_raw
from google.auth.exceptions import RefreshError, TransportError
from googleapiclient.errors import HttpError

from mailtidy.config import Config
from mailtidy.errors import GmailAuthError, RateLimitedError, is_auth_error
from mailtidy.gmail.auth import authenticate
from mailtidy.gmail.client import GmailClient, parse_date, parse_message, parse_sender
from mailtidy.models import Category


@pytest.mark.parametrize("header,expected", [
    ('"Jane Doe" <Jane@Example.com>', ("Jane Doe", "jane@example.com")),
    ("Jane Doe <jane@example.com>", ("Jane Doe", "jane@example.com")),
    ("jane@example.com", ("jane", "jane@example.com")),
    ("<jane@example.com>", ("jane", "jane@example.com")),
    ("", ("", "")),
])
def test_parse_sender(header, expected):
    assert parse_sender(header) == expected


def test_parse_date_prefers_header():
    dt = parse_date("Tue, 04 Jun 2024 10:30:00 +0200", "1000")
    assert dt == datetime(2024, 6, 4, 8, 30, tzinfo=timezone.utc)


def test_parse_date_falls_back_to_internal_date():
    dt = parse_date("not a date", "1717497000000")
    assert dt == datetime.fromtimestamp(1717497000, tz=timezone.utc)


def test_parse_date_falls_back_to_now():
    before = datetime.now(timezone.utc)
    assert parse_date(None, None) >= before


def test_parse_message():
    raw = make_raw(
        "m1", subject="Weekly digest", sender="Acme <news@acme.com>", size=5120,
        snippet="Top stories", labels=["INBOX", "CATEGORY_UPDATES"],
        parts=[
            {"mimeType": "text/plain", "filename": "", "body": {"size": 100}},
            {"mimeType": "multipart/mixed", "filename": "", "parts": [
                {"mimeType": "application/pdf", "filename": "report.pdf", "body": {"size": 4000}},
            ]},
        ],
    )
    message = parse_message(raw)

    assert message.gmail_id == "m1"
    assert message.thread_id == "t-m1"
    assert message.sender_email == "news@acme.com"
    assert message.sender_name == "Acme"
    assert message.recipient == "me@example.com"
    assert message.size == 5120
    assert message.labels == ["INBOX", "CATEGORY_UPDATES"]
    assert message.category == Category.NEWSLETTER
    assert [a.filename for a in message.attachments] == ["report.pdf"]
    assert message.has_attachments


def test_parse_message_with_missing_headers():
    message = parse_message({"id": "bare", "payload": {}})
    assert message.subject == ""
    assert message.size == 0
    assert message.category == Category.UNKNOWN


# --- Error translation ---

def client_for(service):
    return GmailClient(lambda: service, fast_limiter())


def test_429_becomes_rate_limited():
    service = FakeGmailService([make_raw("m1")])
    service.get_errors["m1"] = [http_error(429, "Too many requests")]

    with pytest.raises(RateLimitedError):
        asyncio.run(client_for(service).get_message("m1"))


@pytest.mark.parametrize("status", [401, 403])
def test_auth_statuses_become_auth_error(status):
    service = FakeGmailService([make_raw("m1")])
    service.get_errors["m1"] = [http_error(status, "Invalid Credentials")]

    with pytest.raises(GmailAuthError) as exc:
        asyncio.run(client_for(service).get_message("m1"))
    assert is_auth_error(exc.value)


def test_other_http_errors_pass_through():
    service = FakeGmailService([make_raw("m1")])
    service.get_errors["m1"] = [http_error(404, "Not Found")]

    with pytest.raises(HttpError):
        asyncio.run(client_for(service).get_message("m1"))


def test_is_auth_error_by_message():
    assert is_auth_error(Exception("invalid_grant: Token has been expired or revoked"))
    assert not is_auth_error(Exception("connection reset"))


def test_revoked_refresh_token_becomes_auth_error():
    service = FakeGmailService([make_raw("m1")])
    service.get_errors["m1"] = [RefreshError("invalid_grant: Token has been expired or revoked.")]

    with pytest.raises(GmailAuthError):
        asyncio.run(client_for(service).get_message("m1"))


def test_transport_errors_pass_through():
    service = FakeGmailService([make_raw("m1")])
    service.get_errors["m1"] = [TransportError("connection reset")]

    with pytest.raises(TransportError):
        asyncio.run(client_for(service).get_message("m1"))


def test_authenticate_rejected_refresh(tmp_path):
    token = tmp_path / "token.json"
    token.write_text("{}")
    config = Config()
    config.gmail.token_file = str(token)
    creds = MagicMock(valid=False, expired=True, refresh_token="r")
    creds.refresh.side_effect = RefreshError("invalid_grant: Bad Request")

    with patch("mailtidy.gmail.auth.Credentials.from_authorized_user_file", return_value=creds):
        with pytest.raises(GmailAuthError, match="invalid_grant"):
            authenticate(config)


# --- Listing ---

def test_list_all_follows_pages():
    service = FakeGmailService([make_raw(f"m{i}") for i in range(230)], page_size=100)
    ids = asyncio.run(client_for(service).list_all_message_ids("newer_than:7d"))

    assert len(ids) == 230
    assert service.list_queries == ["newer_than:7d"] * 3


def test_list_all_stops_at_limit():
    service = FakeGmailService([make_raw(f"m{i}") for i in range(230)], page_size=100)
    ids = asyncio.run(client_for(service).list_all_message_ids(limit=150))

    assert ids == [f"m{i}" for i in range(150)]
    assert len(service.list_queries) == 2


def test_profile_email():
    service = FakeGmailService([], email="owner@example.com")
    assert asyncio.run(client_for(service).get_profile_email()) == "owner@example.com"


def test_every_call_goes_through_rate_limiter():
    service = FakeGmailService([make_raw("m1"), make_raw("m2")])
    client = client_for(service)

    async def run():
        await client.list_message_ids()
        await client.get_message("m1")
        await client.get_message("m2")

    asyncio.run(run())
    assert client.rate_limiter.get_status()["requests_in_window"] == 3
