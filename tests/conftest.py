"""Shared test fixtures."""

from __future__ import annotations

import json
import re
import sqlite3
import threading
from datetime import datetime, timedelta
from email.utils import format_datetime
from types import SimpleNamespace

import pytest
from googleapiclient.errors import HttpError

from mailtidy.ai.base import Completion
from mailtidy.database import init_db
from mailtidy.models import Message, utcnow
from mailtidy.ratelimit import RateLimiter

USER = "me@example.com"


@pytest.fixture
def db():
    """In-memory SQLite database with schema initialized."""
    conn = sqlite3.connect(":memory:")
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys=ON")
    init_db(conn)
    yield conn
    conn.close()


def http_error(status: int, message: str = "error") -> HttpError:
    """An HttpError as googleapiclient raises it."""
    resp = SimpleNamespace(status=status, reason=message)
    return HttpError(resp=resp, content=json.dumps({"error": {"message": message}}).encode())


def make_raw(
    message_id: str,
    subject: str = "Hello",
    sender: str = "Alice Smith <alice@example.com>",
    date: datetime | None = None,
    size: int = 1000,
    snippet: str = "",
    labels: list[str] | None = None,
    parts: list[dict] | None = None,
) -> dict:
    """A Gmail API message resource as returned with our fields mask."""
    date = date or utcnow() - timedelta(days=1)
    payload = {
        "mimeType": "multipart/mixed",
        "headers": [
            {"name": "Subject", "value": subject},
            {"name": "From", "value": sender},
            {"name": "To", "value": "me@example.com"},
            {"name": "Date", "value": format_datetime(date)},
        ],
    }
    if parts is not None:
        payload["parts"] = parts
    return {
        "id": message_id,
        "threadId": f"t-{message_id}",
        "labelIds": labels or ["INBOX"],
        "snippet": snippet,
        "sizeEstimate": size,
        "payload": payload,
    }


def make_message(
    gmail_id: str,
    subject: str = "Hello",
    sender_email: str = "alice@example.com",
    sender_name: str = "Alice",
    date: datetime | None = None,
    size: int = 1000,
    snippet: str = "",
) -> Message:
    return Message(
        gmail_id=gmail_id,
        thread_id=f"t-{gmail_id}",
        subject=subject,
        sender_email=sender_email,
        sender_name=sender_name,
        date=date or utcnow() - timedelta(days=1),
        size=size,
        snippet=snippet,
    )


class _Request:
    def __init__(self, fn):
        self._fn = fn

    def execute(self):
        return self._fn()


class FakeGmailService:
    """In-memory stand-in for the googleapiclient Gmail resource.

    ``get_errors`` maps a message ID to exceptions raised by successive gets.
    """

    def __init__(self, raws: list[dict], page_size: int = 100, email: str = USER):
        self.raws = {r["id"]: r for r in raws}
        self.order = [r["id"] for r in raws]
        self.page_size = page_size
        self.email = email
        self.get_errors: dict[str, list[Exception]] = {}
        self.profile_error: Exception | None = None
        self.list_error: Exception | None = None
        self.batch_delete_error: Exception | None = None
        self.trash_errors: dict[str, Exception] = {}
        self.list_queries: list[str | None] = []
        self.get_calls: list[str] = []
        self.batch_deleted: list[list[str]] = []
        self.trashed: list[str] = []
        self._lock = threading.Lock()

    def users(self):
        return self

    def messages(self):
        return self

    def getProfile(self, userId):
        def run():
            if self.profile_error is not None:
                raise self.profile_error
            return {"emailAddress": self.email}
        return _Request(run)

    def list(self, userId, maxResults=500, q=None, pageToken=None, fields=None):
        def run():
            if self.list_error is not None:
                raise self.list_error
            self.list_queries.append(q)
            start = int(pageToken or 0)
            size = min(maxResults, self.page_size)
            ids = self.order[start:start + size]
            result: dict = {}
            if ids:
                result["messages"] = [{"id": i} for i in ids]
            if start + size < len(self.order):
                result["nextPageToken"] = str(start + size)
            return result
        return _Request(run)

    def get(self, userId, id, format=None, fields=None):
        def run():
            with self._lock:
                self.get_calls.append(id)
                errors = self.get_errors.get(id)
                if errors:
                    raise errors.pop(0)
            return self.raws[id]
        return _Request(run)

    def batchDelete(self, userId, body):
        def run():
            if self.batch_delete_error is not None:
                raise self.batch_delete_error
            self.batch_deleted.append(list(body["ids"]))
            return ""
        return _Request(run)

    def trash(self, userId, id):
        def run():
            if id in self.trash_errors:
                raise self.trash_errors[id]
            self.trashed.append(id)
            return {"id": id}
        return _Request(run)


def fast_limiter() -> RateLimiter:
    return RateLimiter(max_requests=100000, window_seconds=60, min_delay_ms=0)


_LINE_RE = re.compile(r'^(\d+)\. "([^"]*)"', re.MULTILINE)


def prompt_subjects(prompt: str) -> list[str]:
    """Subjects listed in a classification prompt, in order."""
    return [m.group(2) for m in _LINE_RE.finditer(prompt)]


def is_enhanced(prompt: str) -> bool:
    return "| Preview:" in prompt or "Emails with previews" in prompt


class FakeProvider:
    """Scripted AI provider.

    ``respond(subjects, enhanced)`` returns the response text; raising from it
    simulates a transport failure.
    """

    def __init__(self, respond, input_tokens: int = 150, output_tokens: int = 60):
        self.respond = respond
        self.input_tokens = input_tokens
        self.output_tokens = output_tokens
        self.calls: list[dict] = []

    async def complete(self, prompt, model, max_tokens=4000, system=""):
        subjects = prompt_subjects(prompt)
        enhanced = is_enhanced(prompt)
        self.calls.append({"subjects": subjects, "enhanced": enhanced, "max_tokens": max_tokens})
        text = self.respond(subjects, enhanced)
        return Completion(text=text, input_tokens=self.input_tokens, output_tokens=self.output_tokens)


def json_results(subjects, confidence="high", recommendation="delete", category="promotional"):
    return json.dumps([
        {
            "id": i,
            "category": category,
            "cleanupRecommendation": recommendation,
            "reasoning": f"decided {s}",
            "confidence": confidence(s) if callable(confidence) else confidence,
        }
        for i, s in enumerate(subjects, 1)
    ])


async def no_sleep(seconds: float) -> None:
    no_sleep.calls.append(seconds)


no_sleep.calls = []


@pytest.fixture
def sleeps():
    """Records every sleep requested through ``no_sleep``."""
    no_sleep.calls = []
    return no_sleep.calls


def all_high(subjects, enhanced):
    return json_results(subjects)
