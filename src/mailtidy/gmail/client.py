"""Gmail API wrapper: listing, metadata fetch, deletion and message parsing."""

from __future__ import annotations

import asyncio
import re
import threading
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Callable

from google.auth.exceptions import GoogleAuthError
from googleapiclient.errors import HttpError

from mailtidy.analysis.local import classify_email
from mailtidy.errors import GmailAuthError, RateLimitedError, is_auth_error
from mailtidy.log import get_logger
from mailtidy.models import Attachment, Message, utcnow
from mailtidy.ratelimit import RateLimiter

logger = get_logger(__name__)

# Headers, sizes and attachment names only; bodies are never downloaded.
_PART_FIELDS = "partId,mimeType,filename,body/size"
MESSAGE_FIELDS = (
    "id,threadId,labelIds,snippet,sizeEstimate,internalDate,"
    f"payload(headers,{_PART_FIELDS},"
    f"parts({_PART_FIELDS},parts({_PART_FIELDS},parts({_PART_FIELDS}))))"
)

_ANGLE_EMAIL_RE = re.compile(r"<([^>]+)>")
_BARE_EMAIL_RE = re.compile(r"([^\s<>]+@[^\s<>]+)")
_NAME_BEFORE_ANGLE_RE = re.compile(r"^([^<]+)<")
_NAME_BEFORE_AT_RE = re.compile(r"^([^@<]+)@")


def _translate_http_error(exc: HttpError) -> Exception:
    status = getattr(exc.resp, "status", None)
    text = str(exc).lower()
    if status == 429 or (status == 403 and "ratelimitexceeded" in text.replace(" ", "")):
        return RateLimitedError(str(exc))
    if status in (401, 403):
        return GmailAuthError(str(exc))
    return exc


def parse_sender(from_header: str) -> tuple[str, str]:
    """Split a From header into (name, email).

    The email is lower-cased. Without a display name, the local part of the
    address stands in for it.
    """
    from_header = from_header or ""
    match = _ANGLE_EMAIL_RE.search(from_header) or _BARE_EMAIL_RE.search(from_header)
    email = match.group(1).strip().lower() if match else from_header.strip().lower()

    name_match = _NAME_BEFORE_ANGLE_RE.match(from_header) or _NAME_BEFORE_AT_RE.match(from_header)
    name = name_match.group(1).strip().replace('"', "").replace("'", "") if name_match else ""
    if not name or "@" in name:
        name = email.split("@")[0]
    return name, email


def parse_date(header: str | None, internal_date: str | None = None) -> datetime:
    """Parse the Date header, falling back to Gmail's internalDate, then now."""
    if header:
        try:
            dt = parsedate_to_datetime(header)
            if dt.tzinfo is None:
                dt = dt.replace(tzinfo=timezone.utc)
            return dt.astimezone(timezone.utc)
        except (TypeError, ValueError, IndexError):
            pass
    if internal_date:
        try:
            return datetime.fromtimestamp(int(internal_date) / 1000, tz=timezone.utc)
        except (TypeError, ValueError, OverflowError):
            pass
    return utcnow()


def _collect_attachments(part: dict, attachments: list[Attachment]) -> None:
    filename = part.get("filename", "")
    if filename:
        attachments.append(Attachment(filename=filename, size=part.get("body", {}).get("size", 0)))
    for sub in part.get("parts", []) or []:
        _collect_attachments(sub, attachments)


def parse_message(raw: dict) -> Message:
    """Build a Message from a Gmail API message resource."""
    payload = raw.get("payload", {}) or {}
    headers: dict[str, str] = {}
    for h in payload.get("headers", []) or []:
        key = h.get("name", "").lower()
        if key not in headers:
            headers[key] = h.get("value", "")

    from_header = headers.get("from", "")
    sender_name, sender_email = parse_sender(from_header)
    subject = headers.get("subject", "")

    attachments: list[Attachment] = []
    for part in payload.get("parts", []) or []:
        _collect_attachments(part, attachments)

    return Message(
        gmail_id=raw["id"],
        thread_id=raw.get("threadId"),
        subject=subject,
        sender_email=sender_email,
        sender_name=sender_name,
        sender=from_header,
        recipient=headers.get("to", ""),
        date=parse_date(headers.get("date"), raw.get("internalDate")),
        size=int(raw.get("sizeEstimate", 0) or 0),
        labels=list(raw.get("labelIds", []) or []),
        snippet=raw.get("snippet", ""),
        attachments=attachments,
        category=classify_email(subject, from_header, sender_email),
        last_synced=utcnow(),
    )


class GmailClient:
    """Async facade over the blocking Gmail API client.

    Every call first waits on the shared RateLimiter, then runs the request in
    a worker thread. Each worker thread lazily builds its own service object
    from ``service_factory``.
    """

    def __init__(
        self,
        service_factory: Callable[[], object],
        rate_limiter: RateLimiter,
        page_size: int = 500,
    ):
        self._service_factory = service_factory
        self.rate_limiter = rate_limiter
        self.page_size = page_size
        self._local = threading.local()

    def _service(self):
        service = getattr(self._local, "service", None)
        if service is None:
            service = self._local.service = self._service_factory()
        return service

    async def _execute(self, build_request: Callable[[object], object]) -> dict:
        await self.rate_limiter.wait_if_needed()

        def run():
            return build_request(self._service()).execute()

        try:
            return await asyncio.to_thread(run)
        except HttpError as e:
            translated = _translate_http_error(e)
            if translated is e:
                raise
            raise translated from e
        except GoogleAuthError as e:
            # A revoked or expired refresh token surfaces here, not as HttpError
            if is_auth_error(e):
                raise GmailAuthError(str(e)) from e
            raise

    async def get_profile_email(self) -> str:
        profile = await self._execute(lambda s: s.users().getProfile(userId="me"))
        return profile["emailAddress"]

    async def list_message_ids(
        self,
        query: str = "",
        page_size: int | None = None,
        page_token: str | None = None,
    ) -> tuple[list[str], str | None]:
        """One page of message IDs and the token for the next page, if any."""
        kwargs: dict = {
            "userId": "me",
            "maxResults": page_size or self.page_size,
            "fields": "messages/id,nextPageToken",
        }
        if query:
            kwargs["q"] = query
        if page_token:
            kwargs["pageToken"] = page_token

        result = await self._execute(lambda s: s.users().messages().list(**kwargs))
        ids = [m["id"] for m in result.get("messages", []) or []]
        return ids, result.get("nextPageToken")

    async def list_all_message_ids(self, query: str = "", limit: int | None = None) -> list[str]:
        """Follow page tokens until the listing is exhausted or ``limit`` is reached."""
        ids: list[str] = []
        page_token = None
        while True:
            page_size = self.page_size
            if limit is not None:
                page_size = min(page_size, limit - len(ids))
            page, page_token = await self.list_message_ids(query, page_size, page_token)
            ids.extend(page)
            logger.info("Listed %d message IDs so far", len(ids))
            if not page_token or (limit is not None and len(ids) >= limit):
                break
        return ids[:limit] if limit is not None else ids

    async def get_message(self, message_id: str) -> dict:
        """Fetch one message's metadata (no body content)."""
        return await self._execute(
            lambda s: s.users().messages().get(
                userId="me", id=message_id, format="full", fields=MESSAGE_FIELDS,
            )
        )

    async def batch_delete(self, message_ids: list[str]) -> None:
        """Permanently delete up to 1000 messages in one call."""
        await self._execute(
            lambda s: s.users().messages().batchDelete(userId="me", body={"ids": message_ids})
        )

    async def trash(self, message_id: str) -> None:
        await self._execute(lambda s: s.users().messages().trash(userId="me", id=message_id))
