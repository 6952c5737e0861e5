"""Mailbox sync: mirror Gmail metadata into the local store."""

from __future__ import annotations

import asyncio
import calendar
import sqlite3
from datetime import datetime, timedelta
from typing import Awaitable, Callable

from googleapiclient.errors import HttpError

from mailtidy import store
from mailtidy.config import SyncConfig
from mailtidy.errors import RateLimitedError, SyncInProgressError
from mailtidy.gmail.client import GmailClient, parse_message
from mailtidy.log import get_logger
from mailtidy.models import (
    Message,
    SessionStatus,
    SyncOptions,
    SyncResult,
    SyncStatus,
    TimeRange,
    from_iso,
    to_iso,
    utcnow,
)

logger = get_logger(__name__)

INTERRUPTED_MESSAGE = "Previous sync was interrupted and has been reset"
MANUAL_RESET_MESSAGE = "Sync manually reset by user"


def _subtract_months(dt: datetime, months: int) -> datetime:
    month_index = dt.month - 1 - months
    year = dt.year + month_index // 12
    month = month_index % 12 + 1
    day = min(dt.day, calendar.monthrange(year, month)[1])
    return dt.replace(year=year, month=month, day=day)


def get_sync_date_range(
    time_range: TimeRange, now: datetime | None = None
) -> tuple[datetime | None, datetime]:
    """(start, end) covered by a sync. ``start`` is None for 'all'."""
    now = now or utcnow()
    time_range = TimeRange(time_range)
    if time_range == TimeRange.ALL:
        return None, now
    if time_range == TimeRange.WEEK:
        return now - timedelta(days=7), now
    if time_range == TimeRange.MONTH:
        return now - timedelta(days=30), now
    if time_range == TimeRange.QUARTER:
        return _subtract_months(now, 3), now
    if time_range == TimeRange.HALF_YEAR:
        return _subtract_months(now, 6), now
    return _subtract_months(now, 12), now


def build_search_query(options: SyncOptions) -> str:
    parts = []
    if options.time_range != TimeRange.ALL:
        parts.append(f"newer_than:{options.time_range.value}")
    if options.exclude_spam:
        parts.append("-in:spam")
    if options.exclude_trash:
        parts.append("-in:trash")
    if options.max_email_size_mb and options.max_email_size_mb > 0:
        parts.append(f"smaller:{options.max_email_size_mb * 1024 * 1024}")
    return " ".join(parts)


def get_sync_status(
    db: sqlite3.Connection,
    user_email: str,
    stuck_after_minutes: int = 10,
    now: datetime | None = None,
) -> SyncStatus:
    """Current sync status; a sync silent for too long is reset as interrupted."""
    now = now or utcnow()
    row = store.get_sync_status_row(db, user_email)
    if row is not None and row["sync_in_progress"] and row["updated_at"]:
        idle = now - from_iso(row["updated_at"])
        if idle > timedelta(minutes=stuck_after_minutes):
            logger.warning("Resetting sync for %s, idle for %s", user_email, idle)
            store.update_sync_status(
                db, user_email, sync_in_progress=0, error_message=INTERRUPTED_MESSAGE,
            )
            store.fail_open_sessions(db, user_email, INTERRUPTED_MESSAGE)
    return store.get_sync_status(db, user_email)


def reset_sync_status(db: sqlite3.Connection, user_email: str) -> SyncStatus:
    store.update_sync_status(
        db, user_email, sync_in_progress=0, error_message=MANUAL_RESET_MESSAGE,
    )
    store.fail_open_sessions(db, user_email, MANUAL_RESET_MESSAGE)
    return store.get_sync_status(db, user_email)


class SyncEngine:
    """Run sync sessions for one mailbox against the local store.

    A session lists every matching message ID, fetches metadata in
    sequential batches with bounded concurrency inside each batch, writes each
    batch as soon as it is fetched, then deletes cached messages in the
    synced date range that Gmail no longer returned.
    """

    def __init__(
        self,
        client: GmailClient,
        db: sqlite3.Connection,
        config: SyncConfig | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        now: Callable[[], datetime] = utcnow,
    ):
        self.client = client
        self.db = db
        self.config = config or SyncConfig()
        self._sleep = sleep
        self._now = now

    async def sync(self, user_email: str, options: SyncOptions | None = None) -> SyncResult:
        options = options or SyncOptions()
        start, end = get_sync_date_range(options.time_range, self._now())

        store.upsert_user(self.db, user_email)
        get_sync_status(self.db, user_email, self.config.stuck_after_minutes, self._now())
        if not store.claim_sync(self.db, user_email):
            raise SyncInProgressError(f"A sync is already running for {user_email}")

        session = store.create_session(self.db, user_email, options.to_dict(), start, end)
        logger.info("Sync %s started for %s (%s)", session.id, user_email, options.time_range.value)

        try:
            return await self._run(user_email, options, session.id, start, end)
        except Exception as e:
            logger.error("Sync %s failed: %s", session.id, e)
            store.update_session(
                self.db, session.id,
                status=SessionStatus.FAILED,
                error_message=str(e),
                completed_at=to_iso(self._now()),
            )
            store.update_sync_status(
                self.db, user_email, sync_in_progress=0, error_message=str(e),
            )
            raise

    async def _run(
        self,
        user_email: str,
        options: SyncOptions,
        session_id: str,
        start: datetime | None,
        end: datetime,
    ) -> SyncResult:
        query = build_search_query(options)
        logger.info("Listing messages with query: %s", query or "(none)")
        ids = await self.client.list_all_message_ids(query)

        if not ids:
            self._finish(user_email, session_id, processed=0)
            return SyncResult(total_emails=0, new_emails=0, deleted_emails=0, session_id=session_id)

        size = self.config.batch_size
        batches = [ids[i:i + size] for i in range(0, len(ids), size)]
        store.update_session(
            self.db, session_id, total_emails=len(ids), total_batches=len(batches),
        )

        processed_ids: list[str] = []
        new_count = 0
        for number, batch in enumerate(batches, 1):
            messages = await self._fetch_batch(batch)
            new_count += store.upsert_emails(self.db, user_email, messages)
            processed_ids.extend(m.gmail_id for m in messages)

            store.update_session(
                self.db, session_id,
                emails_processed=len(processed_ids), current_batch=number,
            )
            store.update_sync_status(
                self.db, user_email, total_emails=store.count_emails(self.db, user_email),
            )
            logger.info(
                "Batch %d/%d: %d of %d fetched (rate limiter %s)",
                number, len(batches), len(messages), len(batch),
                self.client.rate_limiter.get_status(),
            )

            if number % self.config.pause_every_batches == 0 and number < len(batches):
                await self._sleep(self.config.pause_seconds)

        deleted = self._cleanup_orphans(user_email, processed_ids, start, end)
        self._finish(user_email, session_id, processed=len(processed_ids))
        return SyncResult(
            total_emails=len(processed_ids),
            new_emails=new_count,
            deleted_emails=deleted,
            session_id=session_id,
        )

    def _cleanup_orphans(
        self,
        user_email: str,
        processed_ids: list[str],
        start: datetime | None,
        end: datetime,
    ) -> int:
        try:
            deleted = store.cleanup_emails_in_range(self.db, user_email, processed_ids, start, end)
        except sqlite3.Error:
            logger.exception("Orphan cleanup failed for %s", user_email)
            return 0
        if deleted:
            logger.info("Removed %d cached emails no longer in Gmail", deleted)
        return deleted

    def _finish(self, user_email: str, session_id: str, processed: int) -> None:
        now = to_iso(self._now())
        store.update_session(
            self.db, session_id,
            status=SessionStatus.COMPLETED,
            emails_processed=processed,
            completed_at=now,
        )
        store.update_sync_status(
            self.db, user_email,
            sync_in_progress=0,
            last_sync=now,
            total_emails=store.count_emails(self.db, user_email),
            error_message=None,
        )

    async def _fetch_batch(self, ids: list[str]) -> list[Message]:
        """Fetch one batch; results stay paired with their IDs, failures are dropped."""
        semaphore = asyncio.Semaphore(self.config.concurrency)
        tasks = [asyncio.ensure_future(self._fetch_one(i, semaphore)) for i in ids]
        try:
            fetched = await asyncio.gather(*tasks)
        except BaseException:
            # A fatal fetch ends the batch; nothing else may touch Gmail afterwards
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            raise
        return [m for m in fetched if m is not None]

    async def _fetch_one(self, message_id: str, semaphore: asyncio.Semaphore) -> Message | None:
        async with semaphore:
            try:
                try:
                    raw = await self.client.get_message(message_id)
                except RateLimitedError:
                    logger.warning(
                        "Rate limited on %s, retrying in %ss",
                        message_id, self.config.retry_delay_seconds,
                    )
                    await self._sleep(self.config.retry_delay_seconds)
                    raw = await self.client.get_message(message_id)
            except (HttpError, RateLimitedError, OSError) as e:
                logger.warning("Dropping message %s: %s", message_id, e)
                return None
        return parse_message(raw)
