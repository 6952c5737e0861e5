"""Delete messages from Gmail and drop them from the local store and reports."""

from __future__ import annotations

import sqlite3
from dataclasses import dataclass, field

from googleapiclient.errors import HttpError

from mailtidy import store
from mailtidy.errors import GmailAuthError, RateLimitedError
from mailtidy.gmail.client import GmailClient
from mailtidy.log import get_logger

logger = get_logger(__name__)

REAUTH_MESSAGE = "Authentication expired. Please sign out and sign in again."


@dataclass
class DeletionResult:
    successful: list[str] = field(default_factory=list)
    failed: list[dict] = field(default_factory=list)  # {"id", "error"}
    requires_reauth: bool = False

    @property
    def summary(self) -> str:
        total = len(self.successful) + len(self.failed)
        return f"{len(self.successful)} of {total} messages deleted"


class MailboxCleaner:
    """Remove messages remotely first, then clean up the local bookkeeping.

    Each batch goes through batchDelete. If that fails for any reason other
    than expired credentials, the batch's messages are moved to the trash one
    by one instead. Local cleanup failures are logged and never undo the
    remote result.
    """

    def __init__(self, client: GmailClient, db: sqlite3.Connection, batch_size: int = 50):
        self.client = client
        self.db = db
        self.batch_size = batch_size

    async def delete_messages(self, user_email: str, gmail_ids: list[str]) -> DeletionResult:
        result = DeletionResult()
        ids = list(dict.fromkeys(gmail_ids))

        for start in range(0, len(ids), self.batch_size):
            batch = ids[start:start + self.batch_size]
            if result.requires_reauth:
                result.failed.extend({"id": i, "error": REAUTH_MESSAGE} for i in batch)
                continue

            deleted = await self._delete_batch(batch, result)
            if deleted:
                result.successful.extend(deleted)
                self._forget_locally(user_email, deleted)

        logger.info("%s for %s", result.summary, user_email)
        return result

    async def _delete_batch(self, batch: list[str], result: DeletionResult) -> list[str]:
        try:
            await self.client.batch_delete(batch)
            return batch
        except GmailAuthError:
            result.requires_reauth = True
            result.failed.extend({"id": i, "error": REAUTH_MESSAGE} for i in batch)
            return []
        except (HttpError, RateLimitedError, OSError) as e:
            logger.warning("batchDelete failed (%s), moving %d messages to trash", e, len(batch))

        trashed = []
        for message_id in batch:
            if result.requires_reauth:
                result.failed.append({"id": message_id, "error": REAUTH_MESSAGE})
                continue
            try:
                await self.client.trash(message_id)
                trashed.append(message_id)
            except GmailAuthError:
                result.requires_reauth = True
                result.failed.append({"id": message_id, "error": REAUTH_MESSAGE})
            except (HttpError, RateLimitedError, OSError) as e:
                result.failed.append({"id": message_id, "error": str(e)})
        return trashed

    def _forget_locally(self, user_email: str, gmail_ids: list[str]) -> None:
        try:
            store.delete_emails(self.db, user_email, gmail_ids)
            counts = store.cleanup_reports_after_deletion(self.db, user_email, gmail_ids)
            if counts["deleted"]:
                logger.info("Removed %d reports with no remaining candidates", counts["deleted"])
        except sqlite3.Error:
            logger.exception("Local cleanup after deletion failed for %s", user_email)
