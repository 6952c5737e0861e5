"""Process-wide wiring: one config, one database connection, one rate limiter."""

from __future__ import annotations

import sqlite3
from typing import Callable

from mailtidy.config import Config, load_config
from mailtidy.database import get_db, init_db
from mailtidy.ratelimit import RateLimiter


class AppContext:
    """Builds the shared collaborators once and hands them to every caller.

    Gmail and the AI provider are created on first use so commands that only
    touch the database never trigger an OAuth flow.
    """

    def __init__(
        self,
        config: Config | None = None,
        db: sqlite3.Connection | None = None,
        service_factory: Callable[[], object] | None = None,
        provider=None,
    ):
        self.config = config or load_config()
        if db is None:
            db = get_db(self.config)
            init_db(db)
        self.db = db
        self.rate_limiter = RateLimiter.from_config(self.config.rate_limit)
        self._service_factory = service_factory
        self._provider = provider
        self._gmail = None
        self._user_email: str | None = None

    @property
    def gmail(self):
        from mailtidy.gmail.client import GmailClient

        if self._gmail is None:
            factory = self._service_factory
            if factory is None:
                from mailtidy.gmail.auth import service_factory
                factory = service_factory(self.config)
            self._gmail = GmailClient(factory, self.rate_limiter, self.config.gmail.page_size)
        return self._gmail

    async def user_email(self) -> str:
        """The authenticated mailbox owner, looked up once."""
        if self._user_email is None:
            self._user_email = await self.gmail.get_profile_email()
        return self._user_email

    def classifier(self):
        from mailtidy.ai import get_provider
        from mailtidy.analysis.classifier import AIClassifier

        if self._provider is not None:
            return AIClassifier(self._provider, self.config.ai.model)
        provider, model = get_provider(self.config.ai.model_spec, self.config.ai.to_provider_dict())
        return AIClassifier(provider, model)

    def sync_engine(self):
        from mailtidy.gmail.sync import SyncEngine

        return SyncEngine(self.gmail, self.db, self.config.sync)

    def analysis_engine(self):
        from mailtidy.analysis.engine import HybridAnalysisEngine

        return HybridAnalysisEngine(
            self.db,
            self.classifier(),
            gmail=self.gmail,
            config=self.config,
        )

    def cleaner(self):
        from mailtidy.gmail.cleanup import MailboxCleaner

        return MailboxCleaner(self.gmail, self.db, self.config.analysis.delete_batch_size)

    def close(self) -> None:
        self.db.close()
