"""Hybrid analysis: local rules first, AI only for what the rules can't settle."""

from __future__ import annotations

import asyncio
import re
import sqlite3

from googleapiclient.errors import HttpError

from mailtidy import store
from mailtidy.analysis.classifier import AIClassifier, BatchOutcome
from mailtidy.analysis.local import can_classify_without_ai, local_analysis
from mailtidy.analysis.report import build_cleanup_report, sender_frequency_from_messages
from mailtidy.config import Config
from mailtidy.costs import calculate_cost, format_cost
from mailtidy.errors import AnalysisError, GmailAuthError, RateLimitedError
from mailtidy.gmail.client import GmailClient, parse_message
from mailtidy.gmail.sync import get_sync_date_range
from mailtidy.log import get_logger
from mailtidy.models import (
    AnalysisMode,
    AnalysisRequest,
    AnalysisResult,
    AnalysisType,
    CleanupReport,
    Confidence,
    Message,
    SenderFrequencyReport,
    TimeRange,
    TokenUsage,
)

logger = get_logger(__name__)

_NEWER_THAN_RE = re.compile(r"newer_than:(7d|30d|3m|6m|1y)\b")


def extract_time_range_from_query(query: str) -> TimeRange:
    """Local time range matching a Gmail ``newer_than:`` clause, else 'all'."""
    match = _NEWER_THAN_RE.search(query or "")
    return TimeRange(match.group(1)) if match else TimeRange.ALL


async def classify_progressively(
    classifier: AIClassifier,
    messages: list[Message],
    mode: AnalysisMode = AnalysisMode.AUTO,
) -> BatchOutcome:
    """Header-only pass, then a preview-enriched pass over low-confidence results only.

    Enhanced results replace their low-confidence counterparts in place and
    carry ``follow_up=True``; every other initial result is returned untouched.
    """
    initial = await classifier.classify(messages, mode)
    if initial.error:
        return initial

    flagged = [i for i, r in enumerate(initial.results) if r.confidence == Confidence.LOW]
    if not flagged:
        logger.info("All %d emails decided with high/medium confidence", len(messages))
        return initial

    logger.info("%d of %d emails low confidence, retrying with previews", len(flagged), len(messages))
    enhanced = await classifier.classify([messages[i] for i in flagged], mode, enhanced=True)

    results = list(initial.results)
    if enhanced.error:
        logger.warning("Enhanced pass failed, keeping initial results: %s", enhanced.error)
    else:
        for index, result in zip(flagged, enhanced.results):
            results[index] = result

    return BatchOutcome(
        results=results,
        input_tokens=initial.input_tokens + enhanced.input_tokens,
        output_tokens=initial.output_tokens + enhanced.output_tokens,
        requests=initial.requests + enhanced.requests,
        enhanced_indices=[] if enhanced.error else flagged,
    )


class HybridAnalysisEngine:
    """Produce cleanup and sender-frequency reports for one user.

    With synced data in the local store, messages come from there and the
    high-precision local rules settle what they can before anything reaches
    the AI. Without synced data, messages are read straight from Gmail and
    every one goes to the AI.
    """

    def __init__(
        self,
        db: sqlite3.Connection,
        classifier: AIClassifier | None,
        gmail: GmailClient | None = None,
        config: Config | None = None,
    ):
        self.db = db
        self.classifier = classifier
        self.gmail = gmail
        self.config = config or Config()

    async def analyze(
        self, user_email: str, request: AnalysisRequest
    ) -> CleanupReport | SenderFrequencyReport:
        """Run the requested analysis and persist the resulting report."""
        store.upsert_user(self.db, user_email)
        synced = store.get_sync_status(self.db, user_email).total_emails > 0

        if request.analysis_type == AnalysisType.SENDER_FREQUENCY:
            report = await self._sender_frequency(user_email, request, synced)
            store.save_sender_frequency_report(self.db, user_email, report, request)
            return report

        if synced:
            report = await self._analyze_synced(user_email, request)
        else:
            report = await self._analyze_remote(request)

        report.estimated_cost = calculate_cost(report.token_usage, self.config.ai.pricing)
        store.save_cleanup_report(self.db, user_email, report, request)
        logger.info(
            "Report %s: %d analyzed, %d to delete, %d tokens over %d AI requests (%s)",
            report.id, report.total_emails, len(report.deletion_candidates),
            report.token_usage.total_tokens, report.token_usage.ai_request_count,
            format_cost(report.estimated_cost),
        )
        return report

    # --- Message sources ---

    def _synced_messages(self, user_email: str, request: AnalysisRequest) -> list[Message]:
        time_range = extract_time_range_from_query(request.query)
        start, _ = get_sync_date_range(time_range)
        return store.get_emails(self.db, user_email, start=start, limit=request.limit)

    async def _remote_messages(self, request: AnalysisRequest) -> list[Message]:
        if self.gmail is None:
            raise AnalysisError("No synced emails and no Gmail connection available")

        try:
            await self.gmail.list_message_ids("", page_size=5)
        except GmailAuthError:
            raise
        except (HttpError, RateLimitedError, OSError) as e:
            raise AnalysisError(f"Gmail API access failed: {e}") from e

        ids = await self.gmail.list_all_message_ids(request.query, limit=request.limit)
        if not ids:
            raise AnalysisError(f'No emails found matching the criteria. Query: "{request.query}"')

        messages: list[Message] = []
        size = self.config.analysis.fetch_batch_size
        for start in range(0, len(ids), size):
            chunk = ids[start:start + size]
            fetched = await asyncio.gather(
                *(self.gmail.get_message(i) for i in chunk), return_exceptions=True
            )
            for message_id, raw in zip(chunk, fetched):
                if isinstance(raw, GmailAuthError):
                    raise raw
                if isinstance(raw, (HttpError, RateLimitedError, OSError)):
                    logger.warning("Skipping message %s: %s", message_id, raw)
                    continue
                if isinstance(raw, BaseException):
                    raise raw
                messages.append(parse_message(raw))
        return messages

    # --- Cleanup analysis ---

    async def _analyze_synced(self, user_email: str, request: AnalysisRequest) -> CleanupReport:
        messages = self._synced_messages(user_email, request)
        if not messages:
            raise AnalysisError("No emails found in synced data matching the criteria")

        items: list[tuple[Message, AnalysisResult]] = []
        queue: list[Message] = []
        for m in messages:
            if can_classify_without_ai(m.subject, m.sender_email):
                items.append((m, local_analysis(m.subject, m.sender_email)))
            else:
                queue.append(m)

        logger.info("%d emails classified locally, %d need AI", len(items), len(queue))
        usage = TokenUsage()
        items.extend(await self._classify_with_ai(queue, request.mode, usage))
        return build_cleanup_report(items, usage)

    async def _analyze_remote(self, request: AnalysisRequest) -> CleanupReport:
        messages = await self._remote_messages(request)
        usage = TokenUsage()
        items = await self._classify_with_ai(messages, request.mode, usage)
        return build_cleanup_report(items, usage)

    async def _classify_batch(self, messages: list[Message], mode: AnalysisMode) -> BatchOutcome:
        if mode == AnalysisMode.AUTO:
            return await classify_progressively(self.classifier, messages, mode)
        return await self.classifier.classify(messages, mode)

    async def _classify_with_ai(
        self, messages: list[Message], mode: AnalysisMode, usage: TokenUsage
    ) -> list[tuple[Message, AnalysisResult]]:
        """Classify in batches; a batch the model can't be reached for is retried per message.

        Every message gets a result. A message whose own retry fails too keeps
        the conservative default.
        """
        if not messages:
            return []
        if self.classifier is None:
            raise AnalysisError("No AI provider configured")

        items: list[tuple[Message, AnalysisResult]] = []
        size = self.config.ai.batch_size
        total_batches = (len(messages) + size - 1) // size
        for number, start in enumerate(range(0, len(messages), size), 1):
            batch = messages[start:start + size]
            outcome = await self._classify_batch(batch, mode)
            # One request per batch, however many calls escalation took
            usage.add(outcome.input_tokens, outcome.output_tokens)

            if outcome.error:
                logger.warning(
                    "AI batch %d/%d failed (%s), falling back to single emails",
                    number, total_batches, outcome.error,
                )
                for m in batch:
                    single = await self._classify_batch([m], mode)
                    usage.add(single.input_tokens, single.output_tokens, 0 if single.error else 1)
                    items.append((m, single.results[0]))
                continue

            items.extend(zip(batch, outcome.results))
            logger.info("AI batch %d/%d done", number, total_batches)
        return items

    # --- Sender frequency ---

    async def _sender_frequency(
        self, user_email: str, request: AnalysisRequest, synced: bool
    ) -> SenderFrequencyReport:
        if synced:
            start, _ = get_sync_date_range(extract_time_range_from_query(request.query))
            report = store.sender_frequency(self.db, user_email, start=start, limit=request.limit)
            if not report.total_emails:
                raise AnalysisError("No emails found in synced data matching the criteria")
            return report

        messages = await self._remote_messages(request)
        return sender_frequency_from_messages(messages, limit=request.limit)
