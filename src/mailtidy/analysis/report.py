"""Fold per-message results into cleanup and sender-frequency reports."""

from __future__ import annotations

from mailtidy.analysis.local import classify_email
from mailtidy.models import (
    AnalysisResult,
    Candidate,
    Category,
    CleanupReport,
    DomainStat,
    Message,
    SenderFrequencyReport,
    SenderStat,
    TokenUsage,
    to_iso,
)

SENDER_CATEGORIES = (Category.NEWSLETTER, Category.PROMOTIONAL)


def percentage(count: int, total: int) -> float:
    """Share of ``total`` as a percentage with one decimal."""
    if not total:
        return 0.0
    return round(count / total * 1000) / 10


def sender_domain(sender_email: str) -> str:
    _, at, domain = sender_email.partition("@")
    return domain.lower() if at and domain else "unknown"


def _candidate(message: Message, result: AnalysisResult) -> Candidate:
    return Candidate(
        gmail_id=message.gmail_id,
        subject=message.subject,
        sender_email=message.sender_email,
        sender_name=message.sender_name,
        date=message.date,
        size=message.size,
        category=result.category,
        recommendation=result.recommendation,
        reasoning=result.reasoning,
        confidence=result.confidence,
        priority=result.priority,
        space_impact=result.space_impact,
        follow_up=result.follow_up,
    )


def build_cleanup_report(
    items: list[tuple[Message, AnalysisResult]],
    token_usage: TokenUsage | None = None,
) -> CleanupReport:
    """Aggregate analyzed messages into candidate lists and sender totals.

    Candidates are ordered newest first. Totals are derived from the lists so
    delete + keep always equals the number of analyzed messages.
    """
    deletion: list[Candidate] = []
    keep: list[Candidate] = []
    senders: dict[str, SenderStat] = {}
    total_size = 0
    savings = 0

    for message, result in items:
        total_size += message.size
        candidate = _candidate(message, result)
        if result.recommendation.is_delete:
            deletion.append(candidate)
            savings += message.size
        else:
            keep.append(candidate)

        if result.category in SENDER_CATEGORIES:
            key = message.sender_email.lower()
            stat = senders.get(key)
            if stat is None:
                stat = senders[key] = SenderStat(
                    sender_email=key,
                    sender_name=message.sender_name or key,
                    category=result.category,
                )
            stat.count += 1
            stat.total_size += message.size

    deletion.sort(key=lambda c: c.date, reverse=True)
    keep.sort(key=lambda c: c.date, reverse=True)
    sender_list = sorted(senders.values(), key=lambda s: s.count, reverse=True)

    return CleanupReport(
        total_emails=len(deletion) + len(keep),
        total_size=total_size,
        potential_savings=savings,
        deletion_candidates=deletion,
        keep_candidates=keep,
        senders=sender_list,
        token_usage=token_usage or TokenUsage(),
    )


def sender_frequency_from_messages(
    messages: list[Message], limit: int = 100
) -> SenderFrequencyReport:
    """Group fetched messages by sender and nest senders under their domain, without AI.

    Mirrors the SQL aggregation used for synced mailboxes: ``limit`` caps the
    domains, largest first. Percentages and averages are computed after the
    full total is known.
    """
    by_sender: dict[tuple[str, str, Category], SenderStat] = {}
    by_domain: dict[str, DomainStat] = {}
    domain_senders: dict[str, set[str]] = {}
    total_size = 0

    for m in messages:
        total_size += m.size
        category = m.category or classify_email(m.subject, m.sender, m.sender_email)
        key = (m.sender_email, m.sender_name, category)
        stat = by_sender.get(key)
        if stat is None:
            stat = by_sender[key] = SenderStat(
                sender_email=m.sender_email,
                sender_name=m.sender_name or m.sender_email.split("@")[0],
                category=category,
            )
        stat.count += 1
        stat.total_size += m.size
        sent = to_iso(m.date)
        if stat.latest_date is None or sent > stat.latest_date:
            stat.latest_date = sent

        name = sender_domain(m.sender_email)
        domain = by_domain.get(name)
        if domain is None:
            domain = by_domain[name] = DomainStat(
                domain=name, unique_senders=0, total_count=0, total_size=0,
            )
        domain.total_count += 1
        domain.total_size += m.size
        domain_senders.setdefault(name, set()).add(m.sender_email)

    total = len(messages)
    domains = sorted(by_domain.values(), key=lambda d: (d.total_count, d.total_size), reverse=True)
    domains = domains[:limit]
    for d in domains:
        d.unique_senders = len(domain_senders[d.domain])
        d.percentage = percentage(d.total_count, total)
        d.avg_email_size = round(d.total_size / d.total_count)

    kept = {d.domain: d for d in domains}
    senders = []
    for s in sorted(by_sender.values(), key=lambda s: (s.count, s.total_size), reverse=True):
        domain = kept.get(sender_domain(s.sender_email))
        if domain is None:
            continue
        s.percentage = percentage(s.count, total)
        s.avg_email_size = round(s.total_size / s.count)
        domain.senders.append(s)
        senders.append(s)

    return SenderFrequencyReport(
        total_emails=total,
        total_size=total_size,
        senders=senders,
        domains=domains,
    )

