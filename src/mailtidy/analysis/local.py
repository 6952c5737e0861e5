"""Deterministic header-only classification.

Two rule sets live here. ``classify_email`` tags every message during sync and
is deliberately broad. ``can_classify_without_ai`` is the narrow, high
precision gate used by hybrid analysis: only messages it accepts skip the AI.
Anything from a noreply-style sender falls through both to ``unknown`` so the
AI gets to look at it.
"""

from __future__ import annotations

from mailtidy.models import AnalysisResult, Category, Confidence, Recommendation

NEWSLETTER_SUBJECT = ("newsletter", "unsubscribe", "weekly digest", "monthly update")

PROMOTIONAL_SUBJECT = (
    "sale", "discount", "offer", "deal", "% off", "free shipping",
    "limited time", "expires today", "last chance",
)
PROMOTIONAL_FROM = ("deals", "offers", "sales")

SOCIAL_FROM = (
    "facebook", "twitter", "linkedin", "instagram", "tiktok",
    "snapchat", "youtube", "pinterest", "reddit",
)
SOCIAL_DOMAINS = (
    "facebook.com", "twitter.com", "linkedin.com",
    "instagram.com", "tiktok.com", "youtube.com",
)
SOCIAL_SUBJECT = ("mentioned you", "tagged you", "liked your", "followed you")


def _contains(text: str, needles: tuple[str, ...]) -> bool:
    return any(n in text for n in needles)


def classify_email(subject: str, sender: str, sender_email: str) -> Category:
    """Map header signals to newsletter, promotional, social or unknown.

    Checks run newsletter first, then promotional, then social; first match wins.
    """
    subject = (subject or "").lower()
    sender = (sender or "").lower()
    sender_email = (sender_email or "").lower()

    if (
        _contains(subject, NEWSLETTER_SUBJECT)
        or "newsletter" in sender
        or "newsletter" in sender_email
        or "marketing" in sender_email
    ):
        return Category.NEWSLETTER

    if _contains(subject, PROMOTIONAL_SUBJECT) or _contains(sender, PROMOTIONAL_FROM):
        return Category.PROMOTIONAL

    if (
        _contains(sender, SOCIAL_FROM)
        or _contains(sender_email, SOCIAL_DOMAINS)
        or _contains(subject, SOCIAL_SUBJECT)
    ):
        return Category.SOCIAL

    return Category.UNKNOWN


def can_classify_without_ai(subject: str, sender_email: str) -> bool:
    subject = (subject or "").lower()
    sender_email = (sender_email or "").lower()
    return (
        ("newsletter" in subject and "unsubscribe" in subject)
        or "newsletter" in sender_email
        or "marketing" in sender_email
        or ("sale" in subject and "% off" in subject)
        or "limited time offer" in subject
        or "expires today" in subject
    )


def local_analysis(subject: str, sender_email: str) -> AnalysisResult:
    """Zero-cost result for a message that ``can_classify_without_ai`` accepted."""
    subject = (subject or "").lower()
    sender_email = (sender_email or "").lower()

    if ("newsletter" in subject and "unsubscribe" in subject) or "newsletter" in sender_email:
        return AnalysisResult(
            category=Category.NEWSLETTER,
            recommendation=Recommendation.DELETE,
            reasoning="Explicit newsletter with unsubscribe link - safe to delete",
            confidence=Confidence.HIGH,
            local=True,
        )

    if ("sale" in subject and "% off" in subject) or "limited time offer" in subject:
        return AnalysisResult(
            category=Category.PROMOTIONAL,
            recommendation=Recommendation.DELETE,
            reasoning="Clear promotional offer - likely expired",
            confidence=Confidence.HIGH,
            local=True,
        )

    if "marketing" in sender_email:
        return AnalysisResult(
            category=Category.PROMOTIONAL,
            recommendation=Recommendation.DELETE,
            reasoning="From marketing sender - promotional content",
            confidence=Confidence.MEDIUM,
            local=True,
        )

    return AnalysisResult(
        category=Category.UNKNOWN,
        recommendation=Recommendation.KEEP,
        reasoning="Unclear classification - keeping for safety",
        confidence=Confidence.LOW,
        local=True,
    )
