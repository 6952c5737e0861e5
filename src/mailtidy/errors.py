"""Exception hierarchy."""

from __future__ import annotations


class MailtidyError(Exception):
    """Base class for errors surfaced to the CLI and API."""


class GmailAuthError(MailtidyError):
    """Gmail rejected our credentials; the user has to sign in again."""

    requires_reauth = True


class RateLimitedError(MailtidyError):
    """Gmail answered 429."""


class SyncInProgressError(MailtidyError):
    pass


class AnalysisError(MailtidyError):
    pass


class ReportNotFoundError(MailtidyError):
    pass


class CandidateNotFoundError(MailtidyError):
    pass


_AUTH_MARKERS = (
    "401",
    "403",
    "oauth",
    "invalid authentication",
    "insufficient authentication scopes",
    "invalid_grant",
)


def is_auth_error(exc: BaseException) -> bool:
    """True when an error means the stored Gmail credentials are unusable."""
    if isinstance(exc, GmailAuthError):
        return True
    text = str(exc).lower()
    return any(marker in text for marker in _AUTH_MARKERS)
