"""mailtidy: mailbox sync and hybrid cleanup analysis."""

__version__ = "0.1.0"
