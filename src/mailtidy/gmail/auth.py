"""OAuth2 authentication for Gmail API."""

from __future__ import annotations

import os
from typing import Callable

from google.auth.exceptions import RefreshError
from google.auth.transport.requests import Request
from google.oauth2.credentials import Credentials
from google_auth_oauthlib.flow import InstalledAppFlow
from googleapiclient.discovery import build

from mailtidy.config import Config
from mailtidy.errors import GmailAuthError, is_auth_error
from mailtidy.log import get_logger

logger = get_logger(__name__)

# Full mailbox access: batchDelete is not available under gmail.modify.
SCOPES = ["https://mail.google.com/"]


def authenticate(config: Config) -> Credentials:
    """Authenticate with Gmail API via OAuth2, caching the token for reuse."""
    credentials_file = config.gmail.credentials_file
    token_file = config.gmail.token_file
    creds = None

    if os.path.exists(token_file):
        creds = Credentials.from_authorized_user_file(token_file, SCOPES)

    if not creds or not creds.valid:
        if creds and creds.expired and creds.refresh_token:
            logger.info("Refreshing Gmail access token")
            try:
                creds.refresh(Request())
            except RefreshError as e:
                if is_auth_error(e):
                    raise GmailAuthError(f"Stored Gmail token was rejected: {e}") from e
                raise
        else:
            if not os.path.exists(credentials_file):
                raise FileNotFoundError(
                    f"Gmail credentials file not found: {credentials_file}. "
                    "Download your OAuth 2.0 credentials from Google Cloud Console."
                )
            flow = InstalledAppFlow.from_client_secrets_file(credentials_file, SCOPES)
            creds = flow.run_local_server(port=0)

        with open(token_file, "w") as f:
            f.write(creds.to_json())

    return creds


def service_factory(config: Config) -> Callable[[], object]:
    """Return a callable that builds a fresh Gmail service per call.

    Credentials are resolved once; the client builds one service per worker
    thread because the underlying HTTP transport is not thread safe.
    """
    creds = authenticate(config)

    def _build():
        return build("gmail", "v1", credentials=creds, cache_discovery=False)

    return _build
