"""Per-user authentication helpers for the Gmail API."""

from __future__ import annotations

import logging
import re
from pathlib import Path

from google.auth.exceptions import RefreshError
from google.auth.transport.requests import Request
from google.oauth2.credentials import Credentials
from google_auth_oauthlib.flow import InstalledAppFlow
from googleapiclient.discovery import Resource, build

from gmail_phish_guard import constants
from gmail_phish_guard.errors import AuthExpiredError, NotConnectedError

logger = logging.getLogger(__name__)

_UNSAFE_CHARS_RE = re.compile(r"[^A-Za-z0-9_.@-]")


def token_path(user_id: str, tokens_dir: Path | None = None) -> Path:
    """Return the token file for a user; the id is made filesystem safe."""
    safe = _UNSAFE_CHARS_RE.sub("_", user_id)
    return Path(tokens_dir or constants.TOKENS_DIR) / f"{safe}.json"


def has_token(user_id: str, tokens_dir: Path | None = None) -> bool:
    return token_path(user_id, tokens_dir).exists()


def load_credentials(user_id: str, tokens_dir: Path | None = None) -> Credentials:
    """Load stored credentials for a user, refreshing them when expired.

    Raises NotConnectedError when no token is stored and AuthExpiredError
    when Google refuses to refresh it.
    """
    path = token_path(user_id, tokens_dir)
    if not path.exists():
        raise NotConnectedError(
            "Gmail not connected. Please connect your Gmail account first.", user_id
        )

    try:
        creds = Credentials.from_authorized_user_file(str(path), constants.SCOPES)
    except ValueError as exc:
        raise AuthExpiredError(f"Stored Gmail token is unusable: {exc}", user_id) from exc

    if creds.expired and creds.refresh_token:
        try:
            creds.refresh(Request())
        except RefreshError as exc:
            raise AuthExpiredError(
                "Gmail access expired. Please reconnect your Gmail account.", user_id
            ) from exc
        path.write_text(creds.to_json())
        logger.debug("Refreshed Gmail token for user %s", user_id)
    elif not creds.valid:
        raise AuthExpiredError(
            "Gmail access expired. Please reconnect your Gmail account.", user_id
        )

    return creds


def get_gmail_service(user_id: str, tokens_dir: Path | None = None) -> Resource:
    """Return an authenticated Gmail API service object for a user."""
    creds = load_credentials(user_id, tokens_dir)
    return build("gmail", "v1", credentials=creds, cache_discovery=False)


def authorize_user(user_id: str, tokens_dir: Path | None = None) -> Path:
    """Run the OAuth browser flow for a user and store the token.

    Requires credentials.json at CREDENTIALS_PATH.
    """
    if not constants.CREDENTIALS_PATH.exists():
        raise FileNotFoundError(
            f"Credentials file not found at {constants.CREDENTIALS_PATH}.\n"
            "Download your OAuth client credentials from the Google Cloud Console "
            "and save them as:\n"
            f"  {constants.CREDENTIALS_PATH}"
        )
    flow = InstalledAppFlow.from_client_secrets_file(str(constants.CREDENTIALS_PATH), constants.SCOPES)
    creds = flow.run_local_server(port=0)

    path = token_path(user_id, tokens_dir)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(creds.to_json())
    logger.info("Gmail tokens saved for user %s", user_id)
    return path


def disconnect_user(user_id: str, tokens_dir: Path | None = None) -> bool:
    """Remove a user's stored token. Returns False when none was stored."""
    path = token_path(user_id, tokens_dir)
    if not path.exists():
        return False
    path.unlink()
    logger.info("Gmail disconnected for user %s", user_id)
    return True
