"""Error taxonomy shared by the scan pipeline."""

from __future__ import annotations


class PhishGuardError(Exception):
    """Base class for errors surfaced to callers of the scan pipeline."""

    code = "PHISH_GUARD_ERROR"

    def __init__(self, message: str, user_id: str | None = None) -> None:
        super().__init__(message)
        self.user_id = user_id


class NotConnectedError(PhishGuardError):
    """The user has no stored Gmail credentials."""

    code = "GMAIL_NOT_CONNECTED"


class AuthExpiredError(PhishGuardError):
    """Gmail rejected the stored credentials (expired or revoked)."""

    code = "GMAIL_TOKEN_EXPIRED"


class TransientFetchError(PhishGuardError):
    """Network or rate-limit failure while talking to Gmail."""

    code = "FETCH_FAILED"


class PersistenceError(PhishGuardError):
    """The store failed to read or write a record."""

    code = "PERSISTENCE_FAILED"
