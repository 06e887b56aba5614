"""Shared fixtures for tests."""

from __future__ import annotations

import base64
from datetime import datetime, timedelta, timezone

import pytest

from gmail_phish_guard.coordinator import ScheduleCoordinator
from gmail_phish_guard.errors import TransientFetchError
from gmail_phish_guard.models import CanonicalMessage, RiskLevel, ScoredMessage
from gmail_phish_guard.store import MemoryStore

NOW = datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc)


def b64url(text: str) -> str:
    return base64.urlsafe_b64encode(text.encode("utf-8")).decode("ascii").rstrip("=")


def gmail_message(
    msg_id: str,
    subject: str = "Hello",
    sender: str = "Alice Smith <alice.smith@gmail.com>",
    body: str = "See you tomorrow",
    date: str = "Sat, 01 Jun 2024 10:00:00 +0000",
) -> dict:
    """Build a Gmail API message (format=full) with a text/plain body."""
    return {
        "id": msg_id,
        "threadId": f"t-{msg_id}",
        "snippet": body[:100],
        "internalDate": "1717236000000",
        "payload": {
            "mimeType": "text/plain",
            "headers": [
                {"name": "From", "value": sender},
                {"name": "Subject", "value": subject},
                {"name": "Date", "value": date},
            ],
            "body": {"data": b64url(body)},
        },
    }


def phishing_message(msg_id: str) -> dict:
    return gmail_message(
        msg_id,
        subject="Urgent: verify your account",
        sender="PayPal <support@paypal-secure1.com>",
        body="Your account is locked. Log in at http://192.168.1.5/login now.",
    )


def scored(msg_id: str, level: RiskLevel = RiskLevel.LOW, minutes_ago: int = 0) -> ScoredMessage:
    return ScoredMessage(
        id=msg_id,
        subject=f"Subject {msg_id}",
        sender="someone@example.com",
        received_at=NOW - timedelta(minutes=minutes_ago),
        risk_level=level,
    )


class FakeMailProvider:
    """MailProvider double that records calls and can fail per user."""

    def __init__(self) -> None:
        self.connected: set[str] = set()
        self.messages: dict[str, list[dict]] = {}
        self.failures: dict[str, Exception] = {}
        self.calls: list[tuple] = []

    async def is_connected(self, user_id: str) -> bool:
        return user_id in self.connected

    async def list_and_fetch_since(self, user_id: str, since: datetime) -> list[dict]:
        self.calls.append(("since", user_id, since))
        return self._result(user_id)

    async def list_and_fetch_window(self, user_id: str, query: str, max_results: int) -> list[dict]:
        self.calls.append(("window", user_id, query, max_results))
        return self._result(user_id)[:max_results] if max_results else self._result(user_id)

    def _result(self, user_id: str) -> list[dict]:
        if user_id in self.failures:
            raise self.failures[user_id]
        return list(self.messages.get(user_id, []))


@pytest.fixture
def canonical_phish() -> CanonicalMessage:
    return CanonicalMessage(
        id="m-phish",
        subject="Urgent: verify your account",
        sender="support@paypal-secure1.com",
        body_text="",
        urls=("http://192.168.1.5/login",),
    )


@pytest.fixture
def canonical_newsletter() -> CanonicalMessage:
    return CanonicalMessage(
        id="m-news",
        subject="Weekly newsletter",
        sender="news@techsite.com",
        body_text="Here is this week's roundup",
        urls=(),
    )


@pytest.fixture
def provider() -> FakeMailProvider:
    return FakeMailProvider()


@pytest.fixture
def memory_store() -> MemoryStore:
    return MemoryStore()


@pytest.fixture
def coordinator(provider: FakeMailProvider, memory_store: MemoryStore) -> ScheduleCoordinator:
    return ScheduleCoordinator(
        provider,
        memory_store,
        memory_store,
        inter_user_delay=0,
        clock=lambda: NOW,
    )


@pytest.fixture
def transient_error() -> TransientFetchError:
    return TransientFetchError("rate limited", "alice")
