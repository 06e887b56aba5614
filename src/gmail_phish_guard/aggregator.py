"""Merge scored batches into a user's cumulative scan record."""

from __future__ import annotations

import logging
from collections.abc import Iterable
from datetime import datetime

from .constants import FLAGS_LIMIT, SNIPPET_LIMIT, SUBJECT_LIMIT
from .models import (
    CanonicalMessage,
    RiskAssessment,
    RiskLevel,
    ScanHistoryEntry,
    ScanRecord,
    ScanSummary,
    ScoredMessage,
)
from .normalizer import truncate

logger = logging.getLogger(__name__)


def to_scored_message(message: CanonicalMessage, assessment: RiskAssessment) -> ScoredMessage:
    """Trim a message for storage and attach its assessment.

    Body and URLs are only kept for HIGH risk messages.
    """
    is_high = assessment.level == RiskLevel.HIGH
    details = assessment.details
    return ScoredMessage(
        id=message.id,
        thread_id=message.thread_id,
        subject=truncate(message.subject, SUBJECT_LIMIT),
        sender=message.sender,
        sender_name=message.sender_name,
        received_at=message.received_at,
        snippet=truncate(message.snippet or message.body_text, SNIPPET_LIMIT),
        body=message.body_text if is_high else None,
        urls=list(message.urls) if is_high else [],
        url_count=len(message.urls),
        risk_level=assessment.level,
        phishing_score=assessment.score,
        flags=list(assessment.flags[:FLAGS_LIMIT]),
        url_score=details.url_analysis.score,
        keyword_score=details.keyword_analysis.score,
        sender_score=details.sender_analysis.score,
    )


def apply_retention(
    batch: Iterable[ScoredMessage],
    medium_cap: int,
    low_cap: int,
) -> list[ScoredMessage]:
    """Keep every HIGH message and the first N MEDIUM/LOW ones of a batch.

    Only the batch is trimmed; records merged earlier are never evicted.
    """
    high: list[ScoredMessage] = []
    medium: list[ScoredMessage] = []
    low: list[ScoredMessage] = []
    for item in batch:
        if item.risk_level == RiskLevel.HIGH:
            high.append(item)
        elif item.risk_level == RiskLevel.MEDIUM:
            medium.append(item)
        else:
            low.append(item)
    return high + medium[:medium_cap] + low[:low_cap]


def summarize(emails: Iterable[ScoredMessage]) -> ScanSummary:
    summary = ScanSummary()
    for msg in emails:
        summary.total += 1
        if msg.risk_level == RiskLevel.HIGH:
            summary.high += 1
        elif msg.risk_level == RiskLevel.MEDIUM:
            summary.medium += 1
        else:
            summary.low += 1
    return summary


def merge_emails(
    existing: dict[str, ScoredMessage] | None,
    batch: Iterable[ScoredMessage],
) -> tuple[dict[str, ScoredMessage], int, int]:
    """Merge a batch into existing emails by provider id, last write wins.

    Returns (emails sorted newest first, new count, updated count).
    """
    merged: dict[str, ScoredMessage] = dict(existing or {})
    new_count = 0
    updated_count = 0
    for item in batch:
        if not item.id:
            continue
        if item.id in merged:
            updated_count += 1
        else:
            new_count += 1
        merged[item.id] = item

    ordered = sorted(merged.values(), key=lambda m: m.received_at, reverse=True)
    return {m.id: m for m in ordered}, new_count, updated_count


def merge(
    user_id: str,
    existing: ScanRecord | None,
    batch: list[ScoredMessage],
    now: datetime,
) -> ScanRecord:
    """Build the next ScanRecord for a user from the previous one and a batch.

    The summary is always recomputed from the full merged set.
    """
    emails, new_count, updated_count = merge_emails(
        existing.emails if existing is not None else None, batch
    )
    logger.debug(
        "Merged %d message(s) for user %s: %d new, %d updated, %d total",
        len(batch),
        user_id,
        new_count,
        updated_count,
        len(emails),
    )
    return ScanRecord(
        user_id=user_id,
        last_scanned_at=now,
        last_scan_new_count=len(batch),
        total_email_count=len(emails),
        summary=summarize(emails.values()),
        emails=emails,
    )


class ScanAggregator:
    """Read-merge-write of scan records against a Store."""

    def __init__(self, store) -> None:
        self.store = store

    async def merge_and_persist(
        self,
        user_id: str,
        batch: list[ScoredMessage],
        now: datetime,
        is_auto_scan: bool = False,
        fetched_count: int | None = None,
    ) -> ScanRecord:
        """Merge a retained batch into the stored record and save it.

        Store failures propagate to the caller; nothing is retried here.
        """
        existing = await self.store.get_scan_record(user_id)
        record = merge(user_id, existing, batch, now)
        await self.store.put_scan_record(user_id, record)
        await self.store.append_scan_history(
            user_id,
            ScanHistoryEntry(
                scanned_at=now,
                email_count=len(batch) if fetched_count is None else fetched_count,
                summary=summarize(batch),
                is_auto_scan=is_auto_scan,
            ),
        )
        logger.info(
            "Saved scan for user %s: %d stored (%d high, %d medium, %d low)",
            user_id,
            record.total_email_count,
            record.summary.high,
            record.summary.medium,
            record.summary.low,
        )
        return record
