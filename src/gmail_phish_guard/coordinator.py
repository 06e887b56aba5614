"""Scheduling of periodic sweeps and manual scans across users."""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timedelta
from typing import Callable

from .aggregator import ScanAggregator, apply_retention, to_scored_message
from .constants import (
    DEFAULT_QUERY,
    FIRST_RUN_MAX_MESSAGES,
    FIRST_RUN_QUERY,
    INTER_USER_DELAY_SECONDS,
    ON_DEMAND_DEFAULT_MESSAGES,
    ON_DEMAND_LOW_CAP,
    ON_DEMAND_MAX_MESSAGES,
    ON_DEMAND_MEDIUM_CAP,
    SCHEDULED_LOW_CAP,
    SCHEDULED_MEDIUM_CAP,
    SWEEP_INITIAL_DELAY_SECONDS,
    SWEEP_INTERVAL_SECONDS,
)
from .errors import NotConnectedError
from .models import AutoScanSettings, RiskAssessment, ScanRecord, ScoredMessage, utcnow
from .normalizer import normalize
from .periodic import PeriodicTask
from .scorer import analyze

logger = logging.getLogger(__name__)


def score_messages(raw_messages: list[dict]) -> list[ScoredMessage]:
    """Normalize and score raw provider messages, keeping their order."""
    scored = []
    for raw in raw_messages:
        message = normalize(raw)
        scored.append(to_scored_message(message, analyze(message)))
    return scored


def is_due(settings: AutoScanSettings, now: datetime) -> bool:
    """True when the user's auto-scan interval has elapsed since the cursor."""
    if settings.last_auto_scan is None:
        return True
    return now - settings.last_auto_scan >= timedelta(minutes=settings.auto_scan_interval)


class ScheduleCoordinator:
    """Drives scheduled sweeps and manual scans for all users.

    Holds the single-flight flag for sweeps, the periodic timer and one
    asyncio.Lock per user. Both the sweep and the manual paths take the
    user's lock around fetch, merge and write, so they never interleave
    on the same record.
    """

    def __init__(
        self,
        provider,
        store,
        settings_store,
        inter_user_delay: float = INTER_USER_DELAY_SECONDS,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.provider = provider
        self.store = store
        self.settings_store = settings_store
        self.aggregator = ScanAggregator(store)
        self.inter_user_delay = inter_user_delay
        self.clock = clock
        self._sweep_in_progress = False
        self._timer = PeriodicTask(name="auto-scan scheduler")
        self._user_locks: dict[str, asyncio.Lock] = {}

    def _lock_for(self, user_id: str) -> asyncio.Lock:
        """Return the lock serializing scans of one user.

        Locks are created on first use and kept for the lifetime of the
        coordinator, one per user seen. That is a small dict at the scale
        of a personal mailbox service, and dropping an idle lock could race
        with a scan that is about to acquire it.
        """
        lock = self._user_locks.get(user_id)
        if lock is None:
            lock = asyncio.Lock()
            self._user_locks[user_id] = lock
        return lock

    # --- ad hoc analysis ---

    def analyze(self, message) -> RiskAssessment:
        """Score a raw or canonical message without storing anything."""
        return analyze(message)

    # --- scans ---

    async def perform_scan(self, user_id: str) -> ScanRecord | None:
        """Incremental scan for one user with scheduled retention caps.

        Returns None when the account is not connected. The cursor is
        advanced only after the batch has been persisted; any exception
        propagates and leaves it unchanged.
        """
        async with self._lock_for(user_id):
            if not await self.provider.is_connected(user_id):
                logger.info("User %s - Gmail not connected, skipping", user_id)
                return None

            started_at = self.clock()
            settings = await self.settings_store.get_auto_scan_settings(user_id)

            if settings.last_auto_scan is not None:
                raw_messages = await self.provider.list_and_fetch_since(user_id, settings.last_auto_scan)
            else:
                raw_messages = await self.provider.list_and_fetch_window(
                    user_id, FIRST_RUN_QUERY, FIRST_RUN_MAX_MESSAGES
                )

            if not raw_messages:
                logger.info("User %s - No new emails found", user_id)
                await self.settings_store.update_auto_scan_settings(user_id, {"last_auto_scan": started_at})
                return await self.store.get_scan_record(user_id)

            scored = score_messages(raw_messages)
            retained = apply_retention(scored, SCHEDULED_MEDIUM_CAP, SCHEDULED_LOW_CAP)
            record = await self.aggregator.merge_and_persist(
                user_id,
                retained,
                started_at,
                is_auto_scan=True,
                fetched_count=len(raw_messages),
            )

            await self.settings_store.update_auto_scan_settings(user_id, {"last_auto_scan": started_at})
            logger.info(
                "User %s - Scanned %d emails, kept %d (%d total stored)",
                user_id,
                len(raw_messages),
                len(retained),
                record.total_email_count,
            )
            return record

    async def trigger_user_scan(self, user_id: str) -> ScanRecord | None:
        """Run perform_scan for one user outside the sweep; errors propagate."""
        logger.info("Manual scan triggered for user %s", user_id)
        return await self.perform_scan(user_id)

    async def perform_on_demand_scan(
        self,
        user_id: str,
        max_messages: int = ON_DEMAND_DEFAULT_MESSAGES,
        query: str = DEFAULT_QUERY,
    ) -> ScanRecord:
        """Scan the most recent messages matching a query right now.

        Uses the tighter on-demand retention caps and never moves the
        auto-scan cursor. Raises NotConnectedError when the account has
        no stored credentials.
        """
        limit = max(1, min(max_messages, ON_DEMAND_MAX_MESSAGES))
        async with self._lock_for(user_id):
            if not await self.provider.is_connected(user_id):
                raise NotConnectedError(
                    "Gmail not connected. Please connect your Gmail account first.", user_id
                )

            started_at = self.clock()
            logger.info("Starting inbox scan for user %s, fetching %d emails", user_id, limit)
            raw_messages = await self.provider.list_and_fetch_window(user_id, query, limit)

            scored = score_messages(raw_messages)
            retained = apply_retention(scored, ON_DEMAND_MEDIUM_CAP, ON_DEMAND_LOW_CAP)
            return await self.aggregator.merge_and_persist(
                user_id,
                retained,
                started_at,
                is_auto_scan=False,
                fetched_count=len(raw_messages),
            )

    # --- sweeps ---

    async def run_scheduled_sweep(self) -> None:
        """Scan every user with auto-scan enabled, one at a time.

        A sweep requested while another is running is skipped. A failure
        for one user is logged and the sweep moves on to the next.
        """
        if self._sweep_in_progress:
            logger.info("Previous sweep still running, skipping")
            return

        self._sweep_in_progress = True
        logger.info("Starting scheduled sweep")
        try:
            users = await self.settings_store.list_auto_scan_users()
            logger.info("Found %d user(s) with auto-scan enabled", len(users))

            scanned = skipped = failed = 0
            for index, user_id in enumerate(users):
                if index and self.inter_user_delay > 0:
                    await asyncio.sleep(self.inter_user_delay)
                try:
                    settings = await self.settings_store.get_auto_scan_settings(user_id)
                    if not is_due(settings, self.clock()):
                        skipped += 1
                        continue
                    if await self.perform_scan(user_id) is None:
                        skipped += 1
                    else:
                        scanned += 1
                except Exception:  # noqa: BLE001
                    failed += 1
                    logger.exception("User %s - auto-scan failed, cursor left unchanged", user_id)

            logger.info(
                "Sweep completed: %d scanned, %d skipped, %d failed", scanned, skipped, failed
            )
        except Exception:  # noqa: BLE001
            logger.exception("Scheduled sweep failed")
        finally:
            self._sweep_in_progress = False

    # --- scheduler lifecycle ---

    def start(
        self,
        interval: float = SWEEP_INTERVAL_SECONDS,
        initial_delay: float = SWEEP_INITIAL_DELAY_SECONDS,
    ) -> None:
        """Install the periodic sweep; the first run fires after initial_delay."""
        self._timer.start(interval, self.run_scheduled_sweep, initial_delay=initial_delay)

    async def stop(self) -> None:
        await self._timer.stop()

    def get_scheduler_status(self) -> dict:
        return {
            "running": self._timer.running,
            "job_in_progress": self._sweep_in_progress,
        }
