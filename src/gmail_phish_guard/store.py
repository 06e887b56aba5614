"""Persistence for scan records, scan history and auto-scan settings."""

from __future__ import annotations

import copy
import json
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Protocol

import aiosqlite

from .constants import HISTORY_LIMIT, STORE_DB_PATH
from .errors import PersistenceError
from .models import (
    AutoScanSettings,
    ScanHistoryEntry,
    ScanRecord,
    to_iso,
    utcnow,
    validate_settings_update,
)

logger = logging.getLogger(__name__)


class Store(Protocol):
    async def get_scan_record(self, user_id: str) -> ScanRecord | None: ...

    async def put_scan_record(self, user_id: str, record: ScanRecord) -> None: ...

    async def append_scan_history(self, user_id: str, entry: ScanHistoryEntry) -> None: ...

    async def get_scan_history(self, user_id: str, limit: int = HISTORY_LIMIT) -> list[ScanHistoryEntry]: ...


class SettingsStore(Protocol):
    async def get_auto_scan_settings(self, user_id: str) -> AutoScanSettings: ...

    async def update_auto_scan_settings(self, user_id: str, partial: dict) -> bool: ...

    async def list_auto_scan_users(self) -> list[str]: ...


def _settings_columns(partial: dict) -> dict:
    columns = {}
    if "auto_scan_enabled" in partial:
        columns["auto_scan_enabled"] = int(bool(partial["auto_scan_enabled"]))
    if "auto_scan_interval" in partial:
        columns["auto_scan_interval"] = int(partial["auto_scan_interval"])
    if "last_auto_scan" in partial:
        columns["last_auto_scan"] = to_iso(partial["last_auto_scan"])
    return columns


class MemoryStore:
    """In-process store used by tests and dry runs.

    Records are deep-copied on the way in and out so callers never share
    state with the store.
    """

    def __init__(self) -> None:
        self.records: dict[str, ScanRecord] = {}
        self.history: dict[str, list[ScanHistoryEntry]] = {}
        self.settings: dict[str, AutoScanSettings] = {}

    async def get_scan_record(self, user_id: str) -> ScanRecord | None:
        record = self.records.get(user_id)
        return copy.deepcopy(record) if record is not None else None

    async def put_scan_record(self, user_id: str, record: ScanRecord) -> None:
        self.records[user_id] = copy.deepcopy(record)

    async def append_scan_history(self, user_id: str, entry: ScanHistoryEntry) -> None:
        self.history.setdefault(user_id, []).append(copy.deepcopy(entry))

    async def get_scan_history(self, user_id: str, limit: int = HISTORY_LIMIT) -> list[ScanHistoryEntry]:
        entries = self.history.get(user_id, [])
        return [copy.deepcopy(e) for e in reversed(entries[-limit:])] if limit > 0 else []

    async def get_auto_scan_settings(self, user_id: str) -> AutoScanSettings:
        if user_id not in self.settings:
            self.settings[user_id] = AutoScanSettings()
        return copy.deepcopy(self.settings[user_id])

    async def update_auto_scan_settings(self, user_id: str, partial: dict) -> bool:
        validate_settings_update(partial)
        current = self.settings.setdefault(user_id, AutoScanSettings())
        for key, value in partial.items():
            setattr(current, key, value)
        return True

    async def list_auto_scan_users(self) -> list[str]:
        return [uid for uid, s in self.settings.items() if s.auto_scan_enabled]


_CREATE_TABLES_SQL = """
CREATE TABLE IF NOT EXISTS scan_results (
    user_id TEXT PRIMARY KEY,
    record_json TEXT NOT NULL,
    updated_at TEXT
);

CREATE TABLE IF NOT EXISTS scan_history (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id TEXT NOT NULL,
    scanned_at TEXT,
    email_count INTEGER,
    summary_json TEXT,
    is_auto_scan INTEGER
);

CREATE TABLE IF NOT EXISTS user_settings (
    user_id TEXT PRIMARY KEY,
    auto_scan_enabled INTEGER NOT NULL,
    auto_scan_interval INTEGER NOT NULL,
    last_auto_scan TEXT,
    updated_at TEXT
);
"""


class SqliteStore:
    """Persistent SQLite store: one record row per user, an append-only
    history table and one settings row per user.

    Every operation opens its own aiosqlite connection, so a store can be
    shared across event loops. Tables are created on first use.
    """

    def __init__(self, db_path: Path | None = None) -> None:
        self.db_path = Path(db_path or STORE_DB_PATH)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._initialized = False

    @asynccontextmanager
    async def _db(self) -> AsyncIterator[aiosqlite.Connection]:
        async with aiosqlite.connect(self.db_path) as db:
            db.row_factory = aiosqlite.Row
            if not self._initialized:
                await db.executescript(_CREATE_TABLES_SQL)
                self._initialized = True
            yield db

    # --- scan records ---

    async def get_scan_record(self, user_id: str) -> ScanRecord | None:
        try:
            async with self._db() as db:
                cursor = await db.execute(
                    "SELECT record_json FROM scan_results WHERE user_id = ?", (user_id,)
                )
                row = await cursor.fetchone()
        except aiosqlite.Error as exc:
            raise PersistenceError(f"Failed to read scan record: {exc}", user_id) from exc
        if row is None:
            return None
        return ScanRecord.from_dict(json.loads(row["record_json"]))

    async def put_scan_record(self, user_id: str, record: ScanRecord) -> None:
        """Replace the user's record in a single transaction."""
        try:
            async with self._db() as db:
                await db.execute(
                    "INSERT INTO scan_results (user_id, record_json, updated_at) VALUES (?, ?, ?) "
                    "ON CONFLICT(user_id) DO UPDATE SET "
                    "record_json = excluded.record_json, updated_at = excluded.updated_at",
                    (user_id, json.dumps(record.to_dict()), to_iso(utcnow())),
                )
                await db.commit()
        except aiosqlite.Error as exc:
            raise PersistenceError(f"Failed to save scan record: {exc}", user_id) from exc

    async def append_scan_history(self, user_id: str, entry: ScanHistoryEntry) -> None:
        try:
            async with self._db() as db:
                await db.execute(
                    "INSERT INTO scan_history (user_id, scanned_at, email_count, summary_json, is_auto_scan) "
                    "VALUES (?, ?, ?, ?, ?)",
                    (
                        user_id,
                        to_iso(entry.scanned_at),
                        entry.email_count,
                        json.dumps(entry.summary.to_dict()),
                        int(entry.is_auto_scan),
                    ),
                )
                await db.commit()
        except aiosqlite.Error as exc:
            raise PersistenceError(f"Failed to append scan history: {exc}", user_id) from exc

    async def get_scan_history(self, user_id: str, limit: int = HISTORY_LIMIT) -> list[ScanHistoryEntry]:
        """Return the most recent history entries, newest first."""
        try:
            async with self._db() as db:
                cursor = await db.execute(
                    "SELECT * FROM scan_history WHERE user_id = ? ORDER BY id DESC LIMIT ?",
                    (user_id, limit),
                )
                rows = await cursor.fetchall()
        except aiosqlite.Error as exc:
            raise PersistenceError(f"Failed to read scan history: {exc}", user_id) from exc
        return [
            ScanHistoryEntry.from_dict(
                {
                    "scanned_at": r["scanned_at"],
                    "email_count": r["email_count"],
                    "summary": json.loads(r["summary_json"] or "{}"),
                    "is_auto_scan": bool(r["is_auto_scan"]),
                }
            )
            for r in rows
        ]

    # --- auto-scan settings ---

    async def get_auto_scan_settings(self, user_id: str) -> AutoScanSettings:
        """Return the user's settings, creating the defaults on first read."""
        try:
            async with self._db() as db:
                row = await self._ensure_settings_row(db, user_id)
        except aiosqlite.Error as exc:
            raise PersistenceError(f"Failed to read auto-scan settings: {exc}", user_id) from exc

        if row is None:
            return AutoScanSettings()
        return AutoScanSettings.from_dict(
            {
                "auto_scan_enabled": bool(row["auto_scan_enabled"]),
                "auto_scan_interval": row["auto_scan_interval"],
                "last_auto_scan": row["last_auto_scan"],
            }
        )

    @staticmethod
    async def _ensure_settings_row(db: aiosqlite.Connection, user_id: str) -> aiosqlite.Row | None:
        # Returns the existing row, or None after inserting the defaults.
        cursor = await db.execute("SELECT * FROM user_settings WHERE user_id = ?", (user_id,))
        row = await cursor.fetchone()
        if row is not None:
            return row
        defaults = AutoScanSettings()
        await db.execute(
            "INSERT INTO user_settings "
            "(user_id, auto_scan_enabled, auto_scan_interval, last_auto_scan, updated_at) "
            "VALUES (?, ?, ?, ?, ?)",
            (
                user_id,
                int(defaults.auto_scan_enabled),
                defaults.auto_scan_interval,
                None,
                to_iso(utcnow()),
            ),
        )
        await db.commit()
        return None

    async def update_auto_scan_settings(self, user_id: str, partial: dict) -> bool:
        validate_settings_update(partial)
        columns = _settings_columns(partial)
        columns["updated_at"] = to_iso(utcnow())
        assignments = ", ".join(f"{name} = ?" for name in columns)
        try:
            async with self._db() as db:
                await self._ensure_settings_row(db, user_id)
                await db.execute(
                    f"UPDATE user_settings SET {assignments} WHERE user_id = ?",
                    (*columns.values(), user_id),
                )
                await db.commit()
        except aiosqlite.Error as exc:
            raise PersistenceError(f"Failed to update auto-scan settings: {exc}", user_id) from exc
        return True

    async def list_auto_scan_users(self) -> list[str]:
        try:
            async with self._db() as db:
                cursor = await db.execute(
                    "SELECT user_id FROM user_settings WHERE auto_scan_enabled = 1 ORDER BY user_id"
                )
                rows = await cursor.fetchall()
        except aiosqlite.Error as exc:
            raise PersistenceError(f"Failed to list auto-scan users: {exc}") from exc
        return [r["user_id"] for r in rows]

    # --- maintenance ---

    async def clear(self) -> None:
        """Drop and recreate all tables."""
        async with self._db() as db:
            await db.executescript(
                "DROP TABLE IF EXISTS scan_results;"
                "DROP TABLE IF EXISTS scan_history;"
                "DROP TABLE IF EXISTS user_settings;"
            )
            await db.executescript(_CREATE_TABLES_SQL)

    async def get_info(self) -> dict:
        """Return store statistics."""
        file_size = self.db_path.stat().st_size if self.db_path.exists() else 0

        async with self._db() as db:
            cursor = await db.execute("SELECT scanned_at FROM scan_history ORDER BY id DESC LIMIT 1")
            last_scan_row = await cursor.fetchone()
            counts = {}
            for key, sql in (
                ("user_count", "SELECT COUNT(*) AS c FROM scan_results"),
                ("history_count", "SELECT COUNT(*) AS c FROM scan_history"),
                ("auto_scan_users", "SELECT COUNT(*) AS c FROM user_settings WHERE auto_scan_enabled = 1"),
            ):
                cursor = await db.execute(sql)
                counts[key] = (await cursor.fetchone())["c"]

        return {
            "db_file_size": file_size,
            "last_scan_date": last_scan_row["scanned_at"] if last_scan_row else None,
            **counts,
        }
