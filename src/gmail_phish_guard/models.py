"""Data models for Gmail Phish Guard."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import Enum

from .constants import ALLOWED_SCAN_INTERVALS, DEFAULT_AUTO_SCAN_ENABLED, DEFAULT_SCAN_INTERVAL

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def to_iso(value: datetime | None) -> str | None:
    if value is None:
        return None
    return value.isoformat()


def from_iso(value: str | None) -> datetime | None:
    """Parse an ISO-8601 string, treating naive values as UTC."""
    if not value:
        return None
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


class RiskLevel(str, Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"


@dataclass(frozen=True)
class CanonicalMessage:
    """Provider-agnostic view of a fetched message."""

    id: str = ""
    thread_id: str = ""
    subject: str = ""
    sender: str = ""  # Extracted email address
    sender_name: str = ""
    body_text: str = ""
    body_html: str = ""
    urls: tuple[str, ...] = ()
    received_at: datetime = EPOCH
    snippet: str = ""


@dataclass(frozen=True)
class UrlAnalysis:
    suspicious_urls: tuple[str, ...] = ()
    score: float = 0.0
    reasons: tuple[str, ...] = ()


@dataclass(frozen=True)
class KeywordAnalysis:
    found_keywords: tuple[str, ...] = ()
    score: float = 0.0


@dataclass(frozen=True)
class SenderAnalysis:
    is_suspicious: bool = False
    reason: str | None = None
    score: float = 0.0


@dataclass(frozen=True)
class AnalysisDetails:
    url_analysis: UrlAnalysis
    keyword_analysis: KeywordAnalysis
    sender_analysis: SenderAnalysis


@dataclass(frozen=True)
class RiskAssessment:
    """Deterministic scorer output for a single message."""

    score: float
    level: RiskLevel
    flags: tuple[str, ...]
    details: AnalysisDetails
    risk_reasons: tuple[str, ...] = ()


@dataclass
class ScoredMessage:
    """A trimmed message plus its flattened risk assessment, as stored."""

    id: str
    thread_id: str = ""
    subject: str = ""
    sender: str = ""
    sender_name: str = ""
    received_at: datetime = EPOCH
    snippet: str = ""
    body: str | None = None  # Only kept for HIGH risk
    urls: list[str] = field(default_factory=list)  # Only kept for HIGH risk
    url_count: int = 0
    risk_level: RiskLevel = RiskLevel.LOW
    phishing_score: float = 0.0
    flags: list[str] = field(default_factory=list)
    url_score: float = 0.0
    keyword_score: float = 0.0
    sender_score: float = 0.0

    def to_dict(self) -> dict:
        data = asdict(self)
        data["received_at"] = to_iso(self.received_at)
        data["risk_level"] = self.risk_level.value
        return data

    @classmethod
    def from_dict(cls, data: dict) -> ScoredMessage:
        values = dict(data)
        values["received_at"] = from_iso(values.get("received_at")) or EPOCH
        values["risk_level"] = RiskLevel(values.get("risk_level", RiskLevel.LOW.value))
        values["urls"] = list(values.get("urls") or [])
        values["flags"] = list(values.get("flags") or [])
        return cls(**values)


@dataclass
class ScanSummary:
    total: int = 0
    high: int = 0
    medium: int = 0
    low: int = 0

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict | None) -> ScanSummary:
        return cls(**(data or {}))


@dataclass
class ScanRecord:
    """Cumulative, deduplicated scan results for one user."""

    user_id: str
    last_scanned_at: datetime | None = None
    last_scan_new_count: int = 0
    total_email_count: int = 0
    summary: ScanSummary = field(default_factory=ScanSummary)
    emails: dict[str, ScoredMessage] = field(default_factory=dict)

    def sorted_emails(self, level: RiskLevel | None = None) -> list[ScoredMessage]:
        """Return stored emails newest first, optionally filtered by level."""
        emails = sorted(self.emails.values(), key=lambda m: m.received_at, reverse=True)
        if level is not None:
            emails = [m for m in emails if m.risk_level == level]
        return emails

    def to_dict(self) -> dict:
        return {
            "user_id": self.user_id,
            "last_scanned_at": to_iso(self.last_scanned_at),
            "last_scan_new_count": self.last_scan_new_count,
            "total_email_count": self.total_email_count,
            "summary": self.summary.to_dict(),
            "emails": {key: msg.to_dict() for key, msg in self.emails.items()},
        }

    @classmethod
    def from_dict(cls, data: dict) -> ScanRecord:
        return cls(
            user_id=data["user_id"],
            last_scanned_at=from_iso(data.get("last_scanned_at")),
            last_scan_new_count=data.get("last_scan_new_count", 0),
            total_email_count=data.get("total_email_count", 0),
            summary=ScanSummary.from_dict(data.get("summary")),
            emails={
                key: ScoredMessage.from_dict(value)
                for key, value in (data.get("emails") or {}).items()
            },
        )


@dataclass
class ScanHistoryEntry:
    """Append-only audit entry written after every persisted scan."""

    scanned_at: datetime
    email_count: int
    summary: ScanSummary
    is_auto_scan: bool = False

    def to_dict(self) -> dict:
        return {
            "scanned_at": to_iso(self.scanned_at),
            "email_count": self.email_count,
            "summary": self.summary.to_dict(),
            "is_auto_scan": self.is_auto_scan,
        }

    @classmethod
    def from_dict(cls, data: dict) -> ScanHistoryEntry:
        return cls(
            scanned_at=from_iso(data["scanned_at"]) or EPOCH,
            email_count=data.get("email_count", 0),
            summary=ScanSummary.from_dict(data.get("summary")),
            is_auto_scan=bool(data.get("is_auto_scan", False)),
        )


@dataclass
class AutoScanSettings:
    """Per-user scheduling settings; last_auto_scan is the fetch cursor."""

    auto_scan_enabled: bool = DEFAULT_AUTO_SCAN_ENABLED
    auto_scan_interval: int = DEFAULT_SCAN_INTERVAL  # minutes
    last_auto_scan: datetime | None = None

    def to_dict(self) -> dict:
        return {
            "auto_scan_enabled": self.auto_scan_enabled,
            "auto_scan_interval": self.auto_scan_interval,
            "last_auto_scan": to_iso(self.last_auto_scan),
        }

    @classmethod
    def from_dict(cls, data: dict | None) -> AutoScanSettings:
        data = data or {}
        return cls(
            auto_scan_enabled=bool(data.get("auto_scan_enabled", DEFAULT_AUTO_SCAN_ENABLED)),
            auto_scan_interval=int(data.get("auto_scan_interval", DEFAULT_SCAN_INTERVAL)),
            last_auto_scan=from_iso(data.get("last_auto_scan")),
        )


_SETTINGS_FIELDS = {"auto_scan_enabled", "auto_scan_interval", "last_auto_scan"}


def validate_settings_update(partial: dict) -> dict:
    """Check a partial settings update and return it unchanged.

    Raises ValueError for unknown keys or an interval outside
    ALLOWED_SCAN_INTERVALS.
    """
    unknown = set(partial) - _SETTINGS_FIELDS
    if unknown:
        raise ValueError(f"Unknown auto-scan setting(s): {', '.join(sorted(unknown))}")
    if "auto_scan_interval" in partial and partial["auto_scan_interval"] not in ALLOWED_SCAN_INTERVALS:
        allowed = ", ".join(str(i) for i in ALLOWED_SCAN_INTERVALS)
        raise ValueError(f"auto_scan_interval must be one of {allowed} minutes")
    last = partial.get("last_auto_scan")
    if last is not None and not isinstance(last, datetime):
        raise ValueError("last_auto_scan must be a datetime or None")
    return partial
