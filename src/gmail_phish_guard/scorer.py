"""Rule-based phishing risk scoring of canonical messages."""

from __future__ import annotations

import re
from collections.abc import Mapping, Sequence
from urllib.parse import urlsplit

from .constants import (
    COMMONLY_SPOOFED_BRANDS,
    FLAG_KEYWORDS_LIMIT,
    KEYWORD_POINTS,
    PHISHING_KEYWORDS,
    SCORE_HIGH,
    SCORE_MEDIUM,
    SCORE_PRECISION,
    SENDER_BRAND_MISMATCH_SCORE,
    SENDER_NUMERIC_DOMAIN_SCORE,
    SENDER_RANDOM_LOCAL_SCORE,
    SENDER_SUSPICIOUS_THRESHOLD,
    SUSPICIOUS_TLDS,
    URL_MAX_DOTS,
    URL_MAX_LENGTH,
    WEIGHT_KEYWORD,
    WEIGHT_SENDER,
    WEIGHT_URL,
)
from .models import (
    AnalysisDetails,
    CanonicalMessage,
    KeywordAnalysis,
    RiskAssessment,
    RiskLevel,
    SenderAnalysis,
    UrlAnalysis,
)
from .normalizer import from_fields, normalize

_IPV4_HOST_RE = re.compile(r"^\d{1,3}(?:\.\d{1,3}){3}$")
_RANDOM_LOCAL_RE = re.compile(r"^[a-z0-9]{10,}@")


def _url_host(url: str) -> str:
    try:
        return (urlsplit(url).hostname or "").lower()
    except ValueError:
        return ""


def _brand_next_to_digit(url_lower: str) -> str | None:
    """Return the first spoofed brand found directly beside a digit."""
    for brand in COMMONLY_SPOOFED_BRANDS:
        idx = url_lower.find(brand)
        if idx < 0 or f"{brand}.com" in url_lower:
            continue
        before = url_lower[idx - 1] if idx > 0 else ""
        after_idx = idx + len(brand)
        after = url_lower[after_idx] if after_idx < len(url_lower) else ""
        if before.isdigit() or after.isdigit():
            return brand
    return None


def url_reasons(url: str) -> list[str]:
    """Return why a single URL looks suspicious; empty when it does not."""
    reasons: list[str] = []
    url_lower = url.lower()
    host = _url_host(url)

    if _IPV4_HOST_RE.match(host):
        reasons.append("URL contains IP address instead of domain name")

    for tld in SUSPICIOUS_TLDS:
        if host.endswith(tld):
            reasons.append(f"Suspicious top-level domain detected: {tld}")
            break

    brand = _brand_next_to_digit(url_lower)
    if brand:
        reasons.append(f"Possible typosquatting of {brand} detected")

    if "login" in url_lower and "secure" in url_lower:
        reasons.append("URL contains suspicious login + secure pattern")

    if len(url) > URL_MAX_LENGTH:
        reasons.append("Excessively long URL detected (possible obfuscation)")

    if url.count(".") > URL_MAX_DOTS:
        reasons.append("URL has too many subdomains")

    return reasons


def analyze_urls(urls: Sequence[str]) -> UrlAnalysis:
    """Score URLs by the share that trip at least one heuristic (0-100)."""
    suspicious: list[str] = []
    reasons: list[str] = []
    for url in urls:
        found = url_reasons(url)
        if found:
            suspicious.append(url)
            reasons.extend(found)

    score = min(len(suspicious) / len(urls), 1.0) * 100 if urls else 0.0
    return UrlAnalysis(
        suspicious_urls=tuple(suspicious),
        score=score,
        reasons=tuple(dict.fromkeys(reasons)),
    )


def analyze_keywords(subject: str, body: str) -> KeywordAnalysis:
    content = f"{subject or ''} {body or ''}".lower()
    found = [kw for kw in PHISHING_KEYWORDS if kw in content]
    return KeywordAnalysis(
        found_keywords=tuple(found),
        score=float(min(len(found) * KEYWORD_POINTS, 100)),
    )


def analyze_sender(sender: str) -> SenderAnalysis:
    """Look for brand impersonation and machine-generated addresses."""
    sender_lower = (sender or "").lower()
    domain = sender_lower.split("@", 1)[1] if "@" in sender_lower else ""
    score = 0
    reason: str | None = None

    for brand in COMMONLY_SPOOFED_BRANDS:
        if brand in sender_lower and domain not in (f"{brand}.com", f"{brand}.org"):
            score = SENDER_BRAND_MISMATCH_SCORE
            reason = f"Sender claims to be from {brand} but email domain doesn't match"
            break

    if _RANDOM_LOCAL_RE.match(sender_lower):
        score = max(score, SENDER_RANDOM_LOCAL_SCORE)
        reason = reason or "Sender has suspicious random-looking email address"

    first_label = domain.split(".")[0]
    if any(ch.isdigit() for ch in first_label):
        score = max(score, SENDER_NUMERIC_DOMAIN_SCORE)
        reason = reason or "Domain contains suspicious numbers"

    return SenderAnalysis(
        is_suspicious=score > SENDER_SUSPICIOUS_THRESHOLD,
        reason=reason,
        score=float(score),
    )


def classify_risk(score: float) -> RiskLevel:
    """Map a normalized score to a risk level."""
    if score >= SCORE_HIGH:
        return RiskLevel.HIGH
    if score >= SCORE_MEDIUM:
        return RiskLevel.MEDIUM
    return RiskLevel.LOW


def combine_scores(url_score: float, keyword_score: float, sender_score: float) -> float:
    """Weighted sum of the sub-scores, normalized to [0, 1]."""
    weighted = url_score * WEIGHT_URL + keyword_score * WEIGHT_KEYWORD + sender_score * WEIGHT_SENDER
    return round(min(max(weighted / 100, 0.0), 1.0), SCORE_PRECISION)


def to_canonical(message) -> CanonicalMessage:
    """Accept a CanonicalMessage, a raw Gmail payload or plain fields."""
    if isinstance(message, CanonicalMessage):
        return message
    if isinstance(message, Mapping):
        if "payload" in message:
            return normalize(message)
        return from_fields(message)
    return CanonicalMessage()


def analyze(message) -> RiskAssessment:
    """Calculate a phishing risk assessment for a message.

    Deterministic and side-effect free. Missing fields count as empty.
    """
    msg = to_canonical(message)

    url_analysis = analyze_urls(msg.urls)
    keyword_analysis = analyze_keywords(msg.subject, msg.body_text)
    sender_analysis = analyze_sender(msg.sender)

    score = combine_scores(url_analysis.score, keyword_analysis.score, sender_analysis.score)

    flags: list[str] = []
    if url_analysis.suspicious_urls:
        flags.append(f"{len(url_analysis.suspicious_urls)} suspicious URL(s) detected")
    if keyword_analysis.found_keywords:
        shown = ", ".join(keyword_analysis.found_keywords[:FLAG_KEYWORDS_LIMIT])
        flags.append(f"Phishing keywords found: {shown}")
    if sender_analysis.is_suspicious and sender_analysis.reason:
        flags.append(sender_analysis.reason)

    reasons = list(url_analysis.reasons)
    if keyword_analysis.found_keywords:
        reasons.append(f"{len(keyword_analysis.found_keywords)} phishing keyword(s) in subject or body")
    if sender_analysis.reason:
        reasons.append(sender_analysis.reason)

    return RiskAssessment(
        score=score,
        level=classify_risk(score),
        flags=tuple(flags),
        details=AnalysisDetails(
            url_analysis=url_analysis,
            keyword_analysis=keyword_analysis,
            sender_analysis=sender_analysis,
        ),
        risk_reasons=tuple(dict.fromkeys(reasons)),
    )


def quick_phishing_check(message) -> bool:
    """Cheap pre-check: any keyword, suspicious TLD or IP-address URL."""
    msg = to_canonical(message)
    content = f"{msg.subject} {msg.body_text}".lower()
    if any(kw in content for kw in PHISHING_KEYWORDS):
        return True
    for url in msg.urls:
        host = _url_host(url)
        if _IPV4_HOST_RE.match(host) or any(host.endswith(tld) for tld in SUSPICIOUS_TLDS):
            return True
    return False
