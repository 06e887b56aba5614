"""Turn raw Gmail API payloads into canonical messages."""

from __future__ import annotations

import base64
import binascii
import logging
import re
from collections.abc import Mapping
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime

from bs4 import BeautifulSoup, Comment

from .models import EPOCH, CanonicalMessage, utcnow

logger = logging.getLogger(__name__)

_FROM_RE = re.compile(r"^(.*?)\s*<([^>]+)>$")
_URL_RE = re.compile(r"https?://[^\s<>\"')\]]+", re.IGNORECASE)
_TRAILING_PUNCT_RE = re.compile(r"[.,;:!?)}\]]+$")
_WHITESPACE_RE = re.compile(r"\s+")


def parse_from_header(from_value: str) -> tuple[str, str]:
    """Parse a From header into (display name, email address).

    Handles formats like:
      "John Doe <john@example.com>" -> ("John Doe", "john@example.com")
      "<john@example.com>"          -> ("", "john@example.com")
      "john@example.com"            -> ("", "john@example.com")
    """
    if not from_value:
        return ("", "")
    m = _FROM_RE.match(from_value.strip())
    if m:
        name = m.group(1).strip().strip('"').strip("'")
        return (name, m.group(2).strip())
    return ("", from_value.strip())


def decode_base64url(data: str) -> str:
    """Decode a base64url segment, returning "" when it is malformed."""
    if not data:
        return ""
    standard = data.strip().replace("-", "+").replace("_", "/").rstrip("=")
    standard += "=" * (-len(standard) % 4)
    try:
        raw = base64.b64decode(standard, validate=True)
    except (binascii.Error, ValueError) as exc:
        logger.warning("Failed to decode base64 body segment: %s", exc)
        return ""
    return raw.decode("utf-8", errors="replace")


def strip_html(markup: str) -> str:
    """Reduce an HTML document to collapsed plain text."""
    if not markup:
        return ""
    soup = BeautifulSoup(markup, "html.parser")
    for element in soup(["script", "style"]):
        element.decompose()
    for comment in soup.find_all(string=lambda s: isinstance(s, Comment)):
        comment.extract()
    text = soup.get_text(separator=" ", strip=True)
    return _WHITESPACE_RE.sub(" ", text).strip()


def extract_urls(text: str) -> tuple[str, ...]:
    """Find http(s) URLs in text, deduplicated in first-seen order."""
    if not text:
        return ()
    urls: dict[str, None] = {}
    for match in _URL_RE.findall(text):
        url = _TRAILING_PUNCT_RE.sub("", match)
        if url:
            urls.setdefault(url, None)
    return tuple(urls)


def _as_list(value) -> list | tuple:
    return value if isinstance(value, (list, tuple)) else ()


def _header_map(headers) -> dict[str, str]:
    # First header of a given name wins.
    result: dict[str, str] = {}
    for h in _as_list(headers):
        if not isinstance(h, Mapping):
            continue
        name = str(h.get("name") or "").lower()
        if name and name not in result:
            result[name] = str(h.get("value") or "")
    return result


def extract_body(payload: Mapping | None) -> tuple[str, str]:
    """Walk a MIME part tree and return (text body, html body).

    text/plain is preferred; the first value found at each nesting level
    wins. When only HTML is present a text body is synthesized from it.
    """
    text_body, html_body = _walk_parts(payload)
    if not text_body and html_body:
        text_body = strip_html(html_body)
    return text_body, html_body


def _body_data(part: Mapping) -> str:
    body = part.get("body")
    if not isinstance(body, Mapping):
        return ""
    return str(body.get("data") or "")


def _walk_parts(payload: Mapping | None) -> tuple[str, str]:
    text_body = ""
    html_body = ""
    if not isinstance(payload, Mapping):
        return text_body, html_body

    mime_type = str(payload.get("mimeType") or "").lower()
    data = _body_data(payload)
    if data:
        if mime_type == "text/plain":
            text_body = decode_base64url(data)
        elif mime_type == "text/html":
            html_body = decode_base64url(data)

    for part in _as_list(payload.get("parts")):
        if not isinstance(part, Mapping):
            continue
        part_type = str(part.get("mimeType") or "").lower()
        part_data = _body_data(part)
        if part_type == "text/plain" and part_data:
            if not text_body:
                text_body = decode_base64url(part_data)
        elif part_type == "text/html" and part_data:
            if not html_body:
                html_body = decode_base64url(part_data)
        elif _as_list(part.get("parts")):
            nested_text, nested_html = _walk_parts(part)
            if not text_body:
                text_body = nested_text
            if not html_body:
                html_body = nested_html

    return text_body, html_body


def _parse_received_at(date_header: str, internal_date) -> datetime:
    if date_header:
        try:
            parsed = parsedate_to_datetime(date_header)
        except (TypeError, ValueError, IndexError):
            parsed = None
        if parsed is not None:
            if parsed.tzinfo is None:
                parsed = parsed.replace(tzinfo=timezone.utc)
            return parsed.astimezone(timezone.utc)
    if internal_date:
        try:
            return datetime.fromtimestamp(int(internal_date) / 1000, tz=timezone.utc)
        except (TypeError, ValueError, OverflowError, OSError):
            pass
    return utcnow()


def normalize(raw: Mapping | None) -> CanonicalMessage:
    """Convert a Gmail API message (format="full") into a CanonicalMessage."""
    if not isinstance(raw, Mapping) or not raw:
        return CanonicalMessage()

    payload = raw.get("payload") or {}
    headers = _header_map(payload.get("headers") if isinstance(payload, Mapping) else None)

    name, email = parse_from_header(headers.get("from", ""))
    text_body, html_body = extract_body(payload)

    return CanonicalMessage(
        id=str(raw.get("id") or ""),
        thread_id=str(raw.get("threadId") or ""),
        subject=headers.get("subject", ""),
        sender=email,
        sender_name=name,
        body_text=text_body,
        body_html=html_body,
        urls=extract_urls(f"{text_body} {html_body}"),
        received_at=_parse_received_at(headers.get("date", ""), raw.get("internalDate")),
        snippet=str(raw.get("snippet") or ""),
    )


def from_fields(fields: Mapping) -> CanonicalMessage:
    """Build a CanonicalMessage from plain fields (subject, sender, body, urls).

    Used for ad hoc analysis of messages that did not come from Gmail.
    URLs are extracted from the body when none are given.
    """
    name, email = parse_from_header(str(fields.get("sender") or ""))
    body = str(fields.get("body") or fields.get("body_text") or "")
    body_html = str(fields.get("body_html") or "")
    urls = fields.get("urls")
    if urls is None:
        url_tuple = extract_urls(f"{body} {body_html}")
    elif isinstance(urls, str):
        url_tuple = (urls,) if urls else ()
    else:
        url_tuple = tuple(dict.fromkeys(str(u) for u in _as_list(urls) if u))
    received_at = fields.get("received_at")
    if isinstance(received_at, str):
        try:
            received_at = datetime.fromisoformat(received_at)
        except ValueError:
            received_at = None
    if not isinstance(received_at, datetime):
        received_at = EPOCH
    elif received_at.tzinfo is None:
        received_at = received_at.replace(tzinfo=timezone.utc)

    return CanonicalMessage(
        id=str(fields.get("id") or ""),
        thread_id=str(fields.get("thread_id") or ""),
        subject=str(fields.get("subject") or ""),
        sender=email,
        sender_name=str(fields.get("sender_name") or name),
        body_text=body,
        body_html=body_html,
        urls=url_tuple,
        received_at=received_at,
        snippet=str(fields.get("snippet") or ""),
    )


def truncate(text: str | None, limit: int) -> str:
    return (text or "")[:limit]
