"""Tests for the normalizer module."""

from datetime import datetime, timezone

import pytest

from conftest import b64url, gmail_message
from gmail_phish_guard.models import CanonicalMessage
from gmail_phish_guard.normalizer import (
    decode_base64url,
    extract_body,
    extract_urls,
    from_fields,
    normalize,
    parse_from_header,
    strip_html,
)


def test_parse_from_header_with_name():
    assert parse_from_header("John Doe <john@example.com>") == ("John Doe", "john@example.com")


def test_parse_from_header_quoted_name():
    assert parse_from_header('"Doe, John" <john@example.com>') == ("Doe, John", "john@example.com")


def test_parse_from_header_bare_email():
    assert parse_from_header("john@example.com") == ("", "john@example.com")


def test_parse_from_header_empty():
    assert parse_from_header("") == ("", "")


def test_decode_base64url():
    assert decode_base64url(b64url("Hello, world?>>")) == "Hello, world?>>"


def test_decode_base64url_malformed_returns_empty():
    assert decode_base64url("!!!not base64!!!") == ""


def test_strip_html():
    markup = "<html><style>p {color: red}</style><body><p>Tom &amp; Jerry</p><script>x()</script></body></html>"
    assert strip_html(markup) == "Tom & Jerry"


def test_strip_html_drops_comments():
    assert strip_html("<p>Hi<!-- <b>tracking</b> --> there</p>") == "Hi there"


def test_strip_html_ignores_angle_bracket_in_attribute():
    assert strip_html('<img alt="a > b">Pay now') == "Pay now"


def test_extract_urls_dedup_and_trailing_punctuation():
    text = "Go to https://example.com/a. Or http://example.com/b, then https://example.com/a again"
    assert extract_urls(text) == ("https://example.com/a", "http://example.com/b")


def test_extract_urls_from_href():
    assert extract_urls('<a href="https://example.com/x">click</a>') == ("https://example.com/x",)


def test_normalize_headers_and_body():
    msg = normalize(gmail_message("abc", subject="Lunch?", body="Visit https://example.com now"))
    assert msg.id == "abc"
    assert msg.thread_id == "t-abc"
    assert msg.subject == "Lunch?"
    assert msg.sender == "alice.smith@gmail.com"
    assert msg.sender_name == "Alice Smith"
    assert msg.body_text == "Visit https://example.com now"
    assert msg.urls == ("https://example.com",)
    assert msg.received_at == datetime(2024, 6, 1, 10, 0, tzinfo=timezone.utc)


def test_normalize_header_names_are_case_insensitive():
    raw = gmail_message("abc")
    raw["payload"]["headers"] = [
        {"name": "SUBJECT", "value": "First"},
        {"name": "subject", "value": "Second"},
    ]
    assert normalize(raw).subject == "First"


def test_normalize_falls_back_to_internal_date():
    raw = gmail_message("abc", date="not a date")
    assert normalize(raw).received_at == datetime.fromtimestamp(1717236000, tz=timezone.utc)


def test_nested_multipart_prefers_first_text_part():
    raw = {
        "id": "m1",
        "payload": {
            "mimeType": "multipart/mixed",
            "headers": [],
            "parts": [
                {
                    "mimeType": "multipart/alternative",
                    "parts": [
                        {"mimeType": "text/plain", "body": {"data": b64url("first text")}},
                        {"mimeType": "text/html", "body": {"data": b64url("<p>first html</p>")}},
                    ],
                },
                {"mimeType": "text/plain", "body": {"data": b64url("second text")}},
            ],
        },
    }
    text_body, _ = extract_body(raw["payload"])
    assert text_body == "first text"
    msg = normalize(raw)
    assert msg.body_html == "<p>first html</p>"


def test_sibling_text_part_wins_over_nested():
    payload = {
        "mimeType": "multipart/mixed",
        "parts": [
            {"mimeType": "text/plain", "body": {"data": b64url("top level")}},
            {
                "mimeType": "multipart/alternative",
                "parts": [{"mimeType": "text/plain", "body": {"data": b64url("nested")}}],
            },
        ],
    }
    assert extract_body(payload)[0] == "top level"


def test_html_only_synthesizes_text():
    payload = {
        "mimeType": "multipart/alternative",
        "parts": [
            {
                "mimeType": "text/html",
                "body": {"data": b64url('<p>Click <a href="https://example.xyz/login">here</a></p>')},
            }
        ],
    }
    text_body, html_body = extract_body(payload)
    assert text_body == "Click here"
    assert "https://example.xyz/login" in html_body
    assert normalize({"id": "h1", "payload": payload}).urls == ("https://example.xyz/login",)


def test_malformed_part_yields_empty_body():
    payload = {"mimeType": "text/plain", "body": {"data": "!!!not base64!!!"}}
    assert extract_body(payload) == ("", "")


def test_normalize_empty():
    assert normalize({}) == CanonicalMessage()
    assert normalize(None) == CanonicalMessage()


def test_from_fields():
    msg = from_fields(
        {
            "subject": "Hi",
            "sender": "Bob <bob@example.com>",
            "body": "see http://example.com/x",
            "received_at": "2024-06-01T10:00:00",
        }
    )
    assert msg.sender == "bob@example.com"
    assert msg.sender_name == "Bob"
    assert msg.urls == ("http://example.com/x",)
    assert msg.received_at == datetime(2024, 6, 1, 10, 0, tzinfo=timezone.utc)


def test_from_fields_explicit_urls_are_deduplicated():
    msg = from_fields({"urls": ["http://a.com", "http://a.com", "", "http://b.com"]})
    assert msg.urls == ("http://a.com", "http://b.com")


@pytest.mark.parametrize(
    "raw",
    [
        {"payload": {"headers": 7}},
        {"payload": {"headers": "Subject: hi"}},
        {"payload": {"headers": [{"name": "Subject", "value": "hi"}], "parts": 3}},
        {"payload": {"mimeType": "multipart/mixed", "parts": [{"mimeType": "multipart/alternative", "parts": 5}]}},
        {"payload": ["not", "a", "mapping"]},
        {"id": 42, "payload": {"body": "oops"}, "internalDate": [1]},
    ],
)
def test_normalize_malformed_payload_never_raises(raw):
    msg = normalize(raw)
    assert msg.body_text == ""
    assert msg.urls == ()


@pytest.mark.parametrize("urls", [5, 3.5, {"a": 1}, True])
def test_from_fields_non_list_urls_are_ignored(urls):
    assert from_fields({"urls": urls}).urls == ()


def test_from_fields_single_url_string():
    assert from_fields({"urls": "http://a.com"}).urls == ("http://a.com",)
