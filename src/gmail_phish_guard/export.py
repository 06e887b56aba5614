"""Export a user's stored scan results to CSV or JSON."""

import csv
import json

from .models import ScanRecord

_FIELDNAMES = [
    "id",
    "received_at",
    "sender",
    "sender_name",
    "subject",
    "risk_level",
    "phishing_score",
    "url_count",
    "flags",
]


def _row(msg) -> dict:
    return {
        "id": msg.id,
        "received_at": msg.received_at.isoformat(),
        "sender": msg.sender,
        "sender_name": msg.sender_name,
        "subject": msg.subject,
        "risk_level": msg.risk_level.value,
        "phishing_score": msg.phishing_score,
        "url_count": msg.url_count,
        "flags": msg.flags,
    }


def export_record(record: ScanRecord, format: str, output_path: str) -> int:
    """Export stored emails, newest first, to a file.

    Args:
        record: The scan record to export.
        format: Output format, either 'csv' or 'json'.
        output_path: Path to write the output file.

    Returns the number of exported emails.
    """
    emails = record.sorted_emails()

    if format == "csv":
        with open(output_path, "w", newline="") as f:
            writer = csv.DictWriter(f, fieldnames=_FIELDNAMES)
            writer.writeheader()
            for msg in emails:
                row = _row(msg)
                row["flags"] = "; ".join(msg.flags)
                writer.writerow(row)
    elif format == "json":
        payload = {
            "user_id": record.user_id,
            "summary": record.summary.to_dict(),
            "emails": [_row(msg) for msg in emails],
        }
        with open(output_path, "w") as f:
            json.dump(payload, f, indent=2)
    else:
        raise ValueError(f"Unsupported export format: {format}")

    return len(emails)
