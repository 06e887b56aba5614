"""Rich-based display functions for Gmail Phish Guard."""

from __future__ import annotations

import logging

from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.table import Table

from .models import AutoScanSettings, RiskAssessment, RiskLevel, ScanHistoryEntry, ScanRecord

console = Console()

_LEVEL_COLORS = {
    RiskLevel.HIGH: "red",
    RiskLevel.MEDIUM: "yellow",
    RiskLevel.LOW: "green",
}


def setup_logging(verbose: bool = False) -> None:
    """Route library logging through Rich on stderr."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=Console(stderr=True), rich_tracebacks=True, show_path=False)],
        force=True,
    )
    # googleapiclient is chatty at INFO
    logging.getLogger("googleapiclient").setLevel(logging.WARNING)


def _level_text(level: RiskLevel) -> str:
    color = _LEVEL_COLORS[level]
    return f"[{color}]{level.value}[/{color}]"


def display_scan_record(record: ScanRecord, level: RiskLevel | None = None, limit: int | None = None) -> None:
    """Display stored emails newest first, optionally filtered by risk level."""
    emails = record.sorted_emails(level)
    if limit is not None:
        emails = emails[:limit]

    table = Table(title=f"Scan Results for {record.user_id}")
    table.add_column("#", justify="right", style="dim")
    table.add_column("Received")
    table.add_column("Sender")
    table.add_column("Subject")
    table.add_column("Score", justify="right")
    table.add_column("Risk")

    for idx, msg in enumerate(emails, start=1):
        color = _LEVEL_COLORS[msg.risk_level]
        table.add_row(
            str(idx),
            msg.received_at.strftime("%Y-%m-%d %H:%M"),
            msg.sender,
            msg.subject,
            f"[{color}]{msg.phishing_score:.2f}[/{color}]",
            _level_text(msg.risk_level),
        )

    console.print(table)
    summary = record.summary
    scanned = record.last_scanned_at.isoformat() if record.last_scanned_at else "never"
    console.print(
        Panel(
            f"Total: {summary.total}  |  "
            f"[red]High: {summary.high}[/red]  |  "
            f"[yellow]Medium: {summary.medium}[/yellow]  |  "
            f"[green]Low: {summary.low}[/green]\n"
            f"Last scan: {scanned} ({record.last_scan_new_count} new)",
            title="Summary",
        )
    )


def display_assessment(assessment: RiskAssessment, subject: str = "") -> None:
    """Display a single risk assessment with its sub-scores and flags."""
    details = assessment.details
    lines = [
        f"[bold]Subject:[/bold] {subject}" if subject else "",
        f"[bold]Risk:[/bold] {_level_text(assessment.level)} ({assessment.score:.2f})",
        f"[bold]URL score:[/bold] {details.url_analysis.score:.0f}",
        f"[bold]Keyword score:[/bold] {details.keyword_analysis.score:.0f}",
        f"[bold]Sender score:[/bold] {details.sender_analysis.score:.0f}",
    ]
    lines = [line for line in lines if line]

    if assessment.flags:
        lines.append("")
        lines.append("[bold]Flags:[/bold]")
        for flag in assessment.flags:
            lines.append(f"  - {flag}")

    if details.url_analysis.suspicious_urls:
        lines.append("")
        lines.append("[bold]Suspicious URLs:[/bold]")
        for url in details.url_analysis.suspicious_urls:
            lines.append(f"  - {url}")

    console.print(Panel("\n".join(lines), title="Risk Assessment"))


def display_history(user_id: str, entries: list[ScanHistoryEntry]) -> None:
    table = Table(title=f"Scan History for {user_id}")
    table.add_column("Scanned at")
    table.add_column("Emails", justify="right")
    table.add_column("High", justify="right", style="red")
    table.add_column("Medium", justify="right", style="yellow")
    table.add_column("Low", justify="right", style="green")
    table.add_column("Type")

    for entry in entries:
        table.add_row(
            entry.scanned_at.isoformat(),
            str(entry.email_count),
            str(entry.summary.high),
            str(entry.summary.medium),
            str(entry.summary.low),
            "auto" if entry.is_auto_scan else "manual",
        )

    console.print(table)


def display_settings(user_id: str, settings: AutoScanSettings) -> None:
    last = settings.last_auto_scan.isoformat() if settings.last_auto_scan else "never"
    enabled = "[green]enabled[/green]" if settings.auto_scan_enabled else "[red]disabled[/red]"
    console.print(
        Panel(
            f"[bold]Auto-scan:[/bold] {enabled}\n"
            f"[bold]Interval:[/bold] {settings.auto_scan_interval} minutes\n"
            f"[bold]Last auto-scan:[/bold] {last}",
            title=f"Settings for {user_id}",
        )
    )
