"""Rich terminal formatting for pixelmend output."""

from __future__ import annotations

import logging

from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.progress import Progress, SpinnerColumn, TextColumn
from rich.table import Table

from pixelmend.core.models import (
    HealingReport,
    IssueResolution,
    IssueStatus,
    KnowledgeBaseEntry,
    LocalizedIssue,
    Outcome,
)

console = Console()
error_console = Console(stderr=True)


OUTCOME_COLORS = {
    "fixed": "green",
    "failed": "red",
    "aborted": "red",
    "cancelled": "yellow",
    "skipped": "dim",
}

STATUS_ICONS = {
    IssueStatus.FIXED: "[green]✅[/green]",
    IssueStatus.FAILED: "[red]❌[/red]",
    IssueStatus.ABORTED: "[red]⛔[/red]",
    IssueStatus.CANCELLED: "[yellow]⏹[/yellow]",
    IssueStatus.SKIPPED: "[dim]○[/dim]",
}


def setup_logging(verbose: bool = False) -> None:
    """Route library logging through rich."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=error_console, rich_tracebacks=True, show_path=verbose)],
        force=True,
    )


def confidence_bar(confidence: float, width: int = 12) -> str:
    """Create a text-based confidence bar."""
    filled = round(confidence * width)
    color = "green" if confidence >= 0.8 else "yellow" if confidence >= 0.5 else "red"
    return f"[{color}]{'█' * filled}{'░' * (width - filled)}[/{color}]"


def print_issues(issues: list[LocalizedIssue]) -> None:
    """Print localized issues with their top code references."""
    if not issues:
        console.print("\n  No issues localized.\n")
        return

    for issue in issues:
        lines = []
        lines.append(f"  {issue.description}")
        box = issue.region.box
        lines.append(f"  Region: {box.width}x{box.height} at ({box.x}, {box.y})")
        if issue.selectors:
            lines.append(f"  Elements: {', '.join(issue.selectors[:5])}")
        lines.append("")
        if not issue.code_references:
            lines.append("  [dim]No source references found.[/dim]")
        for ref in issue.code_references[:5]:
            lines.append(f"  {confidence_bar(ref.confidence)} {ref.confidence:.2f}  {ref.location}")
            if ref.context_snippet:
                lines.append(f"     [dim]{ref.context_snippet[:100]}[/dim]")

        console.print(Panel(
            "\n".join(lines),
            title=f"[bold]{issue.issue_id}[/bold]  {issue.classification.value}",
            border_style="cyan",
            padding=(0, 1),
        ))


def print_resolution(resolution: IssueResolution) -> None:
    """Print a single issue resolution."""
    icon = STATUS_ICONS.get(resolution.status, "●")
    console.print(f"  {icon} {resolution.issue.issue_id}  {resolution.label}")
    for attempt in resolution.attempts:
        record = attempt.record
        line = record.applied_line or record.candidate.line_number
        detail = attempt.verification.reason if attempt.verification else record.message
        console.print(
            f"     [dim]{record.status.value:<16}[/dim] "
            f"{record.candidate.file_path}:{line}  [dim]{detail}[/dim]"
        )


def print_healing_report(report: HealingReport) -> None:
    """Print the per-surface healing summary."""
    table = Table(title=f"Healing run {report.run_id}", show_lines=False)
    table.add_column("Surface")
    table.add_column("Diff %", justify="right")
    table.add_column("Regression")
    table.add_column("Localized")
    table.add_column("Fix attempted")
    table.add_column("Outcome")

    def yes_no(value: bool) -> str:
        return "yes" if value else "[dim]no[/dim]"

    for s in report.surfaces:
        color = OUTCOME_COLORS.get(s.outcome, "white")
        outcome = f"[{color}]{s.outcome}[/{color}]"
        if s.reason:
            outcome += f" [dim]({s.reason})[/dim]"
        table.add_row(
            s.name,
            f"{s.diff_percentage:.2f}",
            yes_no(s.regression_detected),
            yes_no(s.localized),
            yes_no(s.fix_attempted),
            outcome,
        )

    console.print()
    console.print(table)
    for resolution in report.resolutions:
        print_resolution(resolution)

    console.print()
    console.print(
        f"  [green]{report.fixed_count} fixed[/green] | "
        f"[red]{report.failed_count} unresolved[/red]"
    )
    if report.fixed_count:
        console.print("  [dim]Run `pixelmend undo --list` to review or revert applied fixes.[/dim]")
    console.print()


def print_kb_entries(entries: list[KnowledgeBaseEntry]) -> None:
    """Print knowledge-base entries, newest first."""
    if not entries:
        console.print("\n  Knowledge base is empty.\n")
        return

    table = Table(title="Knowledge base")
    table.add_column("When")
    table.add_column("Signature")
    table.add_column("Outcome")
    table.add_column("Diff after", justify="right")
    table.add_column("Fix")
    for e in sorted(entries, key=lambda e: e.timestamp, reverse=True):
        color = "green" if e.outcome == Outcome.SUCCESS else "red"
        table.add_row(
            e.timestamp.strftime("%Y-%m-%d %H:%M"),
            e.issue_signature,
            f"[{color}]{e.outcome.value}[/{color}]",
            f"{e.diff_percentage_after:.2f}",
            e.fix_description[:60],
        )
    console.print(table)


def get_progress() -> Progress:
    """Create a progress instance for long-running steps."""
    return Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        console=console,
    )
