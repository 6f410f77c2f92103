#!/usr/bin/env python3
"""Log Monitor - START/END job duration checker.

Reads a CSV or plain-text operational log, pairs START/END events by PID and
reports how long each job ran:
- CSV with or without a header row, or freeform lines
- WARNING above 5 minutes, ERROR above 10 minutes (configurable)
- Orphan END and incomplete START detection
- Rich terminal output with tables and panels
- Optional Markdown and JSON export
"""

from __future__ import annotations

import json
import logging
import sys
from datetime import datetime
from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table
from rich.text import Text
from rich.theme import Theme

from log_monitor.engine import (
    CompletedInterval,
    IncompleteStart,
    LogReport,
    OrphanEnd,
    ReportSummary,
    SeverityThresholds,
    analyze,
    summarize_report,
)

APP_VERSION = "1.0.0"

SAMPLE_LOG_LINES: list[str] = [
    "time,pid,status,description",
    "12:00:00,46578,START,Job A processing",
    "12:04:00,46578,END,Job A finished",
    "12:10:00,12345,START,Job B processing",
    "12:22:00,12345,END,Job B finished",
    "23:55:00,99999,START,Night job",
    "00:10:00,99999,END,Night job finished (wrap midnight)",
    "12:30:00 55555 START AnotherJob",
    "12:38:00 55555 END AnotherJob",
]

# ============================================================
# FORMATTING HELPERS
# ============================================================


def format_duration(seconds: int | None) -> str:
    """Format seconds as 'Xh Ym Zs' or 'Ym Zs'."""
    if seconds is None:
        return "-"
    hours = seconds // 3600
    minutes = (seconds % 3600) // 60
    secs = seconds % 60
    if hours > 0:
        return f"{hours}h {minutes}m {secs}s"
    return f"{minutes}m {secs}s"


def build_summary_rows(summary: ReportSummary) -> list[tuple[str, str]]:
    """Build headline count rows."""
    return [
        ("Total", f"{summary.total}"),
        ("Warnings", f"{summary.warning_count}"),
        ("Errors", f"{summary.error_count}"),
        ("Incomplete", f"{summary.incomplete_count}"),
        ("Orphan ends", f"{summary.orphan_count}"),
        ("Parsed events", f"{summary.entry_count}"),
    ]


def build_interval_rows(completed: list[CompletedInterval]) -> list[dict[str, str]]:
    """Build completed interval rows for output rendering."""
    return [
        {
            "pid": interval.pid,
            "start": interval.start_time,
            "end": interval.end_time,
            "duration": format_duration(interval.duration_seconds),
            "severity": interval.severity or "-",
            "description": interval.description,
        }
        for interval in completed
    ]


def build_orphan_lines(orphans: list[OrphanEnd]) -> list[str]:
    return [f"PID {orphan.pid} at {orphan.end_time} - {orphan.raw}" for orphan in orphans]


def build_incomplete_lines(incompletes: list[IncompleteStart]) -> list[str]:
    return [
        f"PID {incomplete.pid} at {incomplete.start_time} - {incomplete.raw}"
        for incomplete in incompletes
    ]


def determine_overall_status(summary: ReportSummary) -> tuple[str, str]:
    """Determine overall status text and style token."""
    if summary.error_count > 0:
        return "ERRORS - JOBS EXCEEDED ERROR THRESHOLD", "critical"
    if summary.warning_count > 0:
        return "WARNINGS - JOBS EXCEEDED WARNING THRESHOLD", "warning"
    if summary.orphan_count > 0 or summary.incomplete_count > 0:
        return "UNPAIRED EVENTS - CHECK ORPHANS AND INCOMPLETES", "warning"
    return "OK", "success"


def determine_exit_code(summary: ReportSummary) -> int:
    """0 = clean, 1 = warnings or unpaired events, 2 = errors."""
    if summary.error_count > 0:
        return 2
    if summary.warning_count > 0 or summary.orphan_count > 0 or summary.incomplete_count > 0:
        return 1
    return 0


# ============================================================
# RICH OUTPUT RENDERING
# ============================================================

LOG_MONITOR_THEME = Theme(
    {
        "critical": "bold red",
        "warning": "bold yellow",
        "success": "bold green",
        "info": "cyan",
        "metric": "white",
        "label": "dim white",
        "header": "bold magenta",
    }
)

SEVERITY_STYLES: dict[str, str] = {
    "OK": "success",
    "WARNING": "warning",
    "ERROR": "critical",
}

console = Console(theme=LOG_MONITOR_THEME)


def configure_logging(verbose: bool) -> None:
    """Route log records through the shared rich console."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        handlers=[RichHandler(console=console, show_path=False)],
        force=True,
    )


def create_key_value_table(title: str, rows: list[tuple[str, str]]) -> Table:
    """Create a simple two-column key/value table."""
    table = Table(title=title, show_header=False, box=None, padding=(0, 2))
    table.add_column("Metric", style="label")
    table.add_column("Value", style="metric")
    for label, value in rows:
        table.add_row(label, value)
    return table


def render_severity_pill(severity: str) -> Text:
    """Render a severity as a coloured label."""
    return Text(severity, style=SEVERITY_STYLES.get(severity, "critical"))


def create_interval_table(completed: list[CompletedInterval]) -> Table:
    """Create the completed interval table."""
    table = Table(title="Completed Jobs", header_style="header")
    table.add_column("PID")
    table.add_column("Start")
    table.add_column("End")
    table.add_column("Duration", justify="right")
    table.add_column("Status")
    table.add_column("Description", overflow="fold")
    for row in build_interval_rows(completed):
        table.add_row(
            Text(row["pid"]),
            Text(row["start"]),
            Text(row["end"]),
            row["duration"],
            render_severity_pill(row["severity"]),
            Text(row["description"]),
        )
    return table


def create_notes_panel(title: str, lines: list[str], style: str) -> Panel:
    """Create a panel listing unpaired events."""
    notes_text = Text()
    for index, line in enumerate(lines):
        line_ending = "\n" if index < len(lines) - 1 else ""
        notes_text.append(line + line_ending, style=style)
    return Panel(notes_text, title=f"[{style}]{title}[/{style}]", border_style=style)


def render_rich_output(report: LogReport, summary: ReportSummary, source: str) -> None:
    """Render the report using Rich components."""
    console.print()
    console.print(Panel(Text(f"Log Monitor: {source}"), style="header", expand=True))
    console.print()

    console.print(create_key_value_table("Summary", build_summary_rows(summary)))
    console.print()

    if report.completed:
        console.print(create_interval_table(report.completed))
    else:
        console.print("[warning]No completed START/END pairs found[/warning]")
    console.print()

    if report.orphans:
        console.print(
            create_notes_panel("Orphan END entries", build_orphan_lines(report.orphans), "warning")
        )
        console.print()

    if report.incompletes:
        console.print(
            create_notes_panel(
                "Incomplete START entries", build_incomplete_lines(report.incompletes), "info"
            )
        )
        console.print()

    status, style = determine_overall_status(summary)
    console.print(Panel(status, style=style, title="Overall Status"))


# ============================================================
# EXPORTS
# ============================================================


def export_markdown_summary(
    report: LogReport, summary: ReportSummary, source: str, output_path: Path
) -> None:
    """Export the report to Markdown format."""
    md_content: list[str] = []

    md_content.append("# Log Monitor Report\n\n")
    md_content.append(f"**Generated:** {datetime.now().isoformat()}\n\n")
    md_content.append(f"**Source:** {source}\n\n")

    md_content.append("## Summary\n\n")
    for label, value in build_summary_rows(summary):
        md_content.append(f"- **{label}:** {value}\n")
    md_content.append("\n")

    md_content.append("## Completed Jobs\n\n")
    if report.completed:
        md_content.append("| PID | Start | End | Duration | Status | Description |\n")
        md_content.append("|-----|-------|-----|----------|--------|-------------|\n")
        for row in build_interval_rows(report.completed):
            description = row["description"].replace("|", "\\|")
            md_content.append(
                f"| {row['pid']} | {row['start']} | {row['end']} | {row['duration']} "
                f"| {row['severity']} | {description} |\n"
            )
    else:
        md_content.append("No completed START/END pairs found.\n")
    md_content.append("\n")

    if report.orphans:
        md_content.append("## Orphan END Entries\n\n")
        for line in build_orphan_lines(report.orphans):
            md_content.append(f"- {line}\n")
        md_content.append("\n")

    if report.incompletes:
        md_content.append("## Incomplete START Entries\n\n")
        for line in build_incomplete_lines(report.incompletes):
            md_content.append(f"- {line}\n")
        md_content.append("\n")

    status, _ = determine_overall_status(summary)
    md_content.append("## Overall Status\n\n")
    md_content.append(f"{status}\n")

    output_path.write_text("".join(md_content), encoding="utf-8")


def export_json_report(report: LogReport, summary: ReportSummary, output_path: Path) -> None:
    """Export the report and its summary counts as JSON."""
    payload = {"summary": summary.model_dump(), **report.model_dump()}
    output_path.write_text(json.dumps(payload, indent=2), encoding="utf-8")


# ============================================================
# TYPER CLI INTERFACE
# ============================================================

app = typer.Typer(
    name="log-monitor",
    help="Pair START/END events by PID and flag long-running jobs",
    add_completion=False,
    rich_markup_mode="rich",
)


@app.command(name="analyze")
def analyze_log(
    log_file: Annotated[
        Path,
        typer.Argument(
            help="Path to CSV or plain-text log file",
            exists=True,
            file_okay=True,
            dir_okay=False,
            readable=True,
        ),
    ],
    output: Annotated[
        Path | None,
        typer.Option(
            "--output",
            "-o",
            help="Export report to Markdown file (e.g., report.md)",
            file_okay=True,
            dir_okay=False,
        ),
    ] = None,
    json_output: Annotated[
        Path | None,
        typer.Option(
            "--json",
            help="Export report to JSON file (e.g., report.json)",
            file_okay=True,
            dir_okay=False,
        ),
    ] = None,
    warn_seconds: Annotated[
        int,
        typer.Option(
            "--warn-seconds",
            help="Durations above this many seconds are WARNING (default: 300)",
            min=0,
        ),
    ] = 300,
    error_seconds: Annotated[
        int,
        typer.Option(
            "--error-seconds",
            help="Durations above this many seconds are ERROR (default: 600)",
            min=0,
        ),
    ] = 600,
    verbose: Annotated[
        bool,
        typer.Option(
            "--verbose",
            "-v",
            help="Enable verbose output with detailed parsing information",
        ),
    ] = False,
) -> None:
    """Analyze a START/END job log.

    Exit codes: 0 = clean, 1 = warnings or unpaired events, 2 = errors.
    """
    configure_logging(verbose)

    try:
        thresholds = SeverityThresholds(
            warning_seconds=warn_seconds, error_seconds=error_seconds
        )

        text = log_file.read_text(encoding="utf-8")
        if not text.strip():
            raise ValueError(f"{log_file} is empty; nothing to analyze")

        if verbose:
            console.print(f"[info]Read {len(text.splitlines())} lines from {log_file}[/info]")

        report = analyze(text, thresholds)
        summary = summarize_report(report)

        render_rich_output(report, summary, str(log_file))

        if output:
            export_markdown_summary(report, summary, str(log_file), output)
            console.print(f"\n[success]Report exported to {output}[/success]")

        if json_output:
            export_json_report(report, summary, json_output)
            console.print(f"\n[success]JSON report exported to {json_output}[/success]")

        sys.exit(determine_exit_code(summary))

    except ValueError as e:
        console.print(f"[critical]ERROR: {escape(str(e))}[/critical]")
        sys.exit(1)
    except Exception as e:
        console.print(f"[critical]ERROR: {escape(str(e))}[/critical]")
        if verbose:
            console.print_exception()
        sys.exit(1)


@app.command()
def sample() -> None:
    """Print a sample log covering every supported format."""
    typer.echo("\n".join(SAMPLE_LOG_LINES))


@app.command()
def version() -> None:
    """Display version."""
    console.print(f"log-monitor {APP_VERSION}")


if __name__ == "__main__":
    app()
