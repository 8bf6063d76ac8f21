#!/usr/bin/env python3
"""GC Log Classifier - command-line front end.

Runs the preprocessing and classification pipeline over a JVM GC log and reports:
- Per-kind event counts
- Parsing coverage (dropped application logging, merges, unknown lines)
- Classified events as JSON lines for downstream analysis
"""

from __future__ import annotations

import logging
import os
import sys
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.progress import Progress, SpinnerColumn, TextColumn
from rich.table import Table
from rich.text import Text
from rich.theme import Theme

from .codec import DATESTAMP_FORMAT
from .errors import GCClassifyError
from .models import ClassificationStats, EventKind, GCEvent, PipelineConfig, PipelineStats
from .timeline import Timeline, build_timeline

__version__ = "1.0.0"

LOG_LEVEL_ENV = "GC_CLASSIFY_LOG_LEVEL"

# ============================================================
# RICH OUTPUT
# ============================================================

GC_CLASSIFY_THEME = Theme(
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

console = Console(theme=GC_CLASSIFY_THEME)
error_console = Console(theme=GC_CLASSIFY_THEME, stderr=True)


def _configure_logging(verbose: bool) -> None:
    """Send library logging to stderr through rich."""
    if verbose:
        level = logging.DEBUG
    else:
        level_name = os.getenv(LOG_LEVEL_ENV, "WARNING").upper()
        level = getattr(logging, level_name, logging.WARNING)
    logging.basicConfig(
        level=level,
        format="%(name)s: %(message)s",
        handlers=[RichHandler(console=error_console, show_path=False)],
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


def build_kind_rows(stats: ClassificationStats) -> list[tuple[str, str, str]]:
    """Rows of (kind, count, share) in catalog declaration order."""
    rows = []
    for kind in EventKind:
        count = stats.by_kind.get(kind, 0)
        if count == 0:
            continue
        share = count / stats.classified * 100.0
        rows.append((kind.value, str(count), f"{share:.1f}%"))
    return rows


def create_kind_table(stats: ClassificationStats) -> Table:
    table = Table(title="Events by Kind", header_style="header")
    table.add_column("Kind", style="label")
    table.add_column("Events", justify="right", style="metric")
    table.add_column("Share", justify="right", style="metric")
    for kind, count, share in build_kind_rows(stats):
        style = "warning" if kind == EventKind.UNKNOWN.value else None
        table.add_row(kind, count, share, style=style)
    return table


def build_parsing_coverage_rows(
    pipeline_stats: PipelineStats, classification_stats: ClassificationStats
) -> list[tuple[str, str]]:
    """Build rows describing how much of the log was understood."""
    rows = [
        ("Raw lines", str(pipeline_stats.raw_lines)),
        ("Blank lines", str(pipeline_stats.blank_lines)),
        ("Application logging dropped", str(pipeline_stats.application_lines_dropped)),
        ("Datestamps rewritten", str(pipeline_stats.datestamps_rewritten)),
        ("Multi-line merges", str(pipeline_stats.merges)),
        ("Canonical records", str(pipeline_stats.records_emitted)),
        ("Unknown records", str(classification_stats.unknown)),
    ]
    if pipeline_stats.negative_elapsed_clamped:
        rows.append(("Datestamps before JVM start", str(pipeline_stats.negative_elapsed_clamped)))
    if classification_stats.contract_violations:
        rows.append(("Extraction failures", str(classification_stats.contract_violations)))
    if classification_stats.classified > 0:
        recognized = classification_stats.classified - classification_stats.unknown
        rows.append(("Recognized rate", f"{recognized / classification_stats.classified * 100.0:.1f}%"))
    return rows


def render_unknown_panel(unknown: list[GCEvent], total: int) -> Panel:
    text = Text()
    for index, event in enumerate(unknown):
        line_ending = "\n" if index < len(unknown) - 1 else ""
        text.append(f"{event.first_line:>6}  ", style="label")
        text.append(event.raw_text + line_ending, style="metric")
    title = f"[warning]Unknown lines ({len(unknown)} of {total})[/warning]"
    return Panel(text, title=title, border_style="yellow", expand=True)


# ============================================================
# PIPELINE HELPERS
# ============================================================


@contextmanager
def open_timeline(log_file: Path, config: PipelineConfig) -> Iterator[Timeline]:
    """Build a timeline over ``log_file``, keeping the file open while it is consumed."""
    with log_file.open(encoding="utf-8", errors="replace") as handle:
        yield build_timeline(handle, config)


def make_config(jvm_start: datetime | None, keep_app_logging: bool, no_merge: bool) -> PipelineConfig:
    return PipelineConfig(
        jvm_start=jvm_start,
        drop_application_logging=not keep_app_logging,
        merge_multiline=not no_merge,
    )


# ============================================================
# TYPER CLI INTERFACE
# ============================================================

app = typer.Typer(
    name="gc-classify",
    help="Classify JVM GC log lines (Parallel, Serial, CMS, G1 and unified logging)",
    add_completion=False,
    rich_markup_mode="rich",
)

LogFileArgument = Annotated[
    Path,
    typer.Argument(
        help="Path to GC log file to classify",
        exists=True,
        file_okay=True,
        dir_okay=False,
        readable=True,
    ),
]
JvmStartOption = Annotated[
    datetime | None,
    typer.Option(
        "--jvm-start",
        help="JVM start instant used to rewrite datestamps (default: first datestamp in the log)",
        formats=[DATESTAMP_FORMAT, "%Y-%m-%dT%H:%M:%S%z", "%Y-%m-%dT%H:%M:%S"],
    ),
]
KeepAppLoggingOption = Annotated[
    bool,
    typer.Option("--keep-app-logging", help="Keep interleaved application logging as unknown lines"),
]
NoMergeOption = Annotated[
    bool,
    typer.Option("--no-merge", help="Disable merging of multi-line GC records"),
]
VerboseOption = Annotated[
    bool,
    typer.Option("--verbose", "-v", help="Enable debug logging on stderr"),
]


@app.command()
def summary(
    log_file: LogFileArgument,
    jvm_start: JvmStartOption = None,
    keep_app_logging: KeepAppLoggingOption = False,
    no_merge: NoMergeOption = False,
    show_unknown: Annotated[
        int,
        typer.Option(
            "--show-unknown",
            help="List the first N unknown lines",
            min=0,
        ),
    ] = 0,
    strict: Annotated[
        bool,
        typer.Option("--strict", help="Exit with code 1 when any line stays unknown"),
    ] = False,
    verbose: VerboseOption = False,
) -> None:
    """Print per-kind event counts and parsing coverage for a GC log.

    Exit codes: 0 = done, 1 = error (or unknown lines with --strict).
    """
    _configure_logging(verbose)
    config = make_config(jvm_start, keep_app_logging, no_merge)
    unknown: list[GCEvent] = []

    try:
        with open_timeline(log_file, config) as timeline, Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            console=error_console,
            transient=True,
        ) as progress:
            progress.add_task(f"[cyan]Classifying {log_file.name}...", total=None)
            for event in timeline:
                if event.kind is EventKind.UNKNOWN and len(unknown) < show_unknown:
                    unknown.append(event)
    except (GCClassifyError, ValueError, OSError) as e:
        console.print(f"[critical]ERROR: {e}[/critical]")
        sys.exit(1)

    stats = timeline.classification_stats
    console.print(create_kind_table(stats))
    console.print()
    console.print(
        create_key_value_table(
            "Parsing Coverage", build_parsing_coverage_rows(timeline.pipeline_stats, stats)
        )
    )
    if unknown:
        console.print()
        console.print(render_unknown_panel(unknown, timeline.unknown_lines))

    if strict and timeline.unknown_lines > 0:
        sys.exit(1)


@app.command()
def events(
    log_file: LogFileArgument,
    jvm_start: JvmStartOption = None,
    keep_app_logging: KeepAppLoggingOption = False,
    no_merge: NoMergeOption = False,
    verbose: VerboseOption = False,
) -> None:
    """Write every classified event as one JSON object per line."""
    _configure_logging(verbose)
    config = make_config(jvm_start, keep_app_logging, no_merge)

    try:
        with open_timeline(log_file, config) as timeline:
            for event in timeline:
                typer.echo(event.model_dump_json(exclude_none=True))
    except (GCClassifyError, ValueError, OSError) as e:
        error_console.print(f"[critical]ERROR: {e}[/critical]")
        sys.exit(1)


@app.command()
def version() -> None:
    """Display version."""
    console.print(f"gc-classify {__version__}")


if __name__ == "__main__":
    app()
