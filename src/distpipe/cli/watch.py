from __future__ import annotations

from pathlib import Path

import typer
from rich.console import Console

from distpipe.cli.renderers import WatchRenderer, run_events
from distpipe.core.build import watch_events
from distpipe.core.watch import RunMode

console = Console()


def watch(
    config: Path | None = typer.Option(
        None,
        "--config",
        "-c",
        help="Path to distpipe.yaml (defaults to <project>/distpipe.yaml).",
    ),
    project: Path = typer.Option(
        Path("."),
        "--project",
        "-p",
        help="Base directory for relative paths.",
    ),
    once: bool = typer.Option(
        False,
        "--once",
        help="Build once and exit instead of watching.",
    ),
) -> None:
    """Build, then rebuild affected stages whenever sources change."""
    events = watch_events(
        project_dir=project,
        config_path=config,
        mode=RunMode.ONCE if once else RunMode.WATCH,
    )
    exit_code = run_events(events, WatchRenderer(console))
    raise typer.Exit(code=exit_code)
