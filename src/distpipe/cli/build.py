from __future__ import annotations

from pathlib import Path

import typer
from rich.console import Console

from distpipe.cli.renderers import BuildJsonRenderer, BuildPlainRenderer, BuildRichRenderer, run_events
from distpipe.core.build import build_events

console = Console()


def build(
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
    release: bool = typer.Option(
        False,
        "--release",
        help="Remove the output directory before building.",
    ),
    json_output: bool = typer.Option(
        False,
        "--json",
        help="Emit machine-readable JSON report.",
    ),
) -> None:
    """Bundle dependencies, then compile every source stage."""
    events = build_events(project_dir=project, config_path=config, release=release)
    if json_output:
        renderer = BuildJsonRenderer(console)
    else:
        renderer = BuildRichRenderer(console) if console.is_terminal else BuildPlainRenderer(console)
    exit_code = run_events(events, renderer)
    raise typer.Exit(code=exit_code)
