from __future__ import annotations

from pathlib import Path

import typer
from rich.console import Console

from distpipe.cli.renderers import BuildJsonRenderer, BuildPlainRenderer, BuildRichRenderer, run_events
from distpipe.core.build import bundle_events
from distpipe.core.stages import BUNDLE_PHASES

console = Console()


def bundle(
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
    json_output: bool = typer.Option(
        False,
        "--json",
        help="Emit machine-readable JSON report.",
    ),
) -> None:
    """Re-bundle external dependencies into the compiled directory only."""
    events = bundle_events(project_dir=project, config_path=config)
    if json_output:
        renderer = BuildJsonRenderer(console)
    elif console.is_terminal:
        renderer = BuildRichRenderer(console, phases=BUNDLE_PHASES)
    else:
        renderer = BuildPlainRenderer(console, phases=BUNDLE_PHASES)
    exit_code = run_events(events, renderer)
    raise typer.Exit(code=exit_code)
