import logging

import typer
import rich_click  # noqa: F401
from rich.logging import RichHandler

from .build import build
from .bundle import bundle
from .list_plugins import list_plugins
from .watch import watch
from distpipe import __version__

app = typer.Typer(
    name="distpipe",
    help="Concurrent build pipeline for JavaScript/TypeScript distribution trees",
    no_args_is_help=True,
)


@app.callback()
def main(
    verbose: bool = typer.Option(
        False,
        "--verbose",
        "-v",
        help="Show debug logging.",
    ),
) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(rich_tracebacks=verbose, show_path=verbose)],
        force=True,
    )


@app.command("version")
def version() -> None:
    """Show the distpipe version."""
    typer.echo(f"distpipe v{__version__}")


app.command()(build)
app.command()(watch)
app.command()(bundle)
app.command("list-plugins")(list_plugins)
