"""Command-line interface for view-graph."""

import logging
from pathlib import Path
from typing import List, Optional

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape

from .config import load_environment, resolve_configuration
from .errors import GraphViewError
from .visualize import visualize_graph

app = typer.Typer(
    name="view-graph",
    help="A generic graph viewing frontend",
    add_completion=False,
    context_settings={"help_option_names": ["-h", "--help"]},
)
console = Console()


def _setup_logging(verbose: bool):
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=Console(stderr=True), show_path=verbose)],
    )


def _version_callback(value: bool):
    if value:
        from . import __version__
        console.print("[bold]view-graph[/bold]")
        console.print(f"Version: {__version__}")
        raise typer.Exit()


@app.command()
def main(
    ctx: typer.Context,
    inputs: Optional[List[Path]] = typer.Argument(
        None,
        metavar="INPUT",
        help="C source file to analyse",
        show_default=False,
    ),
    outputs: Optional[List[str]] = typer.Option(
        None,
        "--output", "-o",
        help="Output file, or directory (one file per graph)",
        show_default=False,
    ),
    graph_type: Optional[str] = typer.Option(
        None,
        "--type", "-t",
        help="Graph type: Cfg, Cdg, Cg, Domtree, Postdomtree or Escape",
        show_default=False,
    ),
    output_format: Optional[str] = typer.Option(
        None,
        "--format", "-f",
        help="Output format: Gtk, Xlib, Qt, Html, XDot, Dot, Eps, Jpeg, Pdf, Png, Ps, Ps2 or Svg [default: Gtk]",
        show_default=False,
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
    version: Optional[bool] = typer.Option(
        None,
        "--version",
        callback=_version_callback,
        is_eager=True,
        help="Show version information and exit",
    ),
):
    """Build a graph of a C program and display it or write it out."""
    try:
        config = resolve_configuration(inputs, outputs, graph_type, output_format, verbose)
        _setup_logging(config.verbose)
        visualize_graph(config, environment=load_environment())
    except GraphViewError as e:
        console.print(f"[bold red]Error:[/bold red] {escape(str(e))}")
        typer.echo(ctx.get_help())
        raise typer.Exit(code=1)


if __name__ == "__main__":
    app()
