"""CLI module for compkey.

Commands for deriving and inspecting compilation cache keys from the shell.
"""

from pathlib import Path

import typer
from rich.console import Console

from compkey.cli.key_commands import inspect_request, parse_shapes
from compkey.encoding import create_shape_prefix

app = typer.Typer(
    name="compkey",
    help="compkey - deterministic compilation cache keys",
    add_completion=False,
)
console = Console()


@app.command()
def inspect(
    request: Path = typer.Argument(..., help="JSON file describing the request"),
    as_json: bool = typer.Option(False, "--json", help="Print JSON instead of a table"),
    verbose: bool = typer.Option(
        False, "--verbose", "-v", help="Log intermediate prefixes"
    ),
) -> None:
    """Derive the cache key for a compilation request."""
    inspect_request(path=request, as_json=as_json, verbose=verbose, console=console)


@app.command("encode-shapes")
def encode_shapes(
    shapes: str = typer.Argument(
        ..., help='Shapes such as "2,3;;4"; each ";" ends a shape, so ";" is a scalar'
    ),
) -> None:
    """Print the shape prefix for a list of dynamic shapes."""
    try:
        parsed = parse_shapes(shapes)
    except ValueError as e:
        console.print(f"[red]✗[/red] Invalid shapes {shapes!r}: {e}")
        raise typer.Exit(code=1) from e
    typer.echo(create_shape_prefix(parsed))


if __name__ == "__main__":
    app()
