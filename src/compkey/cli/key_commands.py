"""Implementation of the key inspection CLI commands."""

import json
from pathlib import Path
from typing import Any, Optional

import typer
from pydantic import BaseModel, Field, ValidationError
from rich.console import Console
from rich.table import Table

from compkey.builder import create_key_builder
from compkey.config import load_config
from compkey.encoding import create_config_prefix, create_shape_prefix
from compkey.exceptions import KeyConstructionError
from compkey.key import create_compilation_cache_key_from_list
from compkey.types import CompileMetadata
from compkey.utils.logging import enable_debug_logging, restore_log_levels


class KeyRequest(BaseModel):
    """A compilation request as read from a JSON file.

    Guaranteed constants are given as hex strings of their raw bytes.
    """

    function_name: str
    function_library_fingerprint: int = 0
    program_body: str = ""
    dynamic_shapes: list[list[int]] = Field(default_factory=list)
    metadata: CompileMetadata = Field(default_factory=CompileMetadata)
    guaranteed_constants: list[str] = Field(default_factory=list)

    model_config = {"extra": "forbid"}

    def constants_bytes(self) -> list[bytes]:
        return [bytes.fromhex(c) for c in self.guaranteed_constants]


def parse_shapes(text: str) -> list[list[int]]:
    """Parse shapes written the way ``create_shape_prefix`` writes them.

    Each shape ends with ``;`` and each dimension with ``,``, so ``"2,3,;"``
    is one 2x3 shape and ``";"`` is one scalar. The final ``;`` and trailing
    commas may be left off: ``"2,3;;4"`` is ``[[2, 3], [], [4]]``.
    """
    if not text.strip():
        return []
    chunks = text.split(";")
    if text.rstrip().endswith(";"):
        chunks.pop()
    shapes: list[list[int]] = []
    for chunk in chunks:
        shapes.append([int(dim) for dim in chunk.split(",") if dim.strip()])
    return shapes


def inspect_request(
    path: Path,
    as_json: bool = False,
    verbose: bool = False,
    console: Optional[Console] = None,
) -> None:
    """Derive and display the cache key for the request stored at *path*.

    Args:
        path: JSON file holding a ``KeyRequest``.
        as_json: Print a JSON object instead of a table.
        verbose: Log intermediate prefixes.
        console: Rich console instance for output.
    """
    if console is None:
        console = Console()

    try:
        request = KeyRequest.model_validate_json(path.read_text(encoding="utf-8"))
        constants = request.constants_bytes()
    except OSError as e:
        console.print(f"[red]✗[/red] Could not read {path}: {e}")
        raise typer.Exit(code=1) from e
    except (ValidationError, ValueError) as e:
        console.print(f"[red]✗[/red] Invalid request {path}: {e}")
        raise typer.Exit(code=1) from e

    config = load_config(verbose=True) if verbose else load_config()
    builder = create_key_builder(config)

    # Debug levels apply to this command only
    previous_levels = enable_debug_logging() if config.verbose else {}
    try:
        key = create_compilation_cache_key_from_list(
            request.function_name,
            request.function_library_fingerprint,
            request.program_body,
            constants,
            request.dynamic_shapes,
            request.metadata,
            builder=builder,
        )
    except KeyConstructionError as e:
        console.print(f"[red]✗[/red] {e}")
        raise typer.Exit(code=1) from e
    finally:
        restore_log_levels(previous_levels)

    fingerprint = (
        key.guaranteed_const_fingerprint()
        if key.guaranteed_const_fingerprint is not None
        else ""
    )
    summary: dict[str, Any] = {
        "prefix": key.prefix,
        "subkey": key.subkey(),
        "shapes_prefix": create_shape_prefix(request.dynamic_shapes),
        "config_prefix": create_config_prefix(
            request.metadata, builder.config_encoding
        ),
        "has_guaranteed_const": key.has_guaranteed_const,
        "session_handle": key.session_handle,
        "guaranteed_const_fingerprint": fingerprint,
        "debug_string": key.debug_string,
    }

    if as_json:
        typer.echo(json.dumps(summary, indent=2))
        return

    table = Table(
        title=f"Cache key for {request.function_name}",
        show_header=True,
        header_style="bold",
    )
    table.add_column("Field", style="cyan", no_wrap=True)
    table.add_column("Value", style="green")
    for name, value in summary.items():
        table.add_row(name, str(value))
    console.print(table)
