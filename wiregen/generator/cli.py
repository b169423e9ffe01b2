"""Command-line interface for wiregen code generation."""

from __future__ import annotations

import json
import logging
import sys
from pathlib import Path
from typing import TYPE_CHECKING, NoReturn

import click
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.table import Table

from wiregen.generator import python
from wiregen.generator.compiler import compile_path, generate
from wiregen.generator.errors import CompileError
from wiregen.generator.types import EnumDeclaration, FlagsDeclaration

if TYPE_CHECKING:
    from wiregen.generator.resolver import ResolvedProtocol

logger = logging.getLogger(__name__)

_input_option = click.option(
    "--input",
    "-i",
    "input_path",
    required=True,
    type=click.Path(exists=True, path_type=Path),
    help="Protocol file or directory of .wire files",
)
_jobs_option = click.option(
    "--jobs", "-j", type=click.IntRange(min=1), default=None, help="Parallel parser threads"
)


def _describe(error: Exception) -> str:
    if isinstance(error, OSError) and error.filename is not None:
        return f"{error.filename}: {type(error).__name__}: {error.strerror}"
    return str(error)


def _fail(error: Exception) -> NoReturn:
    """Report a compile or I/O error on stderr and exit non-zero."""
    Console(stderr=True, soft_wrap=True).print(
        f"[bold red]error[/bold red]: {escape(_describe(error))}"
    )
    sys.exit(1)


@click.group()
@click.option("--verbose", "-v", is_flag=True, default=False, help="Log pipeline progress")
def cli(verbose: bool) -> None:
    """wiregen protocol compiler."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        handlers=[RichHandler(console=Console(stderr=True), show_path=False)],
        force=True,
    )


@cli.command()
@_input_option
@click.option(
    "--output",
    "-o",
    "output_path",
    required=True,
    type=click.Path(dir_okay=False, path_type=Path),
    help="Output Python module",
)
@click.option(
    "--runtime-import",
    "runtime_import",
    default="wiregen.proto",
    show_default=True,
    help="Import path of the codec runtime used by the generated module",
)
@_jobs_option
def gen(input_path: Path, output_path: Path, runtime_import: str, jobs: int | None) -> None:
    """Generate a Python module from protocol definitions."""
    try:
        generate(input_path, output_path, runtime_import=runtime_import, jobs=jobs)
    except (CompileError, OSError) as e:
        _fail(e)


@cli.command()
@_input_option
@_jobs_option
def check(input_path: Path, jobs: int | None) -> None:
    """Parse and resolve protocol definitions without writing output."""
    try:
        protocol = compile_path(input_path, jobs=jobs)
    except (CompileError, OSError) as e:
        _fail(e)
    click.echo(
        f"OK: {len(protocol.declarations)} declarations, "
        f"{len(protocol.dispatch)} dispatch entries"
    )


@cli.command()
@click.option("--output", "-o", "output_path", default=".", help="Output directory")
@click.option("--name", default="wiregen_runtime", help="Runtime package name")
def runtime(output_path: str, name: str) -> None:
    """Generate runtime support code."""
    runtime_dir = Path(output_path) / name
    try:
        runtime_dir.mkdir(parents=True, exist_ok=True)
        for filename, content in python.runtime().items():
            (runtime_dir / filename).write_text(content)
    except OSError as e:
        _fail(e)
    print(f"Generated Python runtime in {runtime_dir}")


@cli.command()
@_input_option
@click.option("--json", "output_json", is_flag=True, help="Output as JSON")
def info(input_path: Path, output_json: bool) -> None:
    """Display declarations, sizes and dispatch codes."""
    try:
        protocol = compile_path(input_path)
    except (CompileError, OSError) as e:
        _fail(e)

    if output_json:
        _output_json(protocol)
    else:
        _output_plain(protocol)


def _kind(decl: object) -> str:
    if isinstance(decl, FlagsDeclaration):
        return "flags"
    if isinstance(decl, EnumDeclaration):
        return "enum"
    return "message"


def _output_json(protocol: ResolvedProtocol) -> None:
    """Output protocol info as JSON."""
    data = {
        "declarations": [
            {"kind": _kind(decl), **decl.to_dict(encode_json=True)}
            for decl in protocol.declarations
        ],
        "dispatch": [entry.to_dict(encode_json=True) for entry in protocol.dispatch],
    }
    print(json.dumps(data, indent=2))


def _format_size(decl: object) -> str:
    if isinstance(decl, EnumDeclaration):
        return decl.underlying
    if decl.fixed_size is not None:
        return f"{decl.fixed_size} bytes"
    return f"{decl.min_size}+ bytes ({decl.size_kind})"


def _output_plain(protocol: ResolvedProtocol) -> None:
    """Output protocol info using rich text formatting."""
    console = Console()

    console.print("[bold cyan]Declarations[/bold cyan]")
    table = Table(show_header=True, box=None, padding=(0, 2, 0, 0))
    table.add_column("Name", style="white")
    table.add_column("Kind", style="dim")
    table.add_column("Size", style="yellow", justify="right")
    table.add_column("Code", style="green", justify="right")

    for decl in protocol.declarations:
        code = getattr(decl, "code", None)
        table.add_row(decl.name, _kind(decl), _format_size(decl), "" if code is None else str(code))

    console.print(table)
    console.print()

    console.print("[bold cyan]Dispatch[/bold cyan]")
    dispatch_table = Table(show_header=False, box=None, padding=(0, 2, 0, 2))
    dispatch_table.add_column("Code", style="green", justify="right")
    dispatch_table.add_column("Message", style="white")
    for entry in protocol.dispatch:
        dispatch_table.add_row(str(entry.code), entry.message)
    console.print(dispatch_table)


def main() -> None:
    """Main entry point."""
    cli()


if __name__ == "__main__":
    main()
