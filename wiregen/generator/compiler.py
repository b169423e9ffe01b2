"""Compilation pipeline: discover, parse, resolve, render and write."""

import logging
import os
import stat
import tempfile
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path

from . import python
from .errors import LexError
from .parser import parse
from .resolver import ResolvedProtocol, resolve
from .types import SourceFile, SourceLocation

logger = logging.getLogger(__name__)

SOURCE_SUFFIX = ".wire"


def discover_sources(path: Path) -> list[Path]:
    """Return the protocol files of a compilation unit.

    A file is compiled on its own; a directory contributes every ``*.wire``
    file below it, sorted by path.
    """
    if path.is_dir():
        sources = sorted(p for p in path.rglob(f"*{SOURCE_SUFFIX}") if p.is_file())
        logger.debug("Found %d source files under %s", len(sources), path)
        return sources
    if not path.exists():
        raise FileNotFoundError(path)
    return [path]


def parse_file(path: Path) -> SourceFile:
    """Read and parse one protocol file."""
    try:
        text = path.read_text(encoding="utf-8")
    except UnicodeDecodeError as e:
        prefix = e.object[: e.start]
        location = SourceLocation(
            str(path), prefix.count(b"\n") + 1, e.start - prefix.rfind(b"\n")
        )
        raise LexError(f"source is not valid UTF-8 ({e.reason})", location) from None
    source = parse(text, filename=str(path))
    logger.debug("Parsed %s: %d declarations", path, len(source.declarations))
    return source


def load_sources(paths: list[Path], jobs: int | None = None) -> list[SourceFile]:
    """Parse files in parallel.

    Each file produces an isolated AST, so lexing and parsing need no
    coordination. Results keep the order of ``paths``; the first failing file
    in that order raises.
    """
    if len(paths) <= 1 or jobs == 1:
        return [parse_file(p) for p in paths]
    with ThreadPoolExecutor(max_workers=jobs) as executor:
        return list(executor.map(parse_file, paths))


def compile_path(path: Path, jobs: int | None = None) -> ResolvedProtocol:
    """Parse and resolve every protocol file under ``path``."""
    sources = load_sources(discover_sources(path), jobs=jobs)
    # Namespace collection and resolution run on this thread only.
    protocol = resolve(sources)
    logger.info(
        "Resolved %d declarations, %d dispatch entries",
        len(protocol.declarations),
        len(protocol.dispatch),
    )
    return protocol


def source_names(root: Path, protocol: ResolvedProtocol) -> list[str]:
    """Source file names relative to the input path, for the generated header."""
    base = root if root.is_dir() else root.parent
    return [Path(source.path).relative_to(base).as_posix() for source in protocol.files]


def _file_mode(path: Path) -> int:
    """Mode for ``path``: the current one if it exists, else what ``open`` would give."""
    try:
        return stat.S_IMODE(path.stat().st_mode)
    except FileNotFoundError:
        umask = os.umask(0)
        os.umask(umask)
        return 0o666 & ~umask


def write_atomic(path: Path, content: str) -> None:
    """Write a file so that readers never observe partial content.

    The file gets the permissions a plain ``open(path, "w")`` would leave,
    not the private mode of the temporary file.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8", newline="\n") as f:
            f.write(content)
        os.chmod(tmp_name, _file_mode(path))
        os.replace(tmp_name, path)
    except BaseException:
        os.unlink(tmp_name)
        raise


def generate(
    input_path: Path,
    output_path: Path,
    runtime_import: str = "wiregen.proto",
    jobs: int | None = None,
) -> ResolvedProtocol:
    """Compile ``input_path`` into a Python module at ``output_path``.

    Nothing is written unless every stage succeeds.
    """
    protocol = compile_path(input_path, jobs=jobs)
    generated = python.render(
        protocol, sources=source_names(input_path, protocol), runtime_import=runtime_import
    )
    write_atomic(output_path, generated)
    logger.info("Wrote %s", output_path)
    return protocol
