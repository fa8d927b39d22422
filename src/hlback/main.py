import logging
import re
import sqlite3
import sys
from importlib.metadata import PackageNotFoundError, version
from pathlib import Path
from typing import Annotated

import typer

from .backup import BackupEngine
from .config import AppConfig, BackupContext
from .dedup_index import DedupIndex
from .errors import HlbackError, UsageError
from .linker import get_linker
from .models import BackupSummary, IndexStats
from .report import ProgressPrinter, print_summary
from .sources import SourcePath, check_destination_names, parse_sources_file

EXIT_SUCCESS: int = 0
EXIT_GENERAL_ERROR: int = 1
EXIT_USAGE: int = 64

# Exit status typer uses for command line syntax errors such as unknown options.
TYPER_USAGE_EXIT: int = 2

CHUNK_SIZE_PATTERN: re.Pattern[str] = re.compile(r"(?P<number>\d+)(?P<suffix>[KMG]?)")
SIZE_SUFFIXES: dict[str, int] = {"": 1, "K": 1024, "M": 1024**2, "G": 1024**3}

app: typer.Typer = typer.Typer(
    help=(
        "hlback: back up files into a timestamped directory, hard linking unchanged files to earlier backups.\n\n"
        "Pass one or more SOURCE paths followed by the DESTINATION path."
    ),
    add_completion=False,
)


def installed_version() -> str:
    try:
        return version(distribution_name="hlback")
    except PackageNotFoundError:
        return "unknown (package not installed)"


def print_version(is_version: bool) -> None:
    """
    Callback for the --version / -V option.

    Typer passes False when the flag is absent, in which case the command
    carries on as usual. Otherwise print the installed version and stop
    before any backup work starts.
    """
    if not is_version:
        return

    typer.echo(installed_version())
    raise typer.Exit(code=EXIT_SUCCESS)


def parse_chunk_size(value: str) -> int:
    """Read a byte count such as ``4096``, ``64K`` or ``1M``; suffixes are powers of 1024."""
    match: re.Match[str] | None = CHUNK_SIZE_PATTERN.fullmatch(value.strip().upper())

    if match is None:
        raise ValueError(f"Chunk size must be a whole number with an optional K, M or G suffix, got {value!r}.")

    chunk_size: int = int(match["number"]) * SIZE_SUFFIXES[match["suffix"]]
    if chunk_size <= 0:
        raise ValueError("Chunk size must be greater than zero.")

    return chunk_size


def parse_limit(value: str, name: str) -> int | None:
    text: str = value.strip().lower()

    if text in {"none", "unlimited"}:
        return None

    try:
        limit: int = int(text)
    except ValueError:
        raise ValueError(f"{name} must be a whole number or 'none', got {value!r}.")

    if limit < 0:
        raise ValueError(f"{name} must not be negative, got {limit}.")

    return limit


def build_context(
    *,
    paths: list[Path],
    sources_file: Path | None,
    cfg: AppConfig,
    max_hard_links_per_file: str | None,
    max_hard_link_age: str | None,
    chunk_size: str | None,
) -> BackupContext:
    if not paths:
        raise UsageError("A destination path is required.")

    sources: list[SourcePath] = parse_sources_file(sources_file) if sources_file is not None else []
    *source_paths, destination = paths
    sources.extend(SourcePath(path=path) for path in source_paths)

    if not sources:
        raise UsageError("At least one source path is required, on the command line or in a sources file.")

    check_destination_names(sources)

    try:
        if max_hard_links_per_file is not None:
            cfg.max_hard_links_per_file = parse_limit(max_hard_links_per_file, "--max-hard-links-per-file")
        if max_hard_link_age is not None:
            cfg.max_hard_link_age = parse_limit(max_hard_link_age, "--max-hard-link-age")
        if chunk_size is not None:
            cfg.chunk_size = parse_chunk_size(chunk_size)
    except ValueError as e:
        raise UsageError(str(e))

    return BackupContext(
        sources=sources,
        destination=destination,
        max_links_per_group=cfg.max_hard_links_per_file,
        max_group_age_days=cfg.max_hard_link_age,
        chunk_size=cfg.chunk_size,
    )


def read_index_stats(destination: Path) -> IndexStats:
    with DedupIndex(destination) as index:
        return index.stats()


@app.command()
def backup(
    ctx: typer.Context,
    paths: Annotated[
        list[Path] | None,
        typer.Argument(help="Source paths followed by the destination path.", show_default=False),
    ] = None,
    max_hard_links_per_file: Annotated[
        str | None,
        typer.Option(
            "--max-hard-links-per-file",
            "-ML",
            help="Records allowed per physical copy before a new copy is made, or 'none'. [default: 5]",
        ),
    ] = None,
    max_hard_link_age: Annotated[
        str | None,
        typer.Option(
            "--max-hard-link-age",
            "-MA",
            help="Age in days after which a physical copy is no longer linked to, or 'none'. [default: 5]",
        ),
    ] = None,
    sources_file: Annotated[
        Path | None,
        typer.Option(
            "--sources-file",
            "-SF",
            help="File listing source paths, each followed by +, - or ! regex rules.",
        ),
    ] = None,
    chunk_size: Annotated[
        str | None, typer.Option(help="Read size for hashing, in bytes or with suffix K/M/G (e.g. 64K, 1M).")
    ] = None,
    config: Annotated[
        Path | None, typer.Option("--config", help="YAML config file. Defaults to ./hlback.yaml if present.")
    ] = None,
    verbose: Annotated[bool, typer.Option("--verbose", "-v", help="Log debug events.")] = False,
    _version: Annotated[
        bool,
        typer.Option(
            "--version",
            "-V",
            help="Show version and exit.",
            callback=print_version,
            is_eager=True,
        ),
    ] = False,
) -> None:
    """Back up each SOURCE into a new timestamped directory inside DESTINATION."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )

    try:
        cfg: AppConfig = AppConfig.discover(config)
        context: BackupContext = build_context(
            paths=paths or [],
            sources_file=sources_file,
            cfg=cfg,
            max_hard_links_per_file=max_hard_links_per_file,
            max_hard_link_age=max_hard_link_age,
            chunk_size=chunk_size,
        )
    except UsageError as e:
        typer.echo(f"Error: {e}", err=True)
        typer.echo(ctx.get_usage(), err=True)
        raise typer.Exit(code=EXIT_USAGE)

    progress: ProgressPrinter = ProgressPrinter()
    engine: BackupEngine = BackupEngine(context, get_linker(), progress)

    try:
        summary: BackupSummary = engine.run()
        stats: IndexStats = read_index_stats(context.destination)
    except (HlbackError, sqlite3.Error, OSError) as e:
        progress.finish()
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(code=EXIT_GENERAL_ERROR)

    progress.finish()
    print_summary(summary, stats)


def run() -> None:
    """Console entry point; command line syntax errors exit with 64 like every other usage error."""
    try:
        app()
    except SystemExit as e:
        if e.code == TYPER_USAGE_EXIT:
            sys.exit(EXIT_USAGE)
        raise


if __name__ == "__main__":
    run()
