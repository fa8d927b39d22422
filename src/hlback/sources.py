import logging
import os
from collections.abc import Iterator
from dataclasses import dataclass, field
from pathlib import Path

from .errors import UsageError
from .models import Item, ItemKind, RunSizeTotals
from .rules import RULE_PREFIXES, Rule, RuleSet
from .walker import walk

logger = logging.getLogger(__name__)


def root_destination_name(path: Path) -> str:
    """Name of the directory that holds the backup of a filesystem root, such as `_root` or `C_root`."""
    drive: str = os.path.splitdrive(os.path.abspath(path))[0]
    return "".join(c for c in drive if c.isalnum()) + "_root"


@dataclass
class SourcePath:
    path: Path
    rules: RuleSet = field(default_factory=RuleSet)

    @property
    def is_filesystem_root(self) -> bool:
        full_path: Path = Path(os.path.abspath(self.path))
        return full_path.parent == full_path

    @property
    def destination_name(self) -> str:
        """Top level name this source gets inside a backup run directory."""
        if self.is_filesystem_root:
            return root_destination_name(self.path)
        return Path(os.path.abspath(self.path)).name

    def items(self) -> Iterator[Item]:
        return walk(self.path, self.rules)

    def size(self) -> RunSizeTotals:
        """Total the files and bytes a backup of this source is expected to process."""
        totals: RunSizeTotals = RunSizeTotals()

        for item in self.items():
            if item.kind is not ItemKind.FILE:
                continue

            try:
                file_size: int = item.full_path.stat().st_size
            except OSError as e:
                logger.debug("Cannot stat %s while sizing: %s", item.full_path, e)
                file_size = 0

            totals.file_count_all += 1
            totals.byte_count_all += file_size

        return totals


def parse_sources_text(text: str) -> list[SourcePath]:
    """
    Parse sources file content.

    Each source starts with a line holding its path. Lines that follow and start
    with '+', '-' or '!' are include, exclude and prune rules for that source.
    Blank lines are ignored.
    """
    sources: list[SourcePath] = []

    for line_number, raw_line in enumerate(text.splitlines(), start=1):
        # Trailing whitespace of a rule is part of its regex.
        line: str = raw_line.lstrip()

        if not line:
            continue

        if line[0] not in RULE_PREFIXES:
            sources.append(SourcePath(path=Path(line.rstrip())))
            continue

        if not sources:
            raise UsageError(f"Line {line_number}: rule {line!r} appears before any source path.")

        try:
            sources[-1].rules.add(Rule.parse(line))
        except UsageError as e:
            raise UsageError(f"Line {line_number}: {e}")

    return sources


def parse_sources_file(path: Path) -> list[SourcePath]:
    try:
        text: str = path.read_text(encoding="utf-8")
    except OSError as e:
        raise UsageError(f"Cannot read sources file {path}: {e}")

    sources: list[SourcePath] = parse_sources_text(text)
    if not sources:
        raise UsageError(f"Sources file {path} does not name any source path.")

    return sources


def check_destination_names(sources: list[SourcePath]) -> None:
    """
    Make sure no two sources are mirrored into the same directory of a run.

    Raises
    ------
    UsageError
        If two sources share a base name, such as ``/x/docs`` and ``/y/docs``.
    """
    seen: dict[str, Path] = {}

    for source in sources:
        name: str = source.destination_name
        if name in seen:
            raise UsageError(f"Sources {seen[name]} and {source.path} would both be backed up as {name!r}.")
        seen[name] = source.path
