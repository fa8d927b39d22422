import logging
import os
from collections.abc import Iterator
from dataclasses import dataclass
from pathlib import Path

from .errors import PathError
from .models import Item, ItemKind, RuleEffect
from .rules import RuleSet

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class WalkLevel:
    """One directory on the walk stack."""

    relative_path: str
    files: Iterator[Path]
    subdirs: Iterator[Path]
    allowed: bool


def join_relative(parent: str, name: str) -> str:
    return f"{parent}/{name}" if parent else name


def discover_dir_entries(path: Path) -> tuple[list[Path], list[Path]]:
    """
    Return the immediate subdirectories and files of `path`, sorted by name.

    Symlinks to directories are never followed and dangling symlinks are
    ignored. Symlinks to files count as files. Anything that is neither a
    file nor a directory (sockets, fifos, devices) is skipped.

    Raises
    ------
    OSError
        If the directory cannot be listed.
    """
    subdirs: list[Path] = []
    files: list[Path] = []

    with os.scandir(path) as it:
        entries: list[os.DirEntry[str]] = sorted(it, key=lambda entry: entry.name)

    for entry in entries:
        try:
            if entry.is_dir(follow_symlinks=False):
                subdirs.append(Path(entry.path))
            elif entry.is_symlink():
                if entry.is_dir():
                    logger.debug("Not following directory symlink: %s", entry.path)
                elif entry.is_file():
                    files.append(Path(entry.path))
                else:
                    logger.debug("Skipping dangling symlink: %s", entry.path)
            elif entry.is_file(follow_symlinks=False):
                files.append(Path(entry.path))
            else:
                logger.debug("Skipping special file: %s", entry.path)
        except OSError as e:
            logger.debug("Skipping entry that cannot be inspected: %s (%s)", entry.path, e)

    return subdirs, files


def open_level(path: Path) -> tuple[list[Path], list[Path]] | None:
    try:
        return discover_dir_entries(path)
    except OSError as e:
        logger.debug("Cannot read directory %s: %s", path, e)
        return None


def walk(base_path: Path, rules: RuleSet | None = None) -> Iterator[Item]:
    """
    Lazily enumerate `base_path` as a stream of items, depth first, pre-order.

    The base item itself always comes first. Files of a directory are yielded
    before its subdirectories. Rules see the same path as `Item.relative_path`,
    which starts with the base name. The returned iterator is single pass.

    Raises
    ------
    PathError
        If `base_path` is neither an existing file nor a directory. Raised
        immediately, before the first item is requested.
    """
    base: Path = Path(os.path.abspath(base_path))

    if base.is_file():
        return iter((Item(kind=ItemKind.FILE, relative_path=base.name, full_path=base),))
    if not base.is_dir():
        raise PathError(f"Item not found or not accessible: {base}")

    return _walk_tree(base, rules if rules is not None else RuleSet())


def _walk_tree(base: Path, rules: RuleSet) -> Iterator[Item]:
    # A filesystem root has no name; its contents sit directly under the relative root.
    base_relative: str = base.name
    listing: tuple[list[Path], list[Path]] | None = open_level(base)

    if listing is None:
        yield Item(kind=ItemKind.UNREADABLE_DIRECTORY, relative_path=base_relative, full_path=base)
        return

    yield Item(kind=ItemKind.DIRECTORY, relative_path=base_relative, full_path=base)

    subdirs, files = listing
    level: WalkLevel = WalkLevel(relative_path=base_relative, files=iter(files), subdirs=iter(subdirs), allowed=True)
    stack: list[WalkLevel] = []

    while True:
        file_path: Path | None = next(level.files, None)
        if file_path is not None:
            relative_path: str = join_relative(level.relative_path, file_path.name)
            if rules.evaluate(relative_path, level.allowed) is RuleEffect.ALLOW:
                yield Item(kind=ItemKind.FILE, relative_path=relative_path, full_path=file_path)
            continue

        subdir: Path | None = next(level.subdirs, None)
        if subdir is not None:
            relative_path = join_relative(level.relative_path, subdir.name)
            effect: RuleEffect = rules.evaluate(relative_path, level.allowed)

            if effect is RuleEffect.PRUNE_SUBTREE:
                logger.debug("Pruned subtree: %s", subdir)
                continue

            allowed: bool = effect is RuleEffect.ALLOW
            sub_listing: tuple[list[Path], list[Path]] | None = open_level(subdir)

            if allowed:
                kind: ItemKind = ItemKind.DIRECTORY if sub_listing is not None else ItemKind.UNREADABLE_DIRECTORY
                yield Item(kind=kind, relative_path=relative_path, full_path=subdir)

            if sub_listing is not None:
                sub_subdirs, sub_files = sub_listing
                stack.append(level)
                level = WalkLevel(
                    relative_path=relative_path, files=iter(sub_files), subdirs=iter(sub_subdirs), allowed=allowed
                )
            continue

        if not stack:
            return
        level = stack.pop()
