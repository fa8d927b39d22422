import hashlib
import logging
import os
import shutil
import sqlite3
import time
from collections.abc import Callable
from datetime import datetime
from pathlib import Path

from .config import BackupContext
from .dedup_index import DedupIndex
from .errors import PathError, RecoverableItemError
from .linker import Linker
from .models import BackupSummary, HardLinkMatch, Item, ItemKind, RunSizeTotals
from .sources import SourcePath, root_destination_name

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int], None]

TIMESTAMP_FORMAT: str = "%Y-%m-%d.%H-%M-%S"
MAX_RUN_DIR_ATTEMPTS: int = 100
RUN_DIR_RETRY_DELAY: float = 0.01


def calculate_sha1(path: Path, chunk_size: int) -> str:
    hash = hashlib.sha1()
    with path.open("rb") as f:
        for chunk in iter(lambda: f.read(chunk_size), b""):
            hash.update(chunk)
    return hash.hexdigest()


def make_timestamp(now: datetime) -> str:
    return f"{now.strftime(TIMESTAMP_FORMAT)}.{now.microsecond // 1000:03d}"


def create_run_dir(
    destination_root: Path,
    clock: Callable[[], datetime] = datetime.now,
    sleep: Callable[[float], None] = time.sleep,
) -> Path:
    """
    Create the timestamp named directory that holds one run's backup.

    Another run may create the same name first. In that case wait a moment and
    try again with a fresh timestamp and the next counter value.
    """
    for counter in range(MAX_RUN_DIR_ATTEMPTS):
        run_dir: Path = destination_root / f"{make_timestamp(clock())}.{counter}"
        try:
            run_dir.mkdir()
            return run_dir
        except FileExistsError:
            logger.debug("Backup directory %s already exists, retrying", run_dir)
            sleep(RUN_DIR_RETRY_DELAY)
        except OSError as e:
            raise PathError(f"Cannot create backup directory {run_dir}: {e}") from e

    raise PathError(f"Could not create a unique backup directory in {destination_root}")


def file_size(path: Path) -> int:
    try:
        return path.stat().st_size
    except OSError:
        return 0


class ProgressTracker:
    def __init__(self, expected: RunSizeTotals, callback: ProgressCallback | None) -> None:
        self.expected: RunSizeTotals = expected
        self.callback: ProgressCallback | None = callback
        self.files_done: int = 0
        self.bytes_done: int = 0
        self.last_percent: int = 0

    @property
    def percent(self) -> int:
        if self.expected.byte_count_all > 0:
            done, total = self.bytes_done, self.expected.byte_count_all
        elif self.expected.file_count_all > 0:
            done, total = self.files_done, self.expected.file_count_all
        else:
            return 100

        return min(100, done * 100 // total)

    def advance(self, size: int) -> None:
        self.files_done += 1
        self.bytes_done += size

        percent: int = self.percent
        if percent > self.last_percent:
            self.last_percent = percent
            if self.callback is not None:
                self.callback(percent)


class BackupEngine:
    """
    Runs one backup of all configured sources into a new timestamped directory.

    The run scans the sources to size the job, prepares the destination, then
    walks each source and links or copies every file, and finally returns a
    summary. A file that cannot be read, linked or copied only produces a
    warning. Problems with the destination itself abort the run.
    """

    def __init__(self, context: BackupContext, linker: Linker, progress: ProgressCallback | None = None) -> None:
        self.context: BackupContext = context
        self.linker: Linker = linker
        self.progress: ProgressCallback | None = progress

    def scan(self) -> RunSizeTotals:
        totals: RunSizeTotals = RunSizeTotals()
        for source in self.context.sources:
            totals += source.size()
        return totals

    def run(self) -> BackupSummary:
        started_at: float = time.monotonic()

        expected: RunSizeTotals = self.scan()
        logger.debug("Expecting %d files, %d bytes", expected.file_count_all, expected.byte_count_all)

        destination_root: Path = Path(os.path.abspath(self.context.destination))
        try:
            destination_root.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise PathError(f"Cannot create destination directory {destination_root}: {e}") from e

        try:
            index: DedupIndex = DedupIndex(destination_root)
        except sqlite3.Error as e:
            raise PathError(f"Cannot open backups database in {destination_root}: {e}") from e

        totals: RunSizeTotals = RunSizeTotals()
        warnings: list[str] = []

        with index:
            run_dir: Path = create_run_dir(destination_root)
            logger.debug("Backing up into %s", run_dir)

            tracker: ProgressTracker = ProgressTracker(expected, self.progress)
            for source in self.context.sources:
                totals += self._backup_source(source, run_dir, index, tracker, warnings)

        return BackupSummary(
            run_path=run_dir,
            totals=totals,
            warnings=warnings,
            elapsed_seconds=time.monotonic() - started_at,
        )

    def _backup_source(
        self,
        source: SourcePath,
        run_dir: Path,
        index: DedupIndex,
        tracker: ProgressTracker,
        warnings: list[str],
    ) -> RunSizeTotals:
        totals: RunSizeTotals = RunSizeTotals()
        source_root: Path = run_dir / root_destination_name(source.path) if source.is_filesystem_root else run_dir

        for item in source.items():
            destination: Path = source_root / item.relative_path if item.relative_path else source_root

            if item.kind is ItemKind.DIRECTORY:
                try:
                    destination.mkdir(parents=True, exist_ok=True)
                except OSError as e:
                    warnings.append(f"Unable to create directory {destination}: {e}")
                continue

            if item.kind is ItemKind.UNREADABLE_DIRECTORY:
                warnings.append(f"Unable to read directory: {item.full_path}")
                continue

            size: int = file_size(item.full_path)
            totals.file_count_all += 1
            totals.byte_count_all += size

            try:
                copied: bool = self._backup_file(item, destination, index)
            except RecoverableItemError as e:
                warnings.append(str(e))
                totals.file_count_skipped += 1
                totals.byte_count_skipped += size
            else:
                if copied:
                    totals.file_count_copied += 1
                    totals.byte_count_copied += size

            tracker.advance(size)

        return totals

    def _backup_file(self, item: Item, destination: Path, index: DedupIndex) -> bool:
        """
        Back up a single file by hard link or by copy, and record it in the index.

        Returns True when a new physical copy was made.

        Raises
        ------
        RecoverableItemError
            If the file cannot be read, or the link or copy cannot be made.
        """
        origin: Path = item.full_path

        try:
            st: os.stat_result = origin.stat()
            hash_hex: str = calculate_sha1(origin, self.context.chunk_size)
        except OSError as e:
            raise RecoverableItemError(f"Unable to read file {origin}: {e}") from e

        if os.path.lexists(destination):
            raise RecoverableItemError(f"Destination already exists, not overwriting: {destination}")

        match: HardLinkMatch | None = index.find_reusable_target(
            hash_hex,
            st.st_size,
            st.st_mtime_ns,
            max_links_per_group=self.context.max_links_per_group,
            max_group_age_days=self.context.max_group_age_days,
        )

        try:
            destination.parent.mkdir(parents=True, exist_ok=True)
            if match is not None:
                logger.debug("Linking %s to %s", destination, match.path)
                self.linker.create_hard_link(destination, match.path)
            else:
                logger.debug("Copying %s to %s", origin, destination)
                shutil.copy2(origin, destination)
            stored: os.stat_result = destination.stat()
        except OSError as e:
            self._remove_partial(destination)
            action: str = "link" if match is not None else "copy"
            raise RecoverableItemError(f"Unable to {action} file {origin} to {destination}: {e}") from e

        _ = index.record_backup(
            destination,
            stored.st_size,
            hash_hex,
            stored.st_mtime_ns,
            group_id=match.group_id if match is not None else None,
        )

        return match is None

    @staticmethod
    def _remove_partial(destination: Path) -> None:
        try:
            destination.unlink(missing_ok=True)
        except OSError as e:
            logger.debug("Could not remove partial file %s: %s", destination, e)
