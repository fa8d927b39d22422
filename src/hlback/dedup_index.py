import logging
import os
import time
from collections.abc import Callable
from enum import Enum
from pathlib import Path
from types import TracebackType

from .index_db import IndexDB
from .IndexStore import IndexStore
from .models import FileRecord, HardLinkMatch, IndexStats, PhysicalCopyGroup

logger = logging.getLogger(__name__)

DATABASE_FILENAME: str = ".hlbackdatabase"
NANOSECONDS_PER_DAY: int = 24 * 60 * 60 * 1_000_000_000


class RecordValidity(Enum):
    INVALID = "invalid"
    NONMATCH = "nonmatch"
    VALID_MATCH = "valid_match"


class DedupIndex:
    """
    Content addressed index of the physical copies stored under a backups root.

    Each physical copy is a group keyed by content hash. Every backed-up file
    that shares that copy, the copy itself included, is a record in the group.
    The index lives in a hidden sqlite file directly under the backups root and
    is meant to be used as a context manager for the length of one run.
    """

    def __init__(self, backups_root: Path, clock: Callable[[], int] = time.time_ns) -> None:
        self.backups_root: Path = Path(os.path.abspath(backups_root))
        self._clock: Callable[[], int] = clock
        self.db: IndexDB = IndexDB(self.backups_root / DATABASE_FILENAME)
        self.store: IndexStore = IndexStore(self.db)

    def __enter__(self) -> "DedupIndex":
        return self

    def __exit__(
        self, exc_type: type[BaseException] | None, exc: BaseException | None, tb: TracebackType | None
    ) -> None:
        self.close()

    def close(self) -> None:
        self.db.close()

    def find_reusable_target(
        self,
        hash_hex: str,
        size: int,
        mtime_ns: int,
        max_links_per_group: int | None = None,
        max_group_age_days: int | None = None,
    ) -> HardLinkMatch | None:
        """
        Find an existing backup file that a new hard link for the origin file can point to.

        Candidate groups share the origin's hash and are no older than
        `max_group_age_days`. They are tried least-used first, then newest first.
        Within a group, records are checked from the most recently added one:
        records whose file has disappeared or changed on disk are deleted, the
        first record that is intact decides for the whole group. It is the
        target when its size and modification time equal the origin's,
        otherwise the group is passed over. A group with a target is used only
        while it holds fewer than `max_links_per_group` records. Groups left
        without records are deleted.

        Parameters
        ----------
        hash_hex : str
            Content hash of the origin file.
        size : int
            Size of the origin file in bytes.
        mtime_ns : int
            Modification time of the origin file in nanoseconds.
        max_links_per_group : int | None
            Maximum number of records per group, None for no limit.
        max_group_age_days : int | None
            Maximum age of a usable group in days, None for no limit.

        Returns
        -------
        HardLinkMatch | None
            The group and the file to link to, or None if a new physical copy
            has to be made.
        """
        created_since: int = 0
        if max_group_age_days is not None:
            created_since = self._clock() - max_group_age_days * NANOSECONDS_PER_DAY

        with self.store.transaction():
            match: HardLinkMatch | None = self._find_in_groups(
                hash_hex=hash_hex,
                size=size,
                mtime_ns=mtime_ns,
                max_links_per_group=max_links_per_group,
                created_since=created_since,
            )

        return match

    def _find_in_groups(
        self,
        *,
        hash_hex: str,
        size: int,
        mtime_ns: int,
        max_links_per_group: int | None,
        created_since: int,
    ) -> HardLinkMatch | None:
        candidates: list[PhysicalCopyGroup] = self.store.get_candidate_groups(
            hash_hex=hash_hex, created_since=created_since
        )

        for group in candidates:
            group_records: list[FileRecord] = self.store.get_group_records(group.id)
            remaining: int = len(group_records)
            target: Path | None = None

            for record in group_records:
                record_path: Path = self.backups_root / record.path
                validity: RecordValidity = self._check_record(group, record, record_path, size, mtime_ns)

                if validity is RecordValidity.INVALID:
                    logger.debug("Pruning stale index record for %s", record_path)
                    self.store.delete_record(record.id)
                    remaining -= 1
                    continue

                # The first intact record speaks for the whole group.
                if validity is RecordValidity.VALID_MATCH:
                    target = record_path
                break

            if remaining == 0:
                logger.debug("Deleting empty group %d for hash %s", group.id, hash_hex)
                self.store.delete_group(group.id)
                continue

            if target is not None and (max_links_per_group is None or remaining < max_links_per_group):
                return HardLinkMatch(group_id=group.id, path=target)

        return None

    @staticmethod
    def _check_record(
        group: PhysicalCopyGroup, record: FileRecord, record_path: Path, size: int, mtime_ns: int
    ) -> RecordValidity:
        try:
            st: os.stat_result = record_path.stat()
        except OSError:
            return RecordValidity.INVALID

        if st.st_size != group.size or st.st_mtime_ns != record.mtime_ns:
            return RecordValidity.INVALID
        if st.st_size != size or st.st_mtime_ns != mtime_ns:
            return RecordValidity.NONMATCH

        return RecordValidity.VALID_MATCH

    def record_backup(
        self,
        destination_path: Path,
        size: int,
        hash_hex: str,
        mtime_ns: int,
        group_id: int | None = None,
    ) -> int:
        """
        Record a backed-up file, in an existing group or in a new one.

        Returns the id of the group the record was added to.
        """
        relative_path: str = Path(os.path.abspath(destination_path)).relative_to(self.backups_root).as_posix()

        with self.store.transaction():
            if group_id is None:
                group_id = self.store.insert_group(hash_hex=hash_hex, size=size, created_at=self._clock())
            _ = self.store.insert_record(group_id=group_id, path=relative_path, mtime_ns=mtime_ns)

        return group_id

    def get_group(self, group_id: int) -> PhysicalCopyGroup | None:
        return self.store.get_group(group_id)

    def stats(self) -> IndexStats:
        return self.store.get_stats()
