import sqlite3
from contextlib import AbstractContextManager
from typing import cast

from .index_db import IndexDB
from .models import FileRecord, IndexStats, PhysicalCopyGroup
from .sql import groups, records


class IndexStore:
    def __init__(self, index_db: IndexDB) -> None:
        self.db: IndexDB = index_db

    def transaction(self) -> AbstractContextManager[None]:
        return self.db.transaction()

    def insert_group(self, *, hash_hex: str, size: int, created_at: int) -> int:
        return self.db.insert(sql=groups.INSERT_GROUP, params=(hash_hex, size, created_at))

    def get_group(self, group_id: int) -> PhysicalCopyGroup | None:
        row: sqlite3.Row | None = self.db.query_one(sql=groups.SELECT_GROUP, params=(group_id,))

        if row is None:
            return None

        group: PhysicalCopyGroup = self._group_from_row(row)
        group.records = self.get_group_records(group_id)

        return group

    def get_candidate_groups(self, *, hash_hex: str, created_since: int) -> list[PhysicalCopyGroup]:
        """
        Return groups with the given hash created at or after `created_since`.

        Groups come back ordered by ascending record count, then newest first.
        Their records are not loaded.
        """
        rows: list[sqlite3.Row] = self.db.query_all(
            sql=groups.SELECT_CANDIDATE_GROUPS, params=(hash_hex, created_since)
        )

        return [self._group_from_row(row) for row in rows]

    def delete_group(self, group_id: int) -> None:
        self.db.execute(sql=groups.DELETE_GROUP, params=(group_id,))

    def insert_record(self, *, group_id: int, path: str, mtime_ns: int) -> int:
        return self.db.insert(sql=records.INSERT_RECORD, params=(group_id, path, mtime_ns))

    def get_group_records(self, group_id: int) -> list[FileRecord]:
        """
        Return the records of a group, most recently added first.
        """
        rows: list[sqlite3.Row] = self.db.query_all(sql=records.SELECT_GROUP_RECORDS, params=(group_id,))

        return [
            FileRecord(id=cast(int, row["id"]), path=cast(str, row["path"]), mtime_ns=cast(int, row["mtime_ns"]))
            for row in rows
        ]

    def delete_record(self, record_id: int) -> None:
        self.db.execute(sql=records.DELETE_RECORD, params=(record_id,))

    def get_stats(self) -> IndexStats:
        group_row: sqlite3.Row | None = self.db.query_one(sql=groups.COUNT_GROUPS)
        record_row: sqlite3.Row | None = self.db.query_one(sql=records.COUNT_RECORDS)

        assert group_row is not None
        assert record_row is not None

        return IndexStats(groups=cast(int, group_row["total"]), records=cast(int, record_row["total"]))

    @staticmethod
    def _group_from_row(row: sqlite3.Row) -> PhysicalCopyGroup:
        return PhysicalCopyGroup(
            id=cast(int, row["id"]),
            hash=cast(str, row["hash"]),
            size=cast(int, row["size"]),
            created_at=cast(int, row["created_at"]),
        )
