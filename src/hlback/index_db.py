import sqlite3
from collections.abc import Iterator, Sequence
from contextlib import contextmanager
from pathlib import Path
from typing import cast

from .sql import groups, records

PRAGMAS: tuple[str, ...] = (
    "PRAGMA journal_mode = WAL;",
    "PRAGMA synchronous = FULL;",
    "PRAGMA foreign_keys = ON;",
    "PRAGMA busy_timeout = 5000;",
)

SCHEMA: tuple[tuple[str, Sequence[str]], ...] = (
    (groups.CREATE_TABLE, groups.CREATE_INDEXES),
    (records.CREATE_TABLE, records.CREATE_INDEXES),
)


class IndexDB:
    """
    Connection to the sqlite file that indexes one backups root.

    The connection runs in autocommit mode. Statements that belong together
    are grouped with `transaction()`, which takes the write lock up front so a
    capacity check and the insert that follows it cannot interleave with
    another run on the same backups root.
    """

    def __init__(self, path: Path) -> None:
        self.path: Path = path
        self.connection: sqlite3.Connection = sqlite3.connect(path, isolation_level=None)
        self.connection.row_factory = sqlite3.Row

        for pragma in PRAGMAS:
            _ = self.connection.execute(pragma)

        with self.transaction():
            for table_sql, index_sql in SCHEMA:
                self.execute(table_sql)
                for sql in index_sql:
                    self.execute(sql)

    @contextmanager
    def transaction(self) -> Iterator[None]:
        _ = self.connection.execute("BEGIN IMMEDIATE;")
        try:
            yield
        except BaseException:
            _ = self.connection.execute("ROLLBACK;")
            raise
        _ = self.connection.execute("COMMIT;")

    def execute(self, sql: str, params: Sequence[object] = ()) -> None:
        _ = self.connection.execute(sql, params)

    def insert(self, sql: str, params: Sequence[object]) -> int:
        cursor: sqlite3.Cursor = self.connection.execute(sql, params)
        return cast(int, cursor.lastrowid)

    def query_one(self, sql: str, params: Sequence[object] = ()) -> sqlite3.Row | None:
        return cast(sqlite3.Row | None, self.connection.execute(sql, params).fetchone())

    def query_all(self, sql: str, params: Sequence[object] = ()) -> list[sqlite3.Row]:
        return cast(list[sqlite3.Row], self.connection.execute(sql, params).fetchall())

    def close(self) -> None:
        if self.connection.in_transaction:
            _ = self.connection.execute("ROLLBACK;")
        self.connection.close()
