CREATE_TABLE: str = """
    CREATE TABLE IF NOT EXISTS records (
        id        INTEGER PRIMARY KEY,
        group_id  INTEGER NOT NULL REFERENCES copy_groups(id) ON DELETE CASCADE,
        path      TEXT NOT NULL,
        mtime_ns  INTEGER NOT NULL
    );
"""
CREATE_INDEXES: tuple[str, ...] = ("CREATE INDEX IF NOT EXISTS idx_records_group ON records(group_id);",)

INSERT_RECORD: str = """
    INSERT INTO records (
        group_id,
        path,
        mtime_ns
    )
    VALUES (?, ?, ?);
"""

SELECT_GROUP_RECORDS: str = """
    SELECT id, path, mtime_ns
    FROM records
    WHERE group_id = ?
    ORDER BY id DESC;
"""

DELETE_RECORD: str = """DELETE FROM records WHERE id = ?;"""

COUNT_RECORDS: str = """SELECT COUNT(*) AS total FROM records;"""
