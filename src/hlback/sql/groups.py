CREATE_TABLE: str = """
CREATE TABLE IF NOT EXISTS copy_groups (
    id         INTEGER PRIMARY KEY,
    hash       TEXT NOT NULL,
    size       INTEGER NOT NULL,
    created_at INTEGER NOT NULL
);
"""
CREATE_INDEXES: tuple[str, ...] = ("CREATE INDEX IF NOT EXISTS idx_groups_hash ON copy_groups(hash);",)

INSERT_GROUP: str = """
    INSERT INTO copy_groups (
        hash,
        size,
        created_at
    )
    VALUES (?, ?, ?);
"""

SELECT_CANDIDATE_GROUPS: str = """
    SELECT
        g.id,
        g.hash,
        g.size,
        g.created_at,
        COUNT(r.id) AS record_count
    FROM copy_groups AS g
    LEFT JOIN records AS r ON r.group_id = g.id
    WHERE g.hash = ?
      AND g.created_at >= ?
    GROUP BY g.id
    ORDER BY record_count ASC, g.created_at DESC, g.id DESC;
"""

SELECT_GROUP: str = """SELECT id, hash, size, created_at FROM copy_groups WHERE id = ?;"""

DELETE_GROUP: str = """DELETE FROM copy_groups WHERE id = ?;"""

COUNT_GROUPS: str = """SELECT COUNT(*) AS total FROM copy_groups;"""
