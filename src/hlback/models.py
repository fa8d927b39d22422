from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path


class ItemKind(Enum):
    FILE = "file"
    DIRECTORY = "directory"
    UNREADABLE_DIRECTORY = "unreadable_directory"


class RuleEffect(Enum):
    ALLOW = "+"
    DENY = "-"
    PRUNE_SUBTREE = "!"


@dataclass(frozen=True, slots=True)
class Item:
    kind: ItemKind
    relative_path: str
    full_path: Path


@dataclass(frozen=True, slots=True)
class FileRecord:
    id: int
    path: str
    mtime_ns: int


@dataclass(slots=True)
class PhysicalCopyGroup:
    id: int
    hash: str
    size: int
    created_at: int
    records: list[FileRecord] = field(default_factory=list)


@dataclass(frozen=True, slots=True)
class HardLinkMatch:
    group_id: int
    path: Path


@dataclass(frozen=True)
class IndexStats:
    groups: int
    records: int


@dataclass(slots=True)
class RunSizeTotals:
    file_count_all: int = 0
    file_count_copied: int = 0
    file_count_skipped: int = 0
    byte_count_all: int = 0
    byte_count_copied: int = 0
    byte_count_skipped: int = 0

    def __add__(self, other: "RunSizeTotals") -> "RunSizeTotals":
        return RunSizeTotals(
            file_count_all=self.file_count_all + other.file_count_all,
            file_count_copied=self.file_count_copied + other.file_count_copied,
            file_count_skipped=self.file_count_skipped + other.file_count_skipped,
            byte_count_all=self.byte_count_all + other.byte_count_all,
            byte_count_copied=self.byte_count_copied + other.byte_count_copied,
            byte_count_skipped=self.byte_count_skipped + other.byte_count_skipped,
        )

    @property
    def file_count_linked(self) -> int:
        return self.file_count_all - self.file_count_copied - self.file_count_skipped

    @property
    def byte_count_linked(self) -> int:
        return self.byte_count_all - self.byte_count_copied - self.byte_count_skipped


@dataclass(frozen=True)
class BackupSummary:
    run_path: Path
    totals: RunSizeTotals
    warnings: list[str]
    elapsed_seconds: float
