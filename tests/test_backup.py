import os
from datetime import datetime
from pathlib import Path

import pytest

from hlback import backup, walker
from hlback.backup import BackupEngine, ProgressTracker, create_run_dir, make_timestamp
from hlback.config import BackupContext
from hlback.dedup_index import DedupIndex
from hlback.errors import PathError
from hlback.linker import get_linker
from hlback.models import BackupSummary, IndexStats, RunSizeTotals
from hlback.rules import RuleSet
from hlback.sources import SourcePath

from conftest import MakeFile

FIXED_NOW: datetime = datetime(2024, 1, 2, 3, 4, 5, 678901)


def run_backup(
    destination: Path,
    *sources: SourcePath,
    max_links: int | None = 5,
    max_age: int | None = 5,
    linker=None,
    progress=None,
) -> BackupSummary:
    context: BackupContext = BackupContext(
        sources=list(sources),
        destination=destination,
        max_links_per_group=max_links,
        max_group_age_days=max_age,
    )
    engine: BackupEngine = BackupEngine(context, linker if linker is not None else get_linker(), progress)
    return engine.run()


class FailingLinker:
    def create_hard_link(self, new_path: Path, existing_path: Path) -> None:
        new_path.write_bytes(b"partial")
        raise OSError(18, "Invalid cross-device link")


def test_identical_files_share_copies_up_to_the_link_limit(
    source_dir: Path, destination_dir: Path, make_file: MakeFile
) -> None:
    for name in ("f1", "f2", "f3"):
        make_file(source_dir / name)

    summary: BackupSummary = run_backup(destination_dir, SourcePath(path=source_dir), max_links=2)

    backed_up: Path = summary.run_path / "source"
    assert summary.totals.file_count_all == 3
    assert summary.totals.file_count_copied == 2
    assert summary.totals.file_count_linked == 1
    assert summary.totals.file_count_skipped == 0
    assert os.path.samefile(backed_up / "f1", backed_up / "f2")
    assert not os.path.samefile(backed_up / "f1", backed_up / "f3")
    assert (backed_up / "f3").read_bytes() == b"x" * 100
    assert summary.warnings == []


@pytest.mark.parametrize("file_count, max_links, expected_copies", [(5, 2, 3), (6, 3, 2), (4, 1, 4), (4, 10, 1)])
def test_physical_copies_needed_for_identical_files(
    source_dir: Path,
    destination_dir: Path,
    make_file: MakeFile,
    file_count: int,
    max_links: int,
    expected_copies: int,
) -> None:
    for number in range(file_count):
        make_file(source_dir / f"file{number}")

    summary: BackupSummary = run_backup(destination_dir, SourcePath(path=source_dir), max_links=max_links)

    assert summary.totals.file_count_copied == expected_copies
    assert summary.totals.file_count_linked == file_count - expected_copies


def test_second_run_links_everything(source_dir: Path, destination_dir: Path, make_file: MakeFile) -> None:
    make_file(source_dir / "a.txt", b"a" * 10)
    make_file(source_dir / "sub" / "b.txt", b"b" * 20)
    make_file(source_dir / "sub" / "c.txt", b"b" * 20)

    first: BackupSummary = run_backup(destination_dir, SourcePath(path=source_dir), max_links=None)
    second: BackupSummary = run_backup(destination_dir, SourcePath(path=source_dir), max_links=None)

    assert first.run_path != second.run_path
    assert first.totals.file_count_copied == 2
    assert second.totals.file_count_copied == 0
    assert second.totals.file_count_linked == 3
    assert second.totals.byte_count_linked == 50
    assert os.path.samefile(first.run_path / "source" / "a.txt", second.run_path / "source" / "a.txt")


def test_deleted_backup_copy_is_replaced(source_dir: Path, destination_dir: Path, make_file: MakeFile) -> None:
    make_file(source_dir / "a.txt", b"a" * 10)
    make_file(source_dir / "b.txt", b"b" * 10)

    first: BackupSummary = run_backup(destination_dir, SourcePath(path=source_dir))
    (first.run_path / "source" / "a.txt").unlink()
    second: BackupSummary = run_backup(destination_dir, SourcePath(path=source_dir))

    assert second.totals.file_count_copied == 1
    assert second.totals.file_count_linked == 1
    assert (second.run_path / "source" / "a.txt").read_bytes() == b"a" * 10


def test_changed_source_file_is_copied_again(source_dir: Path, destination_dir: Path, make_file: MakeFile) -> None:
    path: Path = make_file(source_dir / "a.txt", b"a" * 10)
    first: BackupSummary = run_backup(destination_dir, SourcePath(path=source_dir))

    os.utime(path, ns=(1_600_000_000_000_000_000, 1_600_000_000_000_000_000))
    second: BackupSummary = run_backup(destination_dir, SourcePath(path=source_dir))

    assert second.totals.file_count_copied == 1
    assert not os.path.samefile(first.run_path / "source" / "a.txt", second.run_path / "source" / "a.txt")


def test_directory_structure_is_recreated(source_dir: Path, destination_dir: Path, make_file: MakeFile) -> None:
    make_file(source_dir / "sub" / "deep" / "a.txt")
    (source_dir / "empty").mkdir()

    summary: BackupSummary = run_backup(destination_dir, SourcePath(path=source_dir))

    assert (summary.run_path / "source" / "sub" / "deep" / "a.txt").is_file()
    assert (summary.run_path / "source" / "empty").is_dir()


def test_single_file_source(source_dir: Path, destination_dir: Path, make_file: MakeFile) -> None:
    path: Path = make_file(source_dir / "only.txt")

    summary: BackupSummary = run_backup(destination_dir, SourcePath(path=path))

    assert (summary.run_path / "only.txt").is_file()
    assert summary.totals.file_count_all == 1


def test_several_sources_share_one_run_directory(tmp_path: Path, destination_dir: Path, make_file: MakeFile) -> None:
    make_file(tmp_path / "photos" / "a.jpg")
    make_file(tmp_path / "docs" / "a.txt")

    summary: BackupSummary = run_backup(
        destination_dir, SourcePath(path=tmp_path / "photos"), SourcePath(path=tmp_path / "docs")
    )

    assert sorted(path.name for path in summary.run_path.iterdir()) == ["docs", "photos"]
    assert summary.totals.file_count_copied == 1
    assert summary.totals.file_count_linked == 1


def test_files_allowed_inside_denied_directory_get_their_parents(
    source_dir: Path, destination_dir: Path, make_file: MakeFile
) -> None:
    make_file(source_dir / "a" / "keep.txt")
    make_file(source_dir / "a" / "other.txt")
    source: SourcePath = SourcePath(path=source_dir, rules=RuleSet.parse(["-^source/a$", "+keep"]))

    summary: BackupSummary = run_backup(destination_dir, source)

    assert (summary.run_path / "source" / "a" / "keep.txt").is_file()
    assert not (summary.run_path / "source" / "a" / "other.txt").exists()
    assert summary.totals.file_count_all == 1


def test_unreadable_file_is_skipped_with_warning(
    source_dir: Path, destination_dir: Path, make_file: MakeFile, monkeypatch: pytest.MonkeyPatch
) -> None:
    make_file(source_dir / "locked.txt", b"l" * 30)
    make_file(source_dir / "open.txt", b"o" * 10)
    real_sha1 = backup.calculate_sha1

    def fake_sha1(path: Path, chunk_size: int) -> str:
        if path.name == "locked.txt":
            raise PermissionError(13, "Permission denied", str(path))
        return real_sha1(path, chunk_size)

    monkeypatch.setattr(backup, "calculate_sha1", fake_sha1)

    summary: BackupSummary = run_backup(destination_dir, SourcePath(path=source_dir))

    assert summary.totals.file_count_all == 2
    assert summary.totals.file_count_skipped == 1
    assert summary.totals.byte_count_skipped == 30
    assert summary.totals.file_count_copied == 1
    assert len(summary.warnings) == 1
    assert "Unable to read file" in summary.warnings[0]
    assert not (summary.run_path / "source" / "locked.txt").exists()


def test_unreadable_directory_is_reported(
    source_dir: Path, destination_dir: Path, make_file: MakeFile, monkeypatch: pytest.MonkeyPatch
) -> None:
    make_file(source_dir / "locked" / "secret.txt")
    make_file(source_dir / "open.txt")
    real_discover = walker.discover_dir_entries

    def fake_discover(path: Path) -> tuple[list[Path], list[Path]]:
        if path.name == "locked":
            raise PermissionError(13, "Permission denied", str(path))
        return real_discover(path)

    monkeypatch.setattr(walker, "discover_dir_entries", fake_discover)

    summary: BackupSummary = run_backup(destination_dir, SourcePath(path=source_dir))

    assert summary.warnings == [f"Unable to read directory: {source_dir / 'locked'}"]
    assert summary.totals.file_count_all == 1


def test_failed_link_is_skipped_and_cleaned_up(source_dir: Path, destination_dir: Path, make_file: MakeFile) -> None:
    make_file(source_dir / "a.txt")
    _ = run_backup(destination_dir, SourcePath(path=source_dir))

    summary: BackupSummary = run_backup(destination_dir, SourcePath(path=source_dir), linker=FailingLinker())

    assert summary.totals.file_count_skipped == 1
    assert "Unable to link file" in summary.warnings[0]
    assert not (summary.run_path / "source" / "a.txt").exists()


def test_backups_are_recorded_in_the_index(source_dir: Path, destination_dir: Path, make_file: MakeFile) -> None:
    for name in ("f1", "f2", "f3"):
        make_file(source_dir / name)

    _ = run_backup(destination_dir, SourcePath(path=source_dir), max_links=2)

    with DedupIndex(destination_dir) as index:
        assert index.stats() == IndexStats(groups=2, records=3)


def test_missing_source_aborts_run(tmp_path: Path, destination_dir: Path) -> None:
    with pytest.raises(PathError):
        _ = run_backup(destination_dir, SourcePath(path=tmp_path / "missing"))


def test_destination_that_is_a_file_aborts_run(tmp_path: Path, source_dir: Path, make_file: MakeFile) -> None:
    destination: Path = make_file(tmp_path / "not_a_dir")

    with pytest.raises(PathError):
        _ = run_backup(destination, SourcePath(path=source_dir))


def test_progress_reports_increasing_percentages(
    source_dir: Path, destination_dir: Path, make_file: MakeFile
) -> None:
    for number in range(4):
        make_file(source_dir / f"file{number}", bytes([number]) * 25)
    reported: list[int] = []

    _ = run_backup(destination_dir, SourcePath(path=source_dir), progress=reported.append)

    assert reported == [25, 50, 75, 100]


def test_progress_falls_back_to_file_counts() -> None:
    reported: list[int] = []
    tracker: ProgressTracker = ProgressTracker(RunSizeTotals(file_count_all=2), reported.append)

    tracker.advance(0)
    tracker.advance(0)

    assert reported == [50, 100]


def test_progress_never_exceeds_one_hundred() -> None:
    reported: list[int] = []
    tracker: ProgressTracker = ProgressTracker(RunSizeTotals(file_count_all=1, byte_count_all=10), reported.append)

    tracker.advance(20)

    assert reported == [100]
    assert tracker.percent == 100


def test_make_timestamp_has_millisecond_resolution() -> None:
    assert make_timestamp(FIXED_NOW) == "2024-01-02.03-04-05.678"


def test_create_run_dir_retries_with_next_counter(tmp_path: Path) -> None:
    (tmp_path / "2024-01-02.03-04-05.678.0").mkdir()
    sleeps: list[float] = []

    run_dir: Path = create_run_dir(tmp_path, clock=lambda: FIXED_NOW, sleep=sleeps.append)

    assert run_dir == tmp_path / "2024-01-02.03-04-05.678.1"
    assert run_dir.is_dir()
    assert len(sleeps) == 1


def test_create_run_dir_gives_up(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(backup, "MAX_RUN_DIR_ATTEMPTS", 2)
    (tmp_path / "2024-01-02.03-04-05.678.0").mkdir()
    (tmp_path / "2024-01-02.03-04-05.678.1").mkdir()

    with pytest.raises(PathError, match="unique backup directory"):
        _ = create_run_dir(tmp_path, clock=lambda: FIXED_NOW, sleep=lambda _: None)


def test_create_run_dir_in_missing_root(tmp_path: Path) -> None:
    with pytest.raises(PathError):
        _ = create_run_dir(tmp_path / "missing", clock=lambda: FIXED_NOW)
