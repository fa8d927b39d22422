"""Shared fixtures for hlback tests."""

import os
from collections.abc import Callable
from pathlib import Path

import pytest

FIXED_MTIME_NS: int = 1_700_000_000_123_456_789

MakeFile = Callable[..., Path]


@pytest.fixture
def make_file() -> MakeFile:
    """Return a factory writing a file with the given content and modification time."""

    def _make_file(path: Path, content: bytes = b"x" * 100, mtime_ns: int = FIXED_MTIME_NS) -> Path:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(content)
        os.utime(path, ns=(mtime_ns, mtime_ns))
        return path

    return _make_file


@pytest.fixture
def source_dir(tmp_path: Path) -> Path:
    path: Path = tmp_path / "source"
    path.mkdir()
    return path


@pytest.fixture
def destination_dir(tmp_path: Path) -> Path:
    return tmp_path / "backups"
