import ctypes
import os
import sys
from pathlib import Path
from typing import Protocol

LONG_PATH_PREFIX: str = "\\\\?\\"


class Linker(Protocol):
    def create_hard_link(self, new_path: Path, existing_path: Path) -> None:
        """
        Create `new_path` as another directory entry for the data of `existing_path`.

        Raises OSError if the link cannot be made, for instance because the two
        paths are on different filesystems.
        """
        ...


class PosixLinker:
    def create_hard_link(self, new_path: Path, existing_path: Path) -> None:
        os.link(existing_path, new_path)


class WindowsLinker:
    def create_hard_link(self, new_path: Path, existing_path: Path) -> None:
        # The W variant takes unicode paths; the prefix lifts the MAX_PATH limit.
        kernel32 = ctypes.WinDLL("kernel32", use_last_error=True)
        created: int = kernel32.CreateHardLinkW(long_path(new_path), long_path(existing_path), None)

        if not created:
            raise ctypes.WinError(ctypes.get_last_error())


def long_path(path: Path) -> str:
    full_path: str = os.path.abspath(path)

    if full_path.startswith(LONG_PATH_PREFIX):
        return full_path

    return LONG_PATH_PREFIX + full_path


def get_linker(platform: str = sys.platform) -> Linker:
    if platform == "win32":
        return WindowsLinker()

    return PosixLinker()
