from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import NoReturn, TypedDict, cast

import yaml

from .errors import UsageError
from .sources import SourcePath


class RawAppConfig(TypedDict, total=False):
    max_hard_links_per_file: int | None
    max_hard_link_age: int | None
    chunk_size: int


CONFIG_FILENAME: Path = Path("hlback.yaml")

DEFAULT_MAX_HARD_LINKS_PER_FILE: int = 5
DEFAULT_MAX_HARD_LINK_AGE: int = 5
DEFAULT_CHUNK_SIZE: int = 1024 * 1024


def type_error(key: str, value: object) -> NoReturn:
    raise UsageError(f"Unexpected value of wrong type for {key}: {value!r}")


def _optional_limit(cfg: Mapping[str, object], key: str, default: int | None) -> int | None:
    if key not in cfg:
        return default

    value: object = cfg[key]
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, int):
        type_error(key, value)
    if value < 0:
        raise UsageError(f"{key} must not be negative, got {value}.")

    return value


@dataclass(slots=True)
class AppConfig:
    max_hard_links_per_file: int | None = DEFAULT_MAX_HARD_LINKS_PER_FILE
    max_hard_link_age: int | None = DEFAULT_MAX_HARD_LINK_AGE
    chunk_size: int = DEFAULT_CHUNK_SIZE

    @staticmethod
    def load(path: Path = CONFIG_FILENAME) -> "AppConfig":
        if not path.exists():
            raise UsageError(f"Missing config file: {path}")

        try:
            with path.open("r", encoding="UTF-8") as f:
                raw_loaded_obj: object | None = cast(object, yaml.safe_load(f))
        except (OSError, yaml.YAMLError) as e:
            raise UsageError(f"Cannot read config file {path}: {e}")

        if not raw_loaded_obj:
            raise UsageError("Config file is empty or invalid YAML.")

        if not isinstance(raw_loaded_obj, dict):
            type_error("config file", raw_loaded_obj)

        raw_dict: dict[str, object] = cast(dict[str, object], raw_loaded_obj)

        cfg_raw: object | None = raw_dict.get("config")
        if not isinstance(cfg_raw, dict):
            type_error("config", cfg_raw)

        cfg: RawAppConfig = cast(RawAppConfig, cfg_raw)

        chunk_size: object = cfg.get("chunk_size", DEFAULT_CHUNK_SIZE)
        if isinstance(chunk_size, bool) or not isinstance(chunk_size, int) or chunk_size <= 0:
            type_error("chunk_size", chunk_size)

        appConfig: AppConfig = AppConfig(
            max_hard_links_per_file=_optional_limit(
                cfg, "max_hard_links_per_file", DEFAULT_MAX_HARD_LINKS_PER_FILE
            ),
            max_hard_link_age=_optional_limit(cfg, "max_hard_link_age", DEFAULT_MAX_HARD_LINK_AGE),
            chunk_size=chunk_size,
        )

        return appConfig

    @staticmethod
    def discover(path: Path | None = None) -> "AppConfig":
        """Load `path` if given, else ./hlback.yaml if present, else the defaults."""
        if path is not None:
            return AppConfig.load(path)
        if CONFIG_FILENAME.exists():
            return AppConfig.load(CONFIG_FILENAME)

        return AppConfig()


@dataclass(frozen=True)
class BackupContext:
    """Everything one backup run needs to know, passed explicitly to the engine."""

    sources: list[SourcePath]
    destination: Path
    max_links_per_group: int | None = DEFAULT_MAX_HARD_LINKS_PER_FILE
    max_group_age_days: int | None = DEFAULT_MAX_HARD_LINK_AGE
    chunk_size: int = DEFAULT_CHUNK_SIZE
