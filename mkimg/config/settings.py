"""Settings storage and resolved build configuration."""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Optional

from mkimg.domain import DEFAULT_FIRST_SECTOR, DEFAULT_PARTITION_NAME, MIB


SETTINGS_PATH = Path(
    os.environ.get(
        "MKIMG_SETTINGS_PATH",
        Path.home() / ".config" / "mkimg" / "settings.json",
    )
)

# Default values - use these constants instead of hardcoding values elsewhere
DEFAULT_OUTPUT = "mkimg.img"
DEFAULT_COPY_CHUNK_SIZE = MIB

DEFAULT_SETTINGS: dict[str, Any] = {
    "output": DEFAULT_OUTPUT,
    "first_sector": DEFAULT_FIRST_SECTOR,
    "default_partition_name": DEFAULT_PARTITION_NAME,
    "protective_mbr": False,
    "mtools_dir": None,
    "copy_chunk_size": DEFAULT_COPY_CHUNK_SIZE,
    "source_date_epoch": None,
    "log_dir": None,
}


@dataclass
class SettingsStore:
    values: dict[str, Any] = field(default_factory=dict)


settings_store = SettingsStore()


def load_settings(path: Optional[Path] = None, *, required: bool = False) -> None:
    """Reset to defaults, then apply the JSON file at ``path``.

    A missing or corrupt file is ignored unless ``required`` is set.

    Raises:
        FileNotFoundError: ``required`` and the file does not exist
        ValueError: ``required`` and the file is not a JSON object
        OSError: ``required`` and the file cannot be read
    """
    settings_store.values = dict(DEFAULT_SETTINGS)
    path = path or SETTINGS_PATH
    if not path.exists():
        if required:
            raise FileNotFoundError(f"settings file {path} does not exist")
        return
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError):
        if required:
            raise
        return
    if isinstance(data, dict):
        settings_store.values.update(data)
    elif required:
        raise ValueError(f"settings file {path} must hold a JSON object")


def get_setting(key: str, default: Any | None = None) -> Any:
    return settings_store.values.get(key, default)


def get_bool(key: str, default: bool = False) -> bool:
    return bool(get_setting(key, default))


def get_int(key: str, default: int) -> int:
    value = get_setting(key, default)
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


@dataclass(frozen=True)
class ImageConfig:
    """Build configuration threaded explicitly through the engine.

    Resolved once from the settings store and command-line overrides, then
    passed to the spec parser, layout calculator and assembly driver.
    """

    output: Path = Path(DEFAULT_OUTPUT)
    first_sector: int = DEFAULT_FIRST_SECTOR
    default_partition_name: str = DEFAULT_PARTITION_NAME
    protective_mbr: bool = False
    bootsector: Optional[Path] = None
    disk_identifier: Optional[str] = None
    mtools_dir: Optional[Path] = None
    copy_chunk_size: int = DEFAULT_COPY_CHUNK_SIZE
    # Timestamp mtools stamps on directory entries; None means the FAT epoch
    source_date_epoch: Optional[int] = None

    def with_overrides(self, **overrides: Any) -> ImageConfig:
        """Return a copy with every non-None override applied."""
        return replace(self, **{k: v for k, v in overrides.items() if v is not None})


def _source_date_epoch() -> Optional[int]:
    value = get_setting("source_date_epoch")
    if value is None:
        value = os.environ.get("SOURCE_DATE_EPOCH")
    try:
        return int(value) if value is not None else None
    except (TypeError, ValueError):
        return None


def config_from_settings() -> ImageConfig:
    """Build an ImageConfig from the currently loaded settings."""
    mtools_dir = get_setting("mtools_dir")
    chunk_size = get_int("copy_chunk_size", DEFAULT_COPY_CHUNK_SIZE)
    return ImageConfig(
        output=Path(get_setting("output", DEFAULT_OUTPUT)),
        first_sector=get_int("first_sector", DEFAULT_FIRST_SECTOR),
        default_partition_name=str(
            get_setting("default_partition_name", DEFAULT_PARTITION_NAME)
        ),
        protective_mbr=get_bool("protective_mbr"),
        mtools_dir=Path(mtools_dir) if mtools_dir else None,
        copy_chunk_size=chunk_size if chunk_size > 0 else DEFAULT_COPY_CHUNK_SIZE,
        source_date_epoch=_source_date_epoch(),
    )


load_settings()
