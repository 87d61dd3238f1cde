"""
Pytest configuration and shared fixtures for mkimg tests.

This module provides common fixtures and test doubles used across all test
modules, most importantly an in-memory volume so population logic can be
tested without mtools.
"""

import posixpath
import uuid
from pathlib import Path
from typing import Dict, List

import pytest
from loguru import logger

from mkimg.config.settings import ImageConfig
from mkimg.domain import (
    MIB,
    PartitionSpec,
    Placement,
    RawBlobContent,
    VolumeContent,
    VolumeFormat,
)
from mkimg.storage.exceptions import DirectoryExistsError, VolumeWriteError
from mkimg.storage.volume import FilesystemBuilder, Volume, normalize_volume_path


# ==============================================================================
# Volume Doubles
# ==============================================================================


class MemoryVolume(Volume):
    """Volume that keeps directories and files in memory.

    mkdir raises DirectoryExistsError for existing entries and
    VolumeWriteError for a missing parent, like mmd.
    """

    def __init__(self, label: str = "", partition_index: int = 1):
        self.label = label
        self.partition_index = partition_index
        self.directories = {"/"}
        self.files: Dict[str, bytes] = {}
        self.mtimes: Dict[str, float] = {}
        self.operations: List[tuple] = []

    def _require_parent(self, path: str, operation: str) -> None:
        parent = posixpath.dirname(path)
        if parent not in self.directories:
            raise VolumeWriteError(path, operation, f"parent {parent} does not exist")

    def mkdir(self, path: str) -> None:
        path = normalize_volume_path(path)
        if path in self.directories or path in self.files:
            raise DirectoryExistsError(path)
        self._require_parent(path, "mkdir")
        self.directories.add(path)
        self.operations.append(("mkdir", path))

    def write_file(self, path: str, data: bytes, mtime=None) -> None:
        path = normalize_volume_path(path)
        if path in self.directories:
            raise VolumeWriteError(path, "write", "is a directory")
        self._require_parent(path, "write")
        self.files[path] = bytes(data)
        if mtime is not None:
            self.mtimes[path] = mtime
        self.operations.append(("write", path))

    def list_paths(self) -> set:
        """Every directory (except the root) and file path in the volume."""
        return (self.directories - {"/"}) | set(self.files)


class MemoryFilesystemBuilder(FilesystemBuilder):
    def __init__(self):
        self.volumes: Dict[int, MemoryVolume] = {}
        self.calls: List[tuple] = []

    def create_filesystem(self, image, partition_index, volume_format, label):
        self.calls.append((partition_index, volume_format, label))
        volume = MemoryVolume(label=label, partition_index=partition_index)
        self.volumes[partition_index] = volume
        return volume


@pytest.fixture
def memory_volume() -> MemoryVolume:
    return MemoryVolume(label="TEST")


@pytest.fixture
def memory_builder() -> MemoryFilesystemBuilder:
    return MemoryFilesystemBuilder()


# ==============================================================================
# Source Fixtures
# ==============================================================================


@pytest.fixture
def source_tree(tmp_path) -> Path:
    """
    Fixture providing a small directory tree to mirror into a volume.

    Layout:
        tree/README.txt
        tree/boot/kernel.bin
        tree/boot/grub/grub.cfg
        tree/empty/
    """
    root = tmp_path / "tree"
    (root / "boot" / "grub").mkdir(parents=True)
    (root / "empty").mkdir()
    (root / "README.txt").write_bytes(b"hello volume\n")
    (root / "boot" / "kernel.bin").write_bytes(bytes(range(256)) * 4)
    (root / "boot" / "grub" / "grub.cfg").write_text("set timeout=0\n")
    return root


@pytest.fixture
def blob_file(tmp_path) -> Path:
    """A 1000-byte raw blob (not a multiple of the sector size)."""
    path = tmp_path / "blob.bin"
    path.write_bytes(bytes(i % 251 for i in range(1000)))
    return path


@pytest.fixture
def make_raw_spec():
    def _make(source: Path, **overrides) -> PartitionSpec:
        values = {
            "name": "blob",
            "size_bytes": Path(source).stat().st_size,
            "table_type_tag": "bios-boot",
            "content": RawBlobContent(source=Path(source)),
        }
        values.update(overrides)
        return PartitionSpec(**values)

    return _make


@pytest.fixture
def make_volume_spec():
    def _make(size_mib: int = 1, tree_root=None, placements=(), **overrides) -> PartitionSpec:
        values = {
            "name": "ESP",
            "size_bytes": size_mib * MIB,
            "table_type_tag": "efi-system",
            "content": VolumeContent(
                volume_format=VolumeFormat.FAT32,
                tree_root=Path(tree_root) if tree_root else None,
                placements=tuple(
                    p if isinstance(p, Placement) else Placement(Path(p[0]), p[1])
                    for p in placements
                ),
            ),
        }
        values.update(overrides)
        return PartitionSpec(**values)

    return _make


# ==============================================================================
# Config / Determinism Fixtures
# ==============================================================================


@pytest.fixture
def sequential_guids():
    """GUID factory returning predictable GUIDs, for reproducible images."""

    def _factory_builder():
        counter = {"value": 0}

        def _factory() -> uuid.UUID:
            counter["value"] += 1
            return uuid.UUID(int=counter["value"])

        return _factory

    return _factory_builder


@pytest.fixture
def image_config(tmp_path) -> ImageConfig:
    return ImageConfig(output=tmp_path / "out.img", first_sector=2048)


@pytest.fixture
def log_records():
    """Collect loguru records emitted during a test."""
    records = []
    handler_id = logger.add(lambda message: records.append(message.record), level="TRACE")
    yield records
    logger.remove(handler_id)
