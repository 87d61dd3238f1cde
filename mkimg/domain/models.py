"""Domain model for disk image assembly.

This module holds the immutable objects that flow through the engine: the
validated partition specs, the extents the layout calculator assigns to them,
the resulting image plan, and the abstract partition table handed to the
table writer.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Optional, Union


SECTOR_SIZE = 512
DEFAULT_FIRST_SECTOR = 2048
DEFAULT_PARTITION_NAME = "Unnamed Partition"
MIB = 1024 * 1024


# ==============================================================================
# Partition Specs
# ==============================================================================


class PartitionKind(Enum):
    """What a partition holds."""

    RAW_BLOB = "file"  # Source file copied verbatim
    VOLUME = "fs"  # Formatted filesystem populated from sources


class VolumeFormat(Enum):
    """Filesystem formats the volume builder can create."""

    FAT32 = "fat32"

    @classmethod
    def from_tag(cls, tag: str) -> Optional[VolumeFormat]:
        """Look up a format by its tag, returning None for unsupported tags."""
        normalized = (tag or "").strip().lower()
        for member in cls:
            if member.value == normalized:
                return member
        return None


@dataclass(frozen=True)
class Placement:
    """One explicit source → destination copy into a volume.

    An empty destination means "the source's base name at the volume root".
    """

    source: Path
    destination: str = ""


@dataclass(frozen=True)
class RawBlobContent:
    source: Path


@dataclass(frozen=True)
class VolumeContent:
    volume_format: VolumeFormat
    tree_root: Optional[Path] = None
    placements: tuple[Placement, ...] = ()


PartitionContent = Union[RawBlobContent, VolumeContent]


@dataclass(frozen=True)
class PartitionSpec:
    """A validated, immutable description of one planned partition."""

    name: str
    size_bytes: int
    table_type_tag: str
    content: PartitionContent
    table_identifier: Optional[str] = None

    @property
    def kind(self) -> PartitionKind:
        if isinstance(self.content, RawBlobContent):
            return PartitionKind.RAW_BLOB
        if isinstance(self.content, VolumeContent):
            return PartitionKind.VOLUME
        raise TypeError(f"Unknown partition content: {type(self.content).__name__}")

    @property
    def size_in_sectors(self) -> int:
        return sectors_for(self.size_bytes)


def sectors_for(size_bytes: int, block_size: int = SECTOR_SIZE) -> int:
    """Number of whole sectors needed to hold ``size_bytes``."""
    return (size_bytes + block_size - 1) // block_size


def round_up_to_sector(size_bytes: int, block_size: int = SECTOR_SIZE) -> int:
    return sectors_for(size_bytes, block_size) * block_size


# ==============================================================================
# Layout
# ==============================================================================


@dataclass(frozen=True)
class Extent:
    """Half-open sector range ``[start_sector, end_sector)``."""

    start_sector: int
    end_sector: int

    @property
    def size_in_sectors(self) -> int:
        return self.end_sector - self.start_sector

    def byte_offset(self, block_size: int = SECTOR_SIZE) -> int:
        return self.start_sector * block_size

    def byte_length(self, block_size: int = SECTOR_SIZE) -> int:
        return self.size_in_sectors * block_size

    def overlaps(self, other: Extent) -> bool:
        return self.start_sector < other.end_sector and other.start_sector < self.end_sector


@dataclass(frozen=True)
class PlannedPartition:
    index: int  # 1-based partition number
    spec: PartitionSpec
    extent: Extent


@dataclass(frozen=True)
class ImagePlan:
    """Ordered pairing of specs and extents plus the total image size."""

    partitions: tuple[PlannedPartition, ...]
    first_sector: int
    total_size_bytes: int
    block_size: int = SECTOR_SIZE

    @property
    def total_sectors(self) -> int:
        return self.total_size_bytes // self.block_size

    def partition(self, index: int) -> PlannedPartition:
        """Return the partition with the given 1-based index."""
        if index < 1 or index > len(self.partitions):
            raise IndexError(f"No partition {index} in plan")
        return self.partitions[index - 1]


# ==============================================================================
# Partition Table
# ==============================================================================


@dataclass(frozen=True)
class TableRecord:
    """One partition entry as handed to the table writer."""

    start_sector: int
    end_sector: int  # exclusive
    type_tag: str
    name: str
    identifier: Optional[str] = None


@dataclass(frozen=True)
class PartitionTableDescriptor:
    records: tuple[TableRecord, ...]
    protective_mbr: bool = False
    disk_identifier: Optional[str] = None
    block_size: int = SECTOR_SIZE


@dataclass(frozen=True)
class WrittenTable:
    """What the table writer actually persisted, identifiers resolved."""

    disk_identifier: str
    records: tuple[TableRecord, ...] = field(default_factory=tuple)
