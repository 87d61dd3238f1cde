"""Domain models for disk image assembly.

This package contains the immutable objects passed between the layout
calculator, table builder, content populator and assembly driver.
"""

from __future__ import annotations

from .models import (
    DEFAULT_FIRST_SECTOR,
    DEFAULT_PARTITION_NAME,
    MIB,
    SECTOR_SIZE,
    Extent,
    ImagePlan,
    PartitionContent,
    PartitionKind,
    PartitionSpec,
    PartitionTableDescriptor,
    Placement,
    PlannedPartition,
    RawBlobContent,
    TableRecord,
    VolumeContent,
    VolumeFormat,
    WrittenTable,
    round_up_to_sector,
    sectors_for,
)


__all__ = [
    "DEFAULT_FIRST_SECTOR",
    "DEFAULT_PARTITION_NAME",
    "MIB",
    "SECTOR_SIZE",
    "Extent",
    "ImagePlan",
    "PartitionContent",
    "PartitionKind",
    "PartitionSpec",
    "PartitionTableDescriptor",
    "Placement",
    "PlannedPartition",
    "RawBlobContent",
    "TableRecord",
    "VolumeContent",
    "VolumeFormat",
    "WrittenTable",
    "round_up_to_sector",
    "sectors_for",
]
