"""Partition geometry for disk images.

The layout calculator turns an ordered list of validated specs into
contiguous, sector-aligned extents starting at a configurable first sector.
Specs keep their input order; that order is the partition numbering.

Image size reserves the head region (before ``first_sector``) twice: once at
the start for the protective MBR and primary table, once at the tail for the
backup table.
"""

from __future__ import annotations

from typing import Sequence

from mkimg.domain import (
    DEFAULT_FIRST_SECTOR,
    SECTOR_SIZE,
    Extent,
    ImagePlan,
    PartitionSpec,
    PlannedPartition,
    round_up_to_sector,
    sectors_for,
)
from mkimg.logging import LoggerFactory

from .exceptions import SizeError, ValidationError


log = LoggerFactory.for_layout()


def compute_extents(
    specs: Sequence[PartitionSpec],
    first_sector: int = DEFAULT_FIRST_SECTOR,
    block_size: int = SECTOR_SIZE,
) -> list[Extent]:
    """Assign each spec a contiguous extent, in input order.

    Raises:
        SizeError: If any spec has a missing or non-positive size
        ValidationError: If first_sector is negative
    """
    if first_sector < 0:
        raise ValidationError(f"first sector must not be negative (got {first_sector})")
    extents: list[Extent] = []
    cursor = first_sector
    for index, spec in enumerate(specs, start=1):
        if not spec.size_bytes or spec.size_bytes <= 0:
            raise SizeError(index, spec.size_bytes)
        size_in_sectors = sectors_for(spec.size_bytes, block_size)
        extents.append(Extent(cursor, cursor + size_in_sectors))
        cursor += size_in_sectors
    return extents


def compute_total_size(
    specs: Sequence[PartitionSpec],
    first_sector: int = DEFAULT_FIRST_SECTOR,
    block_size: int = SECTOR_SIZE,
) -> int:
    """Total image bytes: head and tail reservations plus every partition."""
    size = block_size * first_sector * 2
    for spec in specs:
        size += round_up_to_sector(spec.size_bytes, block_size)
    return size


def plan_image(
    specs: Sequence[PartitionSpec],
    first_sector: int = DEFAULT_FIRST_SECTOR,
    block_size: int = SECTOR_SIZE,
) -> ImagePlan:
    """Compute the full image plan for an ordered list of specs."""
    extents = compute_extents(specs, first_sector, block_size)
    partitions = tuple(
        PlannedPartition(index=index, spec=spec, extent=extent)
        for index, (spec, extent) in enumerate(zip(specs, extents), start=1)
    )
    plan = ImagePlan(
        partitions=partitions,
        first_sector=first_sector,
        total_size_bytes=compute_total_size(specs, first_sector, block_size),
        block_size=block_size,
    )
    log.debug(
        f"Planned {len(partitions)} partition(s), "
        f"{plan.total_size_bytes} bytes ({plan.total_sectors} sectors)"
    )
    return plan
