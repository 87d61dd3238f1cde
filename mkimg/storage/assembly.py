"""Disk image assembly.

Sequence for one build:
    1. Validate every spec and read the boot sector payload (if any)
    2. Plan the layout
    3. Remove/recreate the destination image at its final size
    4. Write the partition table
    5. Populate each partition in spec order
    6. Write the boot sector over the start of the image

Any failure aborts the build immediately. Nothing touches the destination
path before step 3, so validation errors leave an existing image alone;
failures from step 3 on leave a partial image that callers must discard.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Sequence

from mkimg.config.settings import ImageConfig
from mkimg.domain import ImagePlan, PartitionSpec, WrittenTable
from mkimg.logging import operation_context

from .bootsector import read_bootsector, write_bootsector
from .exceptions import ValidationError
from .image import DiskImage
from .layout import plan_image
from .partition_table import GptTableWriter, build_table_descriptor
from .populate import populate_partition
from .validation import validate_partition_spec
from .volume import FilesystemBuilder, MtoolsFilesystemBuilder


@dataclass(frozen=True)
class BuildResult:
    output: Path
    plan: ImagePlan
    table: WrittenTable
    bootsector_size: Optional[int] = None


def assemble_image(
    specs: Sequence[PartitionSpec],
    config: ImageConfig,
    *,
    builder: Optional[FilesystemBuilder] = None,
    table_writer: Optional[GptTableWriter] = None,
) -> BuildResult:
    """Build the image described by ``specs`` at ``config.output``.

    Raises:
        ImageBuildError: Any validation, source, table, volume or boot sector failure
        FatalError: Unexpected low-level failure
    """
    builder = builder or MtoolsFilesystemBuilder(
        mtools_dir=config.mtools_dir,
        source_date_epoch=config.source_date_epoch,
    )
    table_writer = table_writer or GptTableWriter()

    with operation_context(
        "build", output=str(config.output), partitions=len(specs)
    ) as log:
        if not specs:
            raise ValidationError("no partitions given")
        validated = [
            validate_partition_spec(spec, index)
            for index, spec in enumerate(specs, start=1)
        ]
        payload = None
        if config.bootsector is not None:
            payload = read_bootsector(config.bootsector)

        plan = plan_image(validated, config.first_sector)
        descriptor = build_table_descriptor(
            plan,
            protective_mbr=config.protective_mbr,
            disk_identifier=config.disk_identifier,
        )

        with DiskImage.create(config.output, plan.total_size_bytes, plan.block_size) as image:
            table = table_writer.write(image, descriptor)
            for planned in plan.partitions:
                log.debug(f"Populating partition {planned.index} ({planned.spec.kind.value})")
                populate_partition(image, planned, builder, config.copy_chunk_size)
            bootsector_size = None
            if payload is not None:
                bootsector_size = write_bootsector(image, payload)

        return BuildResult(
            output=Path(config.output),
            plan=plan,
            table=table,
            bootsector_size=bootsector_size,
        )
