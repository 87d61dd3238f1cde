"""Disk image layout and assembly engine.

This package re-exports the high-level entry points so callers can write
``from mkimg.storage import assemble_image``.
"""

from .assembly import BuildResult, assemble_image
from .layout import compute_extents, compute_total_size, plan_image
from .partition_table import GptTableWriter, build_table_descriptor
from .spec_parser import parse_partition, parse_partitions
from .volume import MtoolsFilesystemBuilder


__all__ = [
    "BuildResult",
    "GptTableWriter",
    "MtoolsFilesystemBuilder",
    "assemble_image",
    "build_table_descriptor",
    "compute_extents",
    "compute_total_size",
    "parse_partition",
    "parse_partitions",
    "plan_image",
]
