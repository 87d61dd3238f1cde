"""Partition content population.

Raw blob partitions stream their source file straight into the partition's
extent. Volume partitions are formatted by the filesystem builder and then
filled from two sources, always in this order:

1. ``tree_root``: the whole directory tree is mirrored into the volume root.
2. ``placements``: each source is copied to its destination, after creating
   any missing ancestor directories.

Placements run after the tree copy, so a placement that lands on a
tree-copied file replaces it (a warning is logged). A placement directory
that collides with an existing volume directory aborts the build; there is
no merge.

Directory trees are walked with an explicit work-list rather than recursion,
so tree depth is bounded by memory rather than the interpreter stack.
"""

from __future__ import annotations

import os
import posixpath
import stat
from dataclasses import dataclass, field
from pathlib import Path
from typing import BinaryIO, Optional

from mkimg.domain import PlannedPartition, Placement, RawBlobContent, VolumeContent
from mkimg.logging import LoggerFactory

from .exceptions import (
    DirectoryExistsError,
    SourceNotFoundError,
    SourceReadError,
    ValidationError,
)
from .image import DiskImage
from .volume import FilesystemBuilder, Volume, normalize_volume_path


@dataclass
class PopulationStats:
    directories: int = 0
    files: int = 0
    bytes_written: int = 0
    written_files: set[str] = field(default_factory=set)


class SourceReader:
    """Binary stream over a source file whose read errors name the source."""

    def __init__(self, path: Path, stream: BinaryIO):
        self.path = path
        self._stream = stream

    def read(self, size: int = -1) -> bytes:
        try:
            return self._stream.read(size)
        except OSError as error:
            raise SourceReadError(str(self.path), str(error)) from error


def populate_raw_blob(
    image: DiskImage,
    planned: PlannedPartition,
    chunk_size: Optional[int] = None,
) -> int:
    """Stream a raw blob source into its partition.

    The source size is checked again here because the file may have changed
    since validation.

    Raises:
        SourceNotFoundError: Source missing
        SourceReadError: Source unreadable or its size changed
    """
    content = planned.spec.content
    if not isinstance(content, RawBlobContent):
        raise TypeError(f"Partition {planned.index} is not a raw blob")
    source = content.source
    log = LoggerFactory.for_image()
    try:
        stream = open(source, "rb")
    except FileNotFoundError as error:
        raise SourceNotFoundError(str(source), f"partition #{planned.index}") from error
    except OSError as error:
        raise SourceReadError(str(source), str(error)) from error
    with stream:
        size = os.fstat(stream.fileno()).st_size
        if size != planned.spec.size_bytes:
            raise SourceReadError(
                str(source),
                f"size changed from {planned.spec.size_bytes} to {size} bytes",
            )
        written = image.write_partition_contents(
            planned.index, SourceReader(source, stream), chunk_size
        )
    if written != planned.spec.size_bytes:
        raise SourceReadError(
            str(source), f"read {written} of {planned.spec.size_bytes} bytes"
        )
    log.info(f"> Partition {planned.index} filled from {source} ({written} bytes)")
    return written


def read_source_file(source: Path) -> tuple[bytes, float]:
    """Return the contents and modification time of a source file."""
    try:
        with open(source, "rb") as stream:
            mtime = os.fstat(stream.fileno()).st_mtime
            return stream.read(), mtime
    except FileNotFoundError as error:
        raise SourceNotFoundError(str(source)) from error
    except OSError as error:
        raise SourceReadError(str(source), str(error)) from error


def list_source_directory(source: Path) -> list[tuple[Path, bool]]:
    """List a directory in the order the OS returns entries.

    Symlinks to directories are skipped so link cycles cannot recurse.
    """
    listing = []
    try:
        with os.scandir(source) as entries:
            for entry in entries:
                if entry.is_symlink() and entry.is_dir():
                    LoggerFactory.for_volume().warning(
                        f"Skipping directory symlink {entry.path}"
                    )
                    continue
                listing.append((Path(entry.path), entry.is_dir(follow_symlinks=False)))
    except FileNotFoundError as error:
        raise SourceNotFoundError(str(source)) from error
    except OSError as error:
        raise SourceReadError(str(source), str(error)) from error
    return listing


def copy_entry(
    volume: Volume,
    source: Path,
    destination: str,
    is_dir: bool,
    *,
    create_root: bool = True,
    stats: Optional[PopulationStats] = None,
    warn_on_overwrite: Optional[set[str]] = None,
) -> PopulationStats:
    """Copy a file or a whole directory tree from the host into ``volume``.

    Directories are created before their children; children are visited in
    listing order, depth first. ``create_root=False`` mirrors a directory's
    contents into an existing destination (used for the volume root).
    """
    stats = stats if stats is not None else PopulationStats()
    log = LoggerFactory.for_copy()
    work: list[tuple[Path, str, bool, bool]] = [
        (source, normalize_volume_path(destination), is_dir, create_root)
    ]
    while work:
        current, target, current_is_dir, create = work.pop()
        if current_is_dir:
            if create:
                volume.mkdir(target)
                stats.directories += 1
                log.trace(f"mkdir {target}")
            children = list_source_directory(current)
            for child, child_is_dir in reversed(children):
                work.append(
                    (child, posixpath.join(target, child.name), child_is_dir, True)
                )
            continue

        data, mtime = read_source_file(current)
        if warn_on_overwrite is not None and target in warn_on_overwrite:
            LoggerFactory.for_volume().warning(
                f"{current} overwrites {target} copied from the tree root"
            )
        volume.write_file(target, data, mtime=mtime)
        stats.files += 1
        stats.bytes_written += len(data)
        stats.written_files.add(target)
        log.trace(f"copy {current} -> {target} ({len(data)} bytes)")
    return stats


def create_skeleton(volume: Volume, path: str) -> list[str]:
    """Ensure every directory along ``path`` exists, outermost first.

    Existing directories are skipped silently so placements can share
    ancestors. Returns the directories that were newly created.
    """
    normalized = normalize_volume_path(path)
    if normalized == "/":
        return []
    ancestors = []
    current = normalized
    while current != "/":
        ancestors.append(current)
        current = posixpath.dirname(current)
    created = []
    for directory in reversed(ancestors):
        try:
            volume.mkdir(directory)
        except DirectoryExistsError:
            continue
        created.append(directory)
    return created


def resolve_placement_destination(placement: Placement) -> str:
    """Empty destinations map to the source's base name at the volume root."""
    if not placement.destination:
        return normalize_volume_path(Path(placement.source).name)
    return normalize_volume_path(placement.destination)


def apply_placement(
    volume: Volume,
    placement: Placement,
    stats: PopulationStats,
    tree_files: Optional[set[str]] = None,
) -> str:
    """Copy one placement into the volume and return its volume path.

    Raises:
        SourceNotFoundError: Placement source does not exist
        VolumeWriteError: Directory collision or write failure
    """
    source = Path(placement.source)
    try:
        mode = source.stat().st_mode
    except OSError as error:
        raise SourceNotFoundError(str(source), error.strerror or str(error)) from error
    is_dir = stat.S_ISDIR(mode)
    destination = resolve_placement_destination(placement)
    if placement.destination:
        create_skeleton(volume, posixpath.dirname(destination))
    copy_entry(
        volume,
        source,
        destination,
        is_dir,
        stats=stats,
        warn_on_overwrite=tree_files,
    )
    return destination


def populate_volume(
    volume: Volume,
    content: VolumeContent,
    partition_index: Optional[int] = None,
) -> PopulationStats:
    """Fill a freshly formatted volume: tree root first, then placements."""
    log = LoggerFactory.for_volume(partition_index)
    stats = PopulationStats()
    tree_files: set[str] = set()

    if content.tree_root is not None:
        root = Path(content.tree_root)
        if not root.exists():
            raise SourceNotFoundError(str(root), "fs-root")
        if not root.is_dir():
            raise ValidationError(f"fs-root `{root}` is not a directory", partition_index)
        copy_entry(volume, root, "/", True, create_root=False, stats=stats)
        tree_files = set(stats.written_files)
        log.debug(
            f"Copied tree {root}: {stats.directories} directories, {stats.files} files"
        )

    for placement in content.placements:
        destination = apply_placement(volume, placement, stats, tree_files)
        log.debug(f"Placed {placement.source} at {destination}")

    return stats


def populate_partition(
    image: DiskImage,
    planned: PlannedPartition,
    builder: FilesystemBuilder,
    chunk_size: Optional[int] = None,
) -> None:
    """Materialize one planned partition."""
    spec = planned.spec
    if isinstance(spec.content, RawBlobContent):
        populate_raw_blob(image, planned, chunk_size)
        return
    if isinstance(spec.content, VolumeContent):
        volume = builder.create_filesystem(
            image, planned.index, spec.content.volume_format, spec.name
        )
        stats = populate_volume(volume, spec.content, planned.index)
        LoggerFactory.for_volume(planned.index).info(
            f"> Partition {planned.index} formatted as "
            f"{spec.content.volume_format.value}: {stats.directories} directories, "
            f"{stats.files} files, {stats.bytes_written} bytes"
        )
        return
    raise TypeError(f"Unhandled partition content: {type(spec.content).__name__}")
