"""Validation for partition specs.

Every function here either returns a validated value or raises a specific
exception from the exceptions module, so callers never have to check
booleans. Validation touches the filesystem only to stat sources; nothing
here creates or truncates the destination image.

Example:
    from mkimg.storage.validation import build_raw_blob_spec

    spec = build_raw_blob_spec(
        source=Path("boot.bin"),
        table_type_tag="bios-boot",
        index=1,
    )
"""

from __future__ import annotations

from pathlib import Path
from typing import Iterable, Optional, Union

from mkimg.domain import (
    DEFAULT_PARTITION_NAME,
    MIB,
    PartitionSpec,
    Placement,
    RawBlobContent,
    VolumeContent,
    VolumeFormat,
)

from .exceptions import FatalError, SizeError, SourceNotFoundError, ValidationError


def validate_type_tag(table_type_tag: Optional[str], index: Optional[int] = None) -> str:
    """Require a non-empty partition table type tag."""
    tag = (table_type_tag or "").strip()
    if not tag:
        raise ValidationError("missing a gpt-type", index)
    return tag


def validate_volume_format(tag: Optional[str], index: Optional[int] = None) -> VolumeFormat:
    volume_format = VolumeFormat.from_tag(tag or "")
    if volume_format is None:
        raise ValidationError(f"unknown fs-type `{tag}`", index)
    return volume_format


def resolve_raw_blob_size(source: Union[str, Path], index: Optional[int] = None) -> int:
    """Return the current byte length of a raw blob source.

    Raises:
        SourceNotFoundError: If the source does not exist
        ValidationError: If the source is not a regular file
        FatalError: If stat fails for any other reason
    """
    path = Path(source)
    try:
        stat_result = path.stat()
    except FileNotFoundError as error:
        raise SourceNotFoundError(str(path), f"partition #{index}") from error
    except OSError as error:
        raise FatalError(f"Unable to stat {path}: {error}", error) from error
    if not path.is_file():
        raise ValidationError(f"`{path}` is not a regular file", index)
    return stat_result.st_size


def resolve_volume_size(size_mib: Union[int, str, None], index: Optional[int] = None) -> int:
    """Convert a whole-MiB volume size into bytes."""
    if size_mib is None or size_mib == "":
        raise SizeError(index or 0, None)
    try:
        mib = int(str(size_mib).strip())
    except ValueError as error:
        raise ValidationError(
            f"fs-size `{size_mib}` is not a valid number", index
        ) from error
    if mib <= 0:
        raise SizeError(index or 0, mib * MIB)
    return mib * MIB


def normalize_name(name: Optional[str], default: str = DEFAULT_PARTITION_NAME) -> str:
    if name is None or not name.strip():
        return default
    return name


def validate_partition_spec(spec: PartitionSpec, index: Optional[int] = None) -> PartitionSpec:
    """Check the invariants every spec must hold before layout.

    Raises:
        ValidationError: Missing type tag or unknown content kind
        SizeError: Size missing or not positive
    """
    validate_type_tag(spec.table_type_tag, index)
    try:
        spec.kind
    except TypeError as error:
        raise ValidationError(str(error), index) from error
    if not spec.size_bytes or spec.size_bytes <= 0:
        raise SizeError(index or 0, spec.size_bytes)
    if isinstance(spec.content, RawBlobContent):
        actual = resolve_raw_blob_size(spec.content.source, index)
        if actual != spec.size_bytes:
            raise ValidationError(
                f"size {spec.size_bytes} does not match `{spec.content.source}` "
                f"({actual} bytes)",
                index,
            )
    return spec


def build_raw_blob_spec(
    *,
    source: Union[str, Path],
    table_type_tag: Optional[str],
    name: Optional[str] = None,
    table_identifier: Optional[str] = None,
    index: Optional[int] = None,
    default_name: str = DEFAULT_PARTITION_NAME,
) -> PartitionSpec:
    """Build a raw blob spec, sizing it from the source file."""
    tag = validate_type_tag(table_type_tag, index)
    if not source:
        raise ValidationError("missing a file", index)
    size_bytes = resolve_raw_blob_size(source, index)
    if size_bytes <= 0:
        raise SizeError(index or 0, size_bytes)
    return PartitionSpec(
        name=normalize_name(name, default_name),
        size_bytes=size_bytes,
        table_type_tag=tag,
        content=RawBlobContent(source=Path(source)),
        table_identifier=table_identifier or None,
    )


def build_volume_spec(
    *,
    size_mib: Union[int, str, None],
    volume_format: Optional[str],
    table_type_tag: Optional[str],
    name: Optional[str] = None,
    tree_root: Union[str, Path, None] = None,
    placements: Iterable[Placement] = (),
    table_identifier: Optional[str] = None,
    index: Optional[int] = None,
    default_name: str = DEFAULT_PARTITION_NAME,
) -> PartitionSpec:
    """Build a volume spec from its declared size and sources."""
    tag = validate_type_tag(table_type_tag, index)
    fmt = validate_volume_format(volume_format, index)
    size_bytes = resolve_volume_size(size_mib, index)
    return PartitionSpec(
        name=normalize_name(name, default_name),
        size_bytes=size_bytes,
        table_type_tag=tag,
        content=VolumeContent(
            volume_format=fmt,
            tree_root=Path(tree_root) if tree_root else None,
            placements=tuple(placements),
        ),
        table_identifier=table_identifier or None,
    )
