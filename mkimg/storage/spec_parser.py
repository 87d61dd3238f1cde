"""Parse command-line partition strings into validated specs.

Partition strings are colon-separated ``key=value`` pairs:

    type=file:name=boot:gpt-type=bios-boot:file=build/stage2.bin
    type=fs:name=ESP:gpt-type=efi-system:fs-type=fat32:fs-size=64:fs-root=root/
    type=fs:gpt-type=linux-filesystem:fs-type=fat32:fs-size=32:fs-files=a.txt#kernel.elf@boot/kernel

Common keys:
    type      ``file`` (raw blob) or ``fs`` (volume), required
    gpt-type  partition type GUID or alias, required
    name      partition name / volume label
    gpt-uuid  explicit unique partition GUID

``file`` keys: ``file``. ``fs`` keys: ``fs-type``, ``fs-size`` (MiB),
``fs-root``, ``fs-files`` (``#``-separated ``source[@destination]`` items).
"""

from __future__ import annotations

from pathlib import Path
from typing import Optional

from mkimg.domain import DEFAULT_PARTITION_NAME, PartitionKind, PartitionSpec, Placement

from .exceptions import ValidationError
from .validation import build_raw_blob_spec, build_volume_spec

RAW_BLOB_KEYS = ("file",)
VOLUME_KEYS = ("fs-type", "fs-size", "fs-root", "fs-files")


def parse_partition_kv(text: str, index: Optional[int] = None) -> dict[str, str]:
    """Split a partition string into an ordered key/value mapping."""
    entries: dict[str, str] = {}
    for entry in text.split(":"):
        parts = entry.split("=")
        if len(parts) != 2:
            raise ValidationError(
                f"invalid keyvalue `{entry}` in partition `{text}`", index
            )
        key, value = parts
        if key in entries:
            raise ValidationError(
                f"duplicate partition entry `{key}` in `{text}`", index
            )
        entries[key] = value
    return entries


def parse_placements(value: str, index: Optional[int] = None) -> tuple[Placement, ...]:
    """Parse an ``fs-files`` value into placements.

    Items are separated by ``#``; each item is ``source`` or
    ``source@destination``. A repeated source keeps its first position and
    takes the last destination given.
    """
    placements: dict[str, str] = {}
    for item in value.split("#"):
        if not item:
            continue
        parts = item.split("@")
        if len(parts) > 2 or not parts[0]:
            raise ValidationError(f"invalid fs-files entry `{item}`", index)
        placements[parts[0]] = parts[1] if len(parts) == 2 else ""
    return tuple(
        Placement(source=Path(source), destination=destination)
        for source, destination in placements.items()
    )


def parse_partition(
    text: str,
    index: Optional[int] = None,
    *,
    default_name: str = DEFAULT_PARTITION_NAME,
) -> PartitionSpec:
    """Parse and validate one partition string.

    Raises:
        ValidationError: Malformed string, unknown keys, missing type/gpt-type
        SourceNotFoundError: Raw blob source file missing
        SizeError: Volume size missing or not positive
    """
    kv = parse_partition_kv(text, index)

    ptype = kv.pop("type", "")
    if not ptype:
        raise ValidationError(f"partition `{text}` is missing a type", index)
    kinds = {kind.value: kind for kind in PartitionKind}
    if ptype not in kinds:
        raise ValidationError(
            f"unknown partition type `{ptype}` in partition `{text}`", index
        )
    kind = kinds[ptype]

    gpt_type = kv.pop("gpt-type", "")
    if not gpt_type:
        raise ValidationError(f"partition `{text}` is missing a gpt-type", index)
    name = kv.pop("name", None)
    gpt_uuid = kv.pop("gpt-uuid", None)

    allowed = RAW_BLOB_KEYS if kind is PartitionKind.RAW_BLOB else VOLUME_KEYS
    unknown = [key for key in kv if key not in allowed]
    if unknown:
        raise ValidationError(
            f"unknown partition entry `{unknown[0]}` in `{text}`", index
        )

    if kind is PartitionKind.RAW_BLOB:
        if not kv.get("file"):
            raise ValidationError(f"partition `{text}` is missing a file", index)
        return build_raw_blob_spec(
            source=kv["file"],
            table_type_tag=gpt_type,
            name=name,
            table_identifier=gpt_uuid,
            index=index,
            default_name=default_name,
        )

    return build_volume_spec(
        size_mib=kv.get("fs-size"),
        volume_format=kv.get("fs-type"),
        table_type_tag=gpt_type,
        name=name,
        tree_root=kv.get("fs-root") or None,
        placements=parse_placements(kv.get("fs-files", ""), index),
        table_identifier=gpt_uuid,
        index=index,
        default_name=default_name,
    )


def parse_partitions(
    texts: list[str], *, default_name: str = DEFAULT_PARTITION_NAME
) -> list[PartitionSpec]:
    """Parse partition strings in order; numbering starts at 1."""
    return [
        parse_partition(text, index, default_name=default_name)
        for index, text in enumerate(texts, start=1)
    ]
