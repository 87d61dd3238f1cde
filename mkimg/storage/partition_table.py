"""GUID partition table construction and writing.

This module handles:
- Building the abstract table descriptor from an image plan
- Resolving partition type tags (GUIDs or friendly aliases)
- Validating every record before a single byte is written
- Encoding the protective MBR, primary GPT and backup GPT into the image

On-disk layout for an image of N sectors:
    LBA 0            protective MBR (optional)
    LBA 1            primary GPT header
    LBA 2-33         primary partition entry array (128 x 128 bytes)
    LBA N-33..N-2    backup partition entry array
    LBA N-1          backup GPT header
"""
from __future__ import annotations

import struct
import uuid
import zlib
from typing import Callable, Optional

from mkimg.domain import (
    SECTOR_SIZE,
    ImagePlan,
    PartitionTableDescriptor,
    TableRecord,
    WrittenTable,
)
from mkimg.logging import LoggerFactory

from .exceptions import TableWriteError
from .image import DiskImage


log = LoggerFactory.for_table()

GPT_SIGNATURE = b"EFI PART"
GPT_REVISION = 0x00010000
GPT_HEADER_SIZE = 92
GPT_ENTRY_COUNT = 128
GPT_ENTRY_SIZE = 128
GPT_NAME_MAX_CHARS = 36
GPT_ENTRIES_SECTORS = (GPT_ENTRY_COUNT * GPT_ENTRY_SIZE) // SECTOR_SIZE
FIRST_USABLE_LBA = 2 + GPT_ENTRIES_SECTORS

GPT_HEADER_FORMAT = "<8sIIIIQQQQ16sQIII"
GPT_ENTRY_FORMAT = "<16s16sQQQ72s"

MBR_PARTITION_OFFSET = 446
MBR_PROTECTIVE_TYPE = 0xEE
MBR_SIGNATURE = b"\x55\xaa"

GPT_TYPE_ALIASES = {
    "efi-system": "C12A7328-F81F-11D2-BA4B-00A0C93EC93B",
    "bios-boot": "21686148-6449-6E6F-744E-656564454649",
    "microsoft-basic-data": "EBD0A0A2-B9E5-4433-87C0-68B6B72699C7",
    "linux-filesystem": "0FC63DAF-8483-4772-8E79-3D69D8477DE4",
    "linux-swap": "0657FD6D-A4AB-43C4-84E5-0933C84B4F4F",
    "linux-root-x86-64": "4F68BCE3-E8CD-4DB1-96E7-FBCAF984B709",
}


def build_table_descriptor(
    plan: ImagePlan,
    *,
    protective_mbr: bool = False,
    disk_identifier: Optional[str] = None,
) -> PartitionTableDescriptor:
    """Build one table record per planned partition, in plan order."""
    records = tuple(
        TableRecord(
            start_sector=planned.extent.start_sector,
            end_sector=planned.extent.end_sector,
            type_tag=planned.spec.table_type_tag,
            name=planned.spec.name,
            identifier=planned.spec.table_identifier,
        )
        for planned in plan.partitions
    )
    for index, record in enumerate(records, start=1):
        log.info(
            f"> Partition {index} {{ name: {record.name}, type: {record.type_tag}, "
            f"start: {record.start_sector}, end: {record.end_sector}, "
            f"GUID: {record.identifier or '-'} }}"
        )
    return PartitionTableDescriptor(
        records=records,
        protective_mbr=protective_mbr,
        disk_identifier=disk_identifier,
        block_size=plan.block_size,
    )


def resolve_type_guid(type_tag: str) -> uuid.UUID:
    """Turn a type tag (GUID string or alias) into a UUID.

    Raises:
        ValueError: If the tag is neither a known alias nor a GUID
    """
    tag = type_tag.strip()
    return uuid.UUID(GPT_TYPE_ALIASES.get(tag.lower(), tag))


def _parse_identifier(value: str, index: Optional[int]) -> uuid.UUID:
    try:
        return uuid.UUID(value)
    except ValueError:
        raise TableWriteError(f"invalid GUID `{value}`", index) from None


def encode_name(name: str) -> bytes:
    encoded = name.encode("utf-16-le")
    if len(encoded) > GPT_NAME_MAX_CHARS * 2:
        raise ValueError(f"name longer than {GPT_NAME_MAX_CHARS} UTF-16 units")
    return encoded


def encode_entry(type_guid: uuid.UUID, unique_guid: uuid.UUID, record: TableRecord) -> bytes:
    """Encode one 128-byte partition entry (ending LBA is inclusive on disk)."""
    return struct.pack(
        GPT_ENTRY_FORMAT,
        type_guid.bytes_le,
        unique_guid.bytes_le,
        record.start_sector,
        record.end_sector - 1,
        0,
        encode_name(record.name),
    )


def encode_header(
    *,
    current_lba: int,
    backup_lba: int,
    first_usable: int,
    last_usable: int,
    disk_guid: uuid.UUID,
    entries_lba: int,
    entries_crc: int,
    block_size: int = SECTOR_SIZE,
) -> bytes:
    """Encode a GPT header sector with its CRC32 filled in."""
    fields = [
        GPT_SIGNATURE,
        GPT_REVISION,
        GPT_HEADER_SIZE,
        0,
        0,
        current_lba,
        backup_lba,
        first_usable,
        last_usable,
        disk_guid.bytes_le,
        entries_lba,
        GPT_ENTRY_COUNT,
        GPT_ENTRY_SIZE,
        entries_crc,
    ]
    header = struct.pack(GPT_HEADER_FORMAT, *fields)
    fields[3] = zlib.crc32(header) & 0xFFFFFFFF
    header = struct.pack(GPT_HEADER_FORMAT, *fields)
    return header.ljust(block_size, b"\x00")


def encode_protective_mbr(total_sectors: int, block_size: int = SECTOR_SIZE) -> bytes:
    """Encode a protective MBR covering the whole disk with one 0xEE entry."""
    mbr = bytearray(block_size)
    entry = struct.pack(
        "<B3sB3sII",
        0x00,
        b"\x00\x02\x00",
        MBR_PROTECTIVE_TYPE,
        b"\xff\xff\xff",
        1,
        min(total_sectors - 1, 0xFFFFFFFF),
    )
    mbr[MBR_PARTITION_OFFSET:MBR_PARTITION_OFFSET + len(entry)] = entry
    mbr[510:512] = MBR_SIGNATURE
    return bytes(mbr)


class GptTableWriter:
    """Persist a table descriptor into an image as a GUID partition table.

    Identifiers missing from the descriptor are drawn from ``guid_factory``;
    pass a deterministic factory for reproducible images.
    """

    def __init__(self, guid_factory: Callable[[], uuid.UUID] = uuid.uuid4):
        self.guid_factory = guid_factory

    def _validate(
        self, descriptor: PartitionTableDescriptor, total_sectors: int
    ) -> list[tuple[TableRecord, uuid.UUID, uuid.UUID]]:
        records = descriptor.records
        if len(records) > GPT_ENTRY_COUNT:
            raise TableWriteError(
                f"{len(records)} partitions exceed the {GPT_ENTRY_COUNT} entry limit"
            )
        last_usable = total_sectors - FIRST_USABLE_LBA
        if last_usable < FIRST_USABLE_LBA:
            raise TableWriteError(f"image of {total_sectors} sectors is too small for a GPT")

        resolved = []
        for index, record in enumerate(records, start=1):
            if record.end_sector <= record.start_sector:
                raise TableWriteError("partition is empty", index)
            if record.start_sector < FIRST_USABLE_LBA:
                raise TableWriteError(
                    f"start sector {record.start_sector} is before first usable "
                    f"sector {FIRST_USABLE_LBA}",
                    index,
                )
            if record.end_sector - 1 > last_usable:
                raise TableWriteError(
                    f"end sector {record.end_sector} is past last usable "
                    f"sector {last_usable}",
                    index,
                )
            for other_index, other in enumerate(records[: index - 1], start=1):
                if (
                    record.start_sector < other.end_sector
                    and other.start_sector < record.end_sector
                ):
                    raise TableWriteError(f"overlaps partition {other_index}", index)
            try:
                type_guid = resolve_type_guid(record.type_tag)
            except ValueError:
                raise TableWriteError(
                    f"unknown partition type `{record.type_tag}`", index
                ) from None
            try:
                encode_name(record.name)
            except ValueError as error:
                raise TableWriteError(str(error), index) from None
            if record.identifier:
                unique_guid = _parse_identifier(record.identifier, index)
            else:
                unique_guid = self.guid_factory()
            resolved.append((record, type_guid, unique_guid))
        return resolved

    def write(self, image: DiskImage, descriptor: PartitionTableDescriptor) -> WrittenTable:
        """Validate then write the table; nothing is written if validation fails.

        Raises:
            TableWriteError: If any record is malformed
        """
        block_size = descriptor.block_size
        total_sectors = image.size_bytes // block_size
        resolved = self._validate(descriptor, total_sectors)
        if descriptor.disk_identifier:
            disk_guid = _parse_identifier(descriptor.disk_identifier, None)
        else:
            disk_guid = self.guid_factory()

        entries = bytearray(GPT_ENTRY_COUNT * GPT_ENTRY_SIZE)
        for slot, (record, type_guid, unique_guid) in enumerate(resolved):
            offset = slot * GPT_ENTRY_SIZE
            entries[offset:offset + GPT_ENTRY_SIZE] = encode_entry(
                type_guid, unique_guid, record
            )
        entries_crc = zlib.crc32(entries) & 0xFFFFFFFF

        last_lba = total_sectors - 1
        backup_entries_lba = last_lba - GPT_ENTRIES_SECTORS
        first_usable = FIRST_USABLE_LBA
        last_usable = backup_entries_lba - 1

        primary = encode_header(
            current_lba=1,
            backup_lba=last_lba,
            first_usable=first_usable,
            last_usable=last_usable,
            disk_guid=disk_guid,
            entries_lba=2,
            entries_crc=entries_crc,
            block_size=block_size,
        )
        backup = encode_header(
            current_lba=last_lba,
            backup_lba=1,
            first_usable=first_usable,
            last_usable=last_usable,
            disk_guid=disk_guid,
            entries_lba=backup_entries_lba,
            entries_crc=entries_crc,
            block_size=block_size,
        )

        if descriptor.protective_mbr:
            image.write_at(0, encode_protective_mbr(total_sectors, block_size))
            log.debug("Wrote protective MBR")
        image.write_at(1 * block_size, primary)
        image.write_at(2 * block_size, bytes(entries))
        image.write_at(backup_entries_lba * block_size, bytes(entries))
        image.write_at(last_lba * block_size, backup)

        written = tuple(
            TableRecord(
                start_sector=record.start_sector,
                end_sector=record.end_sector,
                type_tag=record.type_tag,
                name=record.name,
                identifier=str(unique_guid).upper(),
            )
            for record, _, unique_guid in resolved
        )
        image.register_partitions(written)
        log.debug(f"Wrote GPT with {len(written)} partition(s), disk GUID {disk_guid}")
        return WrittenTable(disk_identifier=str(disk_guid).upper(), records=written)
