"""Fixed-size disk image file.

``DiskImage`` is the byte sink the rest of the engine writes into: it is
created at its final size up front, accepts absolute-offset writes, and
streams partition contents once the partition table has registered the
extents.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import BinaryIO, Iterable, Optional

from mkimg.domain import SECTOR_SIZE, Extent, TableRecord
from mkimg.logging import LoggerFactory

from .exceptions import FatalError


log = LoggerFactory.for_image()

DEFAULT_CHUNK_SIZE = 1024 * 1024


class DiskImage:
    """Seekable image file of fixed, pre-declared size."""

    def __init__(self, path: Path, handle: BinaryIO, size_bytes: int, block_size: int = SECTOR_SIZE):
        self.path = Path(path)
        self.size_bytes = size_bytes
        self.block_size = block_size
        self._handle = handle
        self._partitions: dict[int, Extent] = {}
        self._identifiers: dict[int, Optional[str]] = {}

    @classmethod
    def create(cls, path: Path, size_bytes: int, block_size: int = SECTOR_SIZE) -> DiskImage:
        """Remove any existing file at ``path`` and create a zeroed image.

        Raises:
            FatalError: If the old file cannot be removed or the new one created
        """
        path = Path(path)
        if size_bytes <= 0 or size_bytes % block_size:
            raise FatalError(
                f"Image size {size_bytes} is not a positive multiple of {block_size}"
            )
        try:
            os.remove(path)
            log.debug(f"Removed existing image {path}")
        except FileNotFoundError:
            pass
        except OSError as error:
            raise FatalError(f"Failed to remove existing image {path}: {error}", error) from error
        try:
            handle = open(path, "w+b")
            handle.truncate(size_bytes)
        except OSError as error:
            raise FatalError(f"Failed to create image {path}: {error}", error) from error
        log.info(f"Creating image {path} ({size_bytes} bytes)")
        return cls(path, handle, size_bytes, block_size)

    def __enter__(self) -> DiskImage:
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    @property
    def closed(self) -> bool:
        return self._handle.closed

    @property
    def total_sectors(self) -> int:
        return self.size_bytes // self.block_size

    def close(self) -> None:
        if not self._handle.closed:
            self._handle.flush()
            self._handle.close()

    def flush(self) -> None:
        """Push buffered writes to the file so external tools see them."""
        try:
            self._handle.flush()
            os.fsync(self._handle.fileno())
        except OSError as error:
            raise FatalError(f"Failed to flush {self.path}: {error}", error) from error

    def write_at(self, offset: int, data: bytes) -> int:
        """Write ``data`` at an absolute byte offset."""
        if offset < 0 or offset + len(data) > self.size_bytes:
            raise FatalError(
                f"Write of {len(data)} bytes at offset {offset} falls outside "
                f"image of {self.size_bytes} bytes"
            )
        try:
            self._handle.seek(offset)
            written = self._handle.write(data)
        except OSError as error:
            raise FatalError(
                f"Failed to write {len(data)} bytes at offset {offset} of {self.path}: {error}",
                error,
            ) from error
        if written != len(data):
            raise FatalError(f"Short write at offset {offset}: {written}/{len(data)} bytes")
        return written

    def read_at(self, offset: int, length: int) -> bytes:
        self._handle.flush()
        self._handle.seek(offset)
        return self._handle.read(length)

    def register_partitions(self, records: Iterable[TableRecord]) -> None:
        """Record partition extents written to the table, numbered from 1."""
        records = list(records)
        self._partitions = {
            index: Extent(record.start_sector, record.end_sector)
            for index, record in enumerate(records, start=1)
        }
        self._identifiers = {
            index: record.identifier for index, record in enumerate(records, start=1)
        }

    def partition_extent(self, index: int) -> Extent:
        try:
            return self._partitions[index]
        except KeyError:
            raise FatalError(f"Partition {index} is not in the partition table") from None

    def partition_identifier(self, index: int) -> Optional[str]:
        """Unique GUID the table writer recorded for partition ``index``."""
        self.partition_extent(index)
        return self._identifiers.get(index)

    def write_partition_contents(
        self,
        index: int,
        stream: BinaryIO,
        chunk_size: Optional[int] = None,
    ) -> int:
        """Stream ``stream`` into partition ``index`` (1-based).

        Returns:
            Number of bytes written

        Raises:
            FatalError: If the stream holds more bytes than the partition
        """
        extent = self.partition_extent(index)
        offset = extent.byte_offset(self.block_size)
        limit = extent.byte_length(self.block_size)
        chunk_size = chunk_size or DEFAULT_CHUNK_SIZE
        written = 0
        while True:
            chunk = stream.read(chunk_size)
            if not chunk:
                break
            if written + len(chunk) > limit:
                raise FatalError(
                    f"Content for partition {index} exceeds its {limit} byte extent"
                )
            self.write_at(offset + written, chunk)
            written += len(chunk)
        log.debug(f"Wrote {written} bytes into partition {index} at offset {offset}")
        return written
