"""Boot sector injection.

The boot sector payload is written over the first bytes of the image, inside
the MBR boot code area. It must be written after the partition table, which
would otherwise overwrite it with the protective MBR.
"""

from __future__ import annotations

from pathlib import Path
from typing import Union

from mkimg.logging import LoggerFactory

from .exceptions import MAX_BOOTSECTOR_SIZE, BootsectorTooLargeError, SourceNotFoundError
from .image import DiskImage


log = LoggerFactory.for_image()


def read_bootsector(path: Union[str, Path]) -> bytes:
    """Read and size-check a boot sector payload.

    Raises:
        SourceNotFoundError: If the payload cannot be read
        BootsectorTooLargeError: If it is larger than 440 bytes
    """
    path = Path(path)
    try:
        payload = path.read_bytes()
    except OSError as error:
        raise SourceNotFoundError(str(path), error.strerror or str(error)) from error
    validate_bootsector(payload)
    return payload


def validate_bootsector(payload: bytes) -> None:
    if len(payload) > MAX_BOOTSECTOR_SIZE:
        raise BootsectorTooLargeError(len(payload))


def write_bootsector(image: DiskImage, payload: bytes) -> int:
    """Write the payload at absolute offset 0 of the image."""
    validate_bootsector(payload)
    written = image.write_at(0, payload)
    log.info(f"> Bootsector {{ size: {written} }}")
    return written
