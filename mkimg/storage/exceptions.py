"""Custom exceptions for image build operations.

This module defines a hierarchy of exceptions for the image assembly engine so
the CLI can tell user-facing failures apart from unexpected low-level ones.

Exception Hierarchy:
    ImageBuildError (base)
        ├── ValidationError
        ├── SourceNotFoundError
        ├── SourceReadError
        ├── SizeError
        ├── TableWriteError
        ├── VolumeWriteError
        │   └── DirectoryExistsError
        └── BootsectorTooLargeError
    FatalError

Usage:
    from mkimg.storage.exceptions import BootsectorTooLargeError

    if len(payload) > MAX_BOOTSECTOR_SIZE:
        raise BootsectorTooLargeError(len(payload))
"""

from __future__ import annotations

from typing import Optional

MAX_BOOTSECTOR_SIZE = 440


class ImageBuildError(Exception):
    """Base exception for all recoverable image build failures."""



class ValidationError(ImageBuildError):
    """A partition definition is malformed or incomplete."""

    def __init__(self, reason: str, spec_index: Optional[int] = None):
        self.reason = reason
        self.spec_index = spec_index
        if spec_index is None:
            super().__init__(f"Invalid partition spec: {reason}")
        else:
            super().__init__(f"Invalid partition spec #{spec_index}: {reason}")


class SourceNotFoundError(ImageBuildError):
    """A declared source path does not exist or cannot be opened."""

    def __init__(self, path: str, reason: str = ""):
        self.path = str(path)
        self.reason = reason
        msg = f"Source not found: {self.path}"
        if reason:
            msg += f" ({reason})"
        super().__init__(msg)


class SourceReadError(ImageBuildError):
    """A source exists but could not be read in full."""

    def __init__(self, path: str, reason: str):
        self.path = str(path)
        self.reason = reason
        super().__init__(f"Failed to read {self.path}: {reason}")


class SizeError(ImageBuildError):
    """A partition size is missing or not positive."""

    def __init__(self, spec_index: int, size: Optional[int]):
        self.spec_index = spec_index
        self.size = size
        super().__init__(
            f"Partition #{spec_index} has no usable size (got {size!r} bytes)"
        )


class TableWriteError(ImageBuildError):
    """The partition table writer rejected the record set."""

    def __init__(self, reason: str, record_index: Optional[int] = None):
        self.reason = reason
        self.record_index = record_index
        if record_index is None:
            super().__init__(f"Failed to write partition table: {reason}")
        else:
            super().__init__(
                f"Failed to write partition table (partition {record_index}): {reason}"
            )


class VolumeWriteError(ImageBuildError):
    """The filesystem builder rejected a directory or file operation."""

    def __init__(self, path: str, operation: str, reason: str = ""):
        self.path = path
        self.operation = operation
        self.reason = reason
        msg = f"Volume {operation} failed for {path}"
        if reason:
            msg += f": {reason}"
        super().__init__(msg)


class DirectoryExistsError(VolumeWriteError):
    """Directory creation hit an existing entry of the same name."""

    def __init__(self, path: str):
        super().__init__(path, "mkdir", "entry already exists")


class BootsectorTooLargeError(ImageBuildError):
    """Boot sector payload does not fit in the MBR boot code area."""

    def __init__(self, size: int, limit: int = MAX_BOOTSECTOR_SIZE):
        self.size = size
        self.limit = limit
        super().__init__(
            f"Bootsector exceeds maximum size of {limit} bytes ({size} bytes)"
        )


class FatalError(Exception):
    """Unexpected low-level failure that is never recovered locally."""

    def __init__(self, message: str, cause: Optional[BaseException] = None):
        self.cause = cause
        super().__init__(message)
