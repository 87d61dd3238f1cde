"""FAT volume creation inside a disk image using mtools.

The filesystem builder formats a partition of an existing image in place and
hands back a ``Volume`` that supports the two operations the content
populator needs: create a directory, and create-or-overwrite a file.

mtools addresses a filesystem inside a larger file with the ``image@@offset``
syntax, so no loop devices or root privileges are needed.

Operations:
    - MtoolsFilesystemBuilder.create_filesystem(): mformat the partition
    - MtoolsVolume.mkdir(): mmd, errors on existing entries
    - MtoolsVolume.write_file(): mcopy -o -m from a temporary file

Directory semantics:
    ``mkdir`` raises DirectoryExistsError when the directory already exists,
    whether it was created earlier in this run or mmd reports it. Callers
    that want idempotent creation catch that one error.

Reproducibility:
    The volume serial is taken from the partition's unique GUID, copied files
    keep their source modification time, and every mtools call runs with
    ``SOURCE_DATE_EPOCH`` set so directory entries get a fixed timestamp.
"""

from __future__ import annotations

import os
import posixpath
import tempfile
import uuid
from pathlib import Path
from typing import Callable, Optional, Sequence

from mkimg.domain import VolumeFormat
from mkimg.logging import LoggerFactory

from .commands import CommandFailedError, resolve_tool, run_checked_command
from .exceptions import DirectoryExistsError, VolumeWriteError
from .image import DiskImage


FAT_LABEL_MAX_CHARS = 11
# 1980-01-01T00:00:00Z, the earliest timestamp FAT can store
FAT_EPOCH = 315532800
MTOOLS_ENV = {"MTOOLS_SKIP_CHECK": "1"}

CommandRunner = Callable[..., str]


def normalize_volume_path(path: str) -> str:
    """Root ``path`` at ``/`` and collapse ``.``/``..``/duplicate slashes."""
    normalized = posixpath.normpath("/" + str(path).replace("\\", "/").lstrip("/"))
    return normalized


def fat_volume_label(name: str) -> str:
    """FAT labels are at most 11 characters."""
    return name.strip()[:FAT_LABEL_MAX_CHARS] or "NO NAME"


def fat_volume_serial(identifier: Optional[str]) -> Optional[str]:
    """First 32 bits of a partition GUID as an mformat ``-N`` serial."""
    if not identifier:
        return None
    return uuid.UUID(identifier).hex[:8].upper()


def mtools_env(source_date_epoch: Optional[int] = None) -> dict[str, str]:
    env = dict(MTOOLS_ENV)
    epoch = FAT_EPOCH if source_date_epoch is None else source_date_epoch
    env["SOURCE_DATE_EPOCH"] = str(epoch)
    return env


class Volume:
    """A formatted, writable filesystem inside one partition."""

    def mkdir(self, path: str) -> None:
        raise NotImplementedError

    def write_file(self, path: str, data: bytes, mtime: Optional[float] = None) -> None:
        raise NotImplementedError


class FilesystemBuilder:
    """Formats a partition and returns a writable volume."""

    def create_filesystem(
        self,
        image: DiskImage,
        partition_index: int,
        volume_format: VolumeFormat,
        label: str,
    ) -> Volume:
        raise NotImplementedError


class MtoolsVolume(Volume):
    def __init__(
        self,
        image: DiskImage,
        offset: int,
        *,
        tools: dict[str, str],
        runner: CommandRunner = run_checked_command,
        partition_index: Optional[int] = None,
        env: Optional[dict[str, str]] = None,
    ):
        self.image = image
        self.offset = offset
        self.tools = tools
        self.runner = runner
        self.env = env if env is not None else mtools_env()
        self._directories = {"/"}
        self.log = LoggerFactory.for_volume(partition_index)

    @property
    def target(self) -> str:
        return f"{self.image.path}@@{self.offset}"

    def _run(self, command: Sequence[str], path: str, operation: str) -> str:
        self.image.flush()
        try:
            return self.runner(list(command), env=self.env)
        except CommandFailedError as error:
            if operation == "mkdir" and "exist" in error.message.lower():
                raise DirectoryExistsError(path) from error
            raise VolumeWriteError(path, operation, error.message) from error
        except OSError as error:
            raise VolumeWriteError(path, operation, str(error)) from error

    def mkdir(self, path: str) -> None:
        path = normalize_volume_path(path)
        if path in self._directories:
            raise DirectoryExistsError(path)
        self._run([self.tools["mmd"], "-i", self.target, f"::{path}"], path, "mkdir")
        self._directories.add(path)
        self.log.trace(f"Created directory {path}")

    def _stage(self, path: str, data: bytes, mtime: Optional[float]) -> str:
        staging_path = None
        try:
            with tempfile.NamedTemporaryFile(prefix="mkimg-", delete=False) as staging:
                staging_path = staging.name
                staging.write(data)
            if mtime is not None:
                os.utime(staging_path, (mtime, mtime))
        except OSError as error:
            if staging_path is not None:
                Path(staging_path).unlink(missing_ok=True)
            raise VolumeWriteError(path, "write", f"cannot stage file: {error}") from error
        return staging_path

    def write_file(self, path: str, data: bytes, mtime: Optional[float] = None) -> None:
        path = normalize_volume_path(path)
        if path in self._directories:
            raise VolumeWriteError(path, "write", "a directory exists at this path")
        staging_path = self._stage(path, data, mtime)
        try:
            self._run(
                [
                    self.tools["mcopy"],
                    "-o",
                    "-m",
                    "-i",
                    self.target,
                    staging_path,
                    f"::{path}",
                ],
                path,
                "write",
            )
        finally:
            os.unlink(staging_path)
        self.log.trace(f"Wrote {len(data)} bytes to {path}")


class MtoolsFilesystemBuilder(FilesystemBuilder):
    """Create FAT32 volumes with ``mformat``."""

    REQUIRED_TOOLS = ("mformat", "mmd", "mcopy")

    def __init__(
        self,
        mtools_dir: Optional[Path] = None,
        runner: CommandRunner = run_checked_command,
        source_date_epoch: Optional[int] = None,
    ):
        self.mtools_dir = mtools_dir
        self.runner = runner
        self.source_date_epoch = source_date_epoch

    def _resolve_tools(self) -> dict[str, str]:
        tools: dict[str, str] = {}
        for name in self.REQUIRED_TOOLS:
            path = resolve_tool(name, self.mtools_dir)
            if not path:
                raise VolumeWriteError("::/", "format", f"{name} not found (install mtools)")
            tools[name] = path
        return tools

    def create_filesystem(
        self,
        image: DiskImage,
        partition_index: int,
        volume_format: VolumeFormat,
        label: str,
    ) -> MtoolsVolume:
        """Format partition ``partition_index`` and return its volume.

        Raises:
            VolumeWriteError: Unsupported format, missing mtools, or mformat failure
        """
        if volume_format is not VolumeFormat.FAT32:
            raise VolumeWriteError("::/", "format", f"unsupported format {volume_format}")
        tools = self._resolve_tools()
        extent = image.partition_extent(partition_index)
        offset = extent.byte_offset(image.block_size)
        volume = MtoolsVolume(
            image,
            offset,
            tools=tools,
            runner=self.runner,
            partition_index=partition_index,
            env=mtools_env(self.source_date_epoch),
        )
        volume_label = fat_volume_label(label)
        serial = fat_volume_serial(image.partition_identifier(partition_index))
        volume.log.debug(
            f"Formatting partition {partition_index} as {volume_format.value} "
            f"({extent.size_in_sectors} sectors, label {volume_label!r}, serial {serial})"
        )
        command = [
            tools["mformat"],
            "-i",
            volume.target,
            "-F",
            "-v",
            volume_label,
        ]
        if serial:
            command += ["-N", serial]
        command += [
            "-T",
            str(extent.size_in_sectors),
            "-h",
            "64",
            "-s",
            "32",
            "-H",
            str(extent.start_sector),
            "::",
        ]
        volume._run(command, "::/", "format")
        return volume
