from __future__ import annotations

import os
import sys
import time
import uuid
from contextlib import contextmanager
from pathlib import Path
from typing import TYPE_CHECKING, Iterable

if TYPE_CHECKING:
    from loguru import Logger

from loguru import logger

DEFAULT_LOG_DIR = Path(
    os.environ.get(
        "MKIMG_LOG_DIR",
        Path.home() / ".local" / "state" / "mkimg" / "logs",
    )
)


def _should_log_copy(record) -> bool:
    """Filter per-file copy logs - only show in TRACE mode."""
    tags = record["extra"].get("tags", [])

    if "copy" in tags:
        return record["level"].no <= logger.level("TRACE").no or (
            record["level"].no >= logger.level("WARNING").no
        )

    return True


def setup_logging(
    *,
    debug: bool = False,
    trace: bool = False,
    log_dir: Path | None = None,
) -> Logger:
    """
    Setup console logging plus optional file sinks.

    Logging Tiers:
    - ERROR: Aborted builds and their cause
    - SUCCESS/INFO: Build steps, partition layout, boot sector
    - DEBUG: External command execution, per-partition details
    - TRACE: Every directory and file copied into a volume

    Log Files (only when log_dir is given):
    - build.log: INFO+ events, or DEBUG+ with --debug (7 day retention)
    - structured.jsonl: Structured JSON logs for analysis (7 day retention)

    Args:
        debug: Enable DEBUG level logging
        trace: Enable TRACE level logging (very verbose)
        log_dir: Directory for file sinks; console only when None
    """
    logger.remove()
    logger.configure(extra={"job_id": "-", "tags": [], "source": "mkimg"})

    if trace:
        console_level = "TRACE"
    elif debug:
        console_level = "DEBUG"
    else:
        console_level = "INFO"

    # SINK 1: Console (stderr) - User-facing, filtered
    logger.add(
        sys.stderr,
        level=console_level,
        backtrace=False,
        diagnose=False,
        filter=_should_log_copy if not trace else None,
        colorize=True,
        format=(
            "<green>{time:HH:mm:ss}</green> | "
            "<level>{level: <8}</level> | "
            "<cyan>{extra[source]: <8}</cyan> | "
            "<blue>{extra[job_id]: <14}</blue> | "
            "{message}"
        ),
    )

    if log_dir is None:
        return logger

    log_dir.mkdir(parents=True, exist_ok=True)

    # SINK 2: Build Log
    logger.add(
        log_dir / "build.log",
        level="DEBUG" if (debug or trace) else "INFO",
        rotation="5 MB",
        retention="7 days",
        compression="zip",
        backtrace=debug or trace,
        diagnose=False,
        format=(
            "{time:YYYY-MM-DD HH:mm:ss.SSS} | "
            "{level: <8} | "
            "{extra[source]: <8} | "
            "{extra[job_id]: <14} | "
            "{message}"
        ),
    )

    # SINK 3: Structured JSON Log - For analysis tools (INFO+)
    logger.add(
        log_dir / "structured.jsonl",
        level="INFO",
        rotation="10 MB",
        retention="7 days",
        compression="zip",
        serialize=True,
        format="{message}",
    )

    return logger


def get_logger(
    *,
    job_id: str | None = None,
    tags: Iterable[str] | None = None,
    source: str | None = None,
) -> Logger:
    """
    Get a logger with bound context.

    Args:
        job_id: Job identifier for tracking operations
        tags: Tags for filtering (e.g., ["volume", "copy"])
        source: Source component (e.g., "layout", "table", "volume")

    Returns:
        Logger with bound context
    """
    extras: dict[str, object] = {}
    if job_id is not None:
        extras["job_id"] = job_id
    if tags is not None:
        extras["tags"] = list(tags)
    if source is not None:
        extras["source"] = source
    return logger.bind(**extras)


@contextmanager
def operation_context(operation: str, **details):
    """
    Context manager for tracking an operation with automatic timing.

    Logs operation start, completion, and failure with duration tracking.

    Args:
        operation: Operation name (e.g., "build")
        **details: Operation-specific details to log

    Yields:
        Logger bound with job_id and operation context

    Example:
        with operation_context("build", output="disk.img") as log:
            log.debug("Writing partition table")
    """
    job_id = f"{operation}-{uuid.uuid4().hex[:8]}"

    with logger.contextualize(job_id=job_id, operation=operation, **details):
        start_time = time.time()
        log = get_logger(job_id=job_id, tags=[operation], source=operation)

        log.info(f"{operation.capitalize()} started", **details)

        try:
            yield log
            duration = time.time() - start_time
            log.success(
                f"{operation.capitalize()} completed", duration_seconds=round(duration, 2)
            )
        except Exception as e:
            duration = time.time() - start_time
            log.error(
                f"{operation.capitalize()} failed",
                error=str(e),
                error_type=type(e).__name__,
                duration_seconds=round(duration, 2),
            )
            raise


class LoggerFactory:
    """
    Factory for creating domain-specific loggers with automatic context.

    Each factory method returns a logger pre-configured with appropriate
    source and tags for the engine component.
    """

    @staticmethod
    def for_layout() -> Logger:
        """Logger for geometry and layout computation."""
        return logger.bind(source="layout", tags=["layout"])

    @staticmethod
    def for_table() -> Logger:
        """Logger for partition table construction and writing."""
        return logger.bind(source="table", tags=["table", "gpt"])

    @staticmethod
    def for_image() -> Logger:
        """Logger for image file creation and raw writes."""
        return logger.bind(source="image", tags=["image", "storage"])

    @staticmethod
    def for_volume(partition_index: int | None = None) -> Logger:
        """Logger for volume formatting and population."""
        return logger.bind(
            source="volume", tags=["volume"], partition=partition_index
        )

    @staticmethod
    def for_copy(partition_index: int | None = None) -> Logger:
        """Logger for per-entry copy events (TRACE noise)."""
        return logger.bind(
            source="volume", tags=["volume", "copy"], partition=partition_index
        )

    @staticmethod
    def for_system() -> Logger:
        """Logger for startup, configuration and CLI handling."""
        return logger.bind(source="system", tags=["system"])
