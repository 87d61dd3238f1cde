"""Command execution helpers for external image tools."""

from __future__ import annotations

import os
import shutil
import subprocess
from pathlib import Path
from typing import Mapping, Optional, Sequence

from mkimg.logging import LoggerFactory


log = LoggerFactory.for_system()


class CommandFailedError(RuntimeError):
    """An external command exited with a non-zero status."""

    def __init__(self, command: Sequence[str], returncode: int, message: str):
        self.command = list(command)
        self.returncode = returncode
        self.message = message
        super().__init__(f"Command failed ({' '.join(self.command)}): {message}")


def run_checked_command(
    command: Sequence[str],
    input_text: Optional[str] = None,
    env: Optional[Mapping[str, str]] = None,
) -> str:
    """Run a command and raise CommandFailedError if it fails."""
    log.debug(f"Running command: {' '.join(command)}")
    merged_env = None
    if env:
        merged_env = dict(os.environ)
        merged_env.update(env)
    result = subprocess.run(
        list(command),
        input=input_text,
        text=True,
        capture_output=True,
        env=merged_env,
    )
    if result.returncode != 0:
        stderr = result.stderr.strip()
        stdout = result.stdout.strip()
        message = stderr or stdout or "Command failed"
        raise CommandFailedError(command, result.returncode, message)
    return result.stdout


def resolve_tool(name: str, search_dir: Optional[Path] = None) -> Optional[str]:
    """Find an executable in ``search_dir`` first, then on PATH."""
    if search_dir is not None:
        candidate = Path(search_dir) / name
        if candidate.is_file() and os.access(candidate, os.X_OK):
            return str(candidate)
    return shutil.which(name)
