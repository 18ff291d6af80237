"""Shared helpers used across farfield modules.

Provides:
  - farfield_dir(): resolve the config directory from FARFIELD_DIR.
  - task_done_callback(): log unhandled exceptions from background asyncio tasks.
  - resolve_git_commit(): short HEAD hash reported in the runtime state.
"""

import asyncio
import os
import subprocess
from pathlib import Path

import structlog

logger = structlog.get_logger()

FARFIELD_DIR_ENV = "FARFIELD_DIR"


def farfield_dir() -> Path:
    """Resolve config directory from FARFIELD_DIR env var or default ~/.farfield."""
    raw = os.environ.get(FARFIELD_DIR_ENV, "")
    return Path(raw) if raw else Path.home() / ".farfield"


def task_done_callback(task: asyncio.Task[None]) -> None:
    """Log unhandled exceptions from background asyncio tasks.

    Attach to any fire-and-forget task via ``task.add_done_callback(task_done_callback)``.
    Suppresses CancelledError (normal shutdown).
    """
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        logger.error("Background task %s failed", task.get_name(), exc_info=exc)


def resolve_git_commit(cwd: Path | None = None) -> str | None:
    """Short commit hash of the checkout at ``cwd``, or None outside git."""
    try:
        result = subprocess.run(
            ["git", "rev-parse", "--short", "HEAD"],
            cwd=cwd,
            capture_output=True,
            text=True,
            timeout=5,
            check=True,
        )
    except (OSError, subprocess.SubprocessError):
        return None
    return result.stdout.strip() or None
