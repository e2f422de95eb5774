"""Shared logging configuration helpers for the depot analysis service."""

from __future__ import annotations

import logging
import os
import threading
from pathlib import Path

DEFAULT_FORMAT = (
    "%(asctime)s | %(levelname)s | %(threadName)s | %(name)s:%(lineno)d "
    "| task=%(task_id)s | %(message)s"
)
NO_TASK = "-"
LEVEL_ENV_VAR = "DEPOT_LOG_LEVEL"
FILE_ENV_VAR = "DEPOT_LOG_FILE"
FORMAT_ENV_VAR = "DEPOT_LOG_FORMAT"
DEFAULT_LOG_FILE = "depot_analysis.log"
_task_context = threading.local()


def set_task_context(task_id: str | None) -> None:
    """Tag log records emitted by the current thread with ``task_id``."""
    _task_context.task_id = task_id


def current_task_id() -> str:
    return getattr(_task_context, "task_id", None) or NO_TASK


class TaskContextFilter(logging.Filter):
    """Attach the calling thread's task id to every record as ``task_id``."""

    def filter(self, record: logging.LogRecord) -> bool:
        if not hasattr(record, "task_id"):
            record.task_id = current_task_id()
        return True


def _resolve_level(level: int | str | None) -> int:
    """Map ``level`` (or ``$DEPOT_LOG_LEVEL``) to a logging level, INFO if unknown."""
    if isinstance(level, int):
        return level
    name = (level or os.getenv(LEVEL_ENV_VAR) or "INFO").upper()
    resolved = logging.getLevelName(name)
    return resolved if isinstance(resolved, int) else logging.INFO


def _build_handlers(
    log_file: str | os.PathLike[str] | None, console: bool
) -> list[logging.Handler]:
    handlers: list[logging.Handler] = []
    if console:
        handlers.append(logging.StreamHandler())

    if log_file is None:
        log_file = os.getenv(FILE_ENV_VAR, DEFAULT_LOG_FILE)
    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_path, mode="a", encoding="utf-8"))

    # Handler-level so records from every logger carry task_id.
    for handler in handlers:
        handler.addFilter(TaskContextFilter())
    return handlers


def configure_logging(
    level: int | str | None = None,
    *,
    log_file: str | os.PathLike[str] | None = None,
    console: bool = True,
) -> None:
    """Replace the root logging setup for a depot entry point.

    ``log_file`` defaults to ``$DEPOT_LOG_FILE`` or ``depot_analysis.log``;
    pass ``""`` to log to the console only. At least one of console or file
    logging must be enabled.
    """
    handlers = _build_handlers(log_file, console)
    if not handlers:
        raise ValueError("configure_logging requires at least one handler")

    logging.basicConfig(
        level=_resolve_level(level),
        format=os.getenv(FORMAT_ENV_VAR, DEFAULT_FORMAT),
        handlers=handlers,
        force=True,
    )


__all__ = [
    "TaskContextFilter",
    "configure_logging",
    "current_task_id",
    "set_task_context",
]
