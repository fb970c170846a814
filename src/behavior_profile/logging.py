"""Structured logging for the behavior profile engine.

Every module logs through ``get_logger(__name__)`` with snake_case event
names and keyword fields. :func:`setup_logging` routes structlog through
the standard library so console and rotating-file handlers share one
processor chain.
"""

import logging
import sys
from collections.abc import Iterator
from contextlib import contextmanager
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any

import structlog

from behavior_profile.config import Settings, get_settings

# Chatty transport loggers kept at WARNING
QUIET_LOGGERS = ("httpx", "httpcore")


def _renderer(json_output: bool) -> logging.Formatter:
    final = (
        structlog.processors.JSONRenderer()
        if json_output
        else structlog.dev.ConsoleRenderer(colors=True)
    )
    return structlog.stdlib.ProcessorFormatter(
        processors=[structlog.stdlib.ProcessorFormatter.remove_processors_meta, final],
    )


def _file_handler(settings: Settings, level: int) -> logging.Handler | None:
    """Rotating JSON file handler, or None when the log directory is unusable."""
    try:
        Path(settings.log_directory).mkdir(parents=True, exist_ok=True)
        handler = RotatingFileHandler(
            filename=settings.log_file_path,
            maxBytes=settings.log_file_max_bytes,
            backupCount=settings.log_file_backup_count,
            encoding="utf-8",
        )
    except OSError as e:
        print(f"Warning: file logging disabled: {e}", file=sys.stderr)
        return None
    handler.setLevel(level)
    handler.setFormatter(_renderer(json_output=True))
    return handler


def setup_logging(settings: Settings | None = None) -> None:
    """Configure structlog and the root logger from settings.

    The console renders colored output in development and JSON
    otherwise. A rotating JSON file is added when ``log_to_file`` is set.
    """
    settings = settings or get_settings()
    level = logging.getLevelName(settings.log_level.upper())
    if not isinstance(level, int):
        level = logging.INFO

    console = logging.StreamHandler(sys.stdout)
    console.setLevel(level)
    console.setFormatter(_renderer(json_output=not settings.is_development))
    handlers: list[logging.Handler] = [console]

    if settings.log_to_file:
        file_handler = _file_handler(settings, level)
        if file_handler is not None:
            handlers.append(file_handler)

    root = logging.getLogger()
    root.handlers = handlers
    root.setLevel(level)

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.StackInfoRenderer(),
            structlog.dev.set_exc_info,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


@contextmanager
def bound_context(**fields: Any) -> Iterator[None]:
    """Attach fields such as ``session_id`` to every log line in the block."""
    with structlog.contextvars.bound_contextvars(**fields):
        yield


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """Get a logger instance."""
    return structlog.get_logger(name)  # type: ignore[no-any-return]
