"""structlog configuration shared by the CLI and the services."""

from __future__ import annotations

import logging
import sys
from pathlib import Path

import structlog

_QUIET_LOGGERS = ("aiosqlite", "asyncio")

# Run for structlog and plain stdlib records alike, so ids bound with
# log_context appear on every line regardless of which logger emitted it.
_SHARED_PROCESSORS: list[structlog.types.Processor] = [
    structlog.contextvars.merge_contextvars,
    structlog.stdlib.add_logger_name,
    structlog.stdlib.add_log_level,
    structlog.stdlib.PositionalArgumentsFormatter(),
    structlog.processors.TimeStamper(fmt="iso", utc=True),
    structlog.processors.StackInfoRenderer(),
    structlog.processors.UnicodeDecoder(),
]


def _renderer(fmt: str) -> structlog.types.Processor:
    if fmt == "console":
        return structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty())
    if fmt != "json":
        raise ValueError(f"Unknown log format {fmt!r}; expected 'json' or 'console'")
    return structlog.processors.JSONRenderer(sort_keys=True)


def _handlers(log_file: str) -> list[logging.Handler]:
    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stdout)]
    if log_file:
        path = Path(log_file)
        path.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(path, encoding="utf-8"))
    return handlers


def setup_logging(level: str = "INFO", fmt: str = "json", log_file: str = "") -> None:
    """Route all logging through structlog.

    Args:
        level: Root level name. Unknown names fall back to INFO with a warning.
        fmt: "json" for machine-readable lines, "console" for a terminal.
        log_file: Also append to this file (parent directories are created).
    """
    log_level = logging.getLevelName(level.upper())
    known_level = isinstance(log_level, int)

    structlog.configure(
        processors=[*_SHARED_PROCESSORS, structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )
    formatter = structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=_SHARED_PROCESSORS,
        processors=[structlog.stdlib.ProcessorFormatter.remove_processors_meta, _renderer(fmt)],
    )

    root = logging.getLogger()
    root.handlers.clear()
    for handler in _handlers(log_file):
        handler.setFormatter(formatter)
        root.addHandler(handler)
    root.setLevel(log_level if known_level else logging.INFO)

    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
    if not known_level:
        logging.getLogger(__name__).warning("Unknown log level %r, using INFO", level)
