"""Structured logging configuration for deltasync.

Events are emitted through structlog with snake_case names and routed to
stdlib handlers via ``ProcessorFormatter``.  Two optional files live under
the log directory, both rotating at 10 MB with 5 backups:

- ``deltasync.log``: human-readable, every event from every module.
- ``sync.log``: JSON lines, only events from ``deltasync.sync.*``.  This is
  the protocol trail: ``sync_init`` / ``sync_delta`` per call (debug, or
  ``*_failed`` at warning with the error reason), ``sync_request_retry``
  per backoff, ``sync_pull_complete`` / ``sync_pull_failed`` /
  ``sync_pull_cancelled`` per multi-page pull and ``sync_session_errored``
  when a session gives up.

Continuation tokens are never logged.  The CLI binds ``run_id`` as a
context variable during a pull, so every line of one run can be grepped
together.  An optional stderr handler renders the human format for
interactive use.
"""

from __future__ import annotations

import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path

import structlog

_MAX_BYTES = 10 * 1024 * 1024  # 10 MB
_BACKUP_COUNT = 5
_SYNC_LOGGER = "deltasync.sync"

_shared_processors: list[structlog.types.Processor] = [
    structlog.contextvars.merge_contextvars,
    structlog.stdlib.add_logger_name,
    structlog.stdlib.add_log_level,
    structlog.stdlib.ExtraAdder(),
    structlog.processors.TimeStamper(fmt="iso"),
    structlog.processors.StackInfoRenderer(),
    structlog.processors.UnicodeDecoder(),
]


def _rotating_handler(path: Path, formatter: logging.Formatter) -> RotatingFileHandler:
    handler = RotatingFileHandler(
        path,
        maxBytes=_MAX_BYTES,
        backupCount=_BACKUP_COUNT,
        encoding="utf-8",
    )
    handler.setFormatter(formatter)
    return handler


def setup_logging(
    log_level: str = "info",
    log_dir: Path | None = None,
    *,
    console: bool = False,
) -> None:
    """Configure structlog and stdlib logging.

    Parameters
    ----------
    log_level:
        Python log-level name (``debug``, ``info``, ``warning``, etc.).
    log_dir:
        Directory for log files.  When *None* no file handlers are created.
    console:
        Also render events to stderr.
    """
    level = getattr(logging, log_level.upper(), logging.INFO)

    structlog.configure(
        processors=[
            *_shared_processors,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    human_formatter = structlog.stdlib.ProcessorFormatter(
        processor=structlog.dev.ConsoleRenderer(colors=False),
        foreign_pre_chain=_shared_processors,
    )
    json_formatter = structlog.stdlib.ProcessorFormatter(
        processor=structlog.processors.JSONRenderer(),
        foreign_pre_chain=_shared_processors,
    )

    root = logging.getLogger()
    root.setLevel(level)
    root.handlers.clear()

    if log_dir is not None:
        log_dir.mkdir(parents=True, exist_ok=True)
        root.addHandler(_rotating_handler(log_dir / "deltasync.log", human_formatter))

        sync_handler = _rotating_handler(log_dir / "sync.log", json_formatter)
        sync_handler.addFilter(logging.Filter(_SYNC_LOGGER))
        root.addHandler(sync_handler)

    if console:
        stream_handler = logging.StreamHandler(sys.stderr)
        stream_handler.setFormatter(human_formatter)
        root.addHandler(stream_handler)

    for name in ("httpx", "httpcore"):
        logging.getLogger(name).setLevel(max(level, logging.WARNING))
