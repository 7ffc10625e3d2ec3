"""Structured logging configuration using structlog.

Job bodies and the enrichment worker run on their own threads, so every
entry carries the thread name; job threads additionally carry ``job_id`` and
``job_type`` through :func:`bound_job_context`.
"""

from __future__ import annotations

import logging
import sys
from contextlib import contextmanager
from typing import Iterator, Optional

import structlog
from structlog.processors import CallsiteParameter, CallsiteParameterAdder

_QUIET_LOGGERS = ("httpcore", "httpx", "urllib3", "sqlalchemy.engine", "uvicorn.access")


def _pre_chain() -> list[structlog.types.Processor]:
    return [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        CallsiteParameterAdder([CallsiteParameter.THREAD_NAME]),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]


def _formatter(renderer: structlog.types.Processor) -> structlog.stdlib.ProcessorFormatter:
    return structlog.stdlib.ProcessorFormatter(processor=renderer, foreign_pre_chain=_pre_chain())


def setup_logging(level: str = "INFO", log_file: Optional[str] = None) -> None:
    """Configure structlog and stdlib logging for the server process.

    Args:
        level: Log level name (DEBUG, INFO, WARNING, ERROR, CRITICAL).
        log_file: Optional path that additionally receives one JSON object per entry.
    """
    log_level = getattr(logging, level.upper(), logging.INFO)

    structlog.configure(
        processors=[*_pre_chain(), structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    handlers: list[logging.Handler] = []
    console = logging.StreamHandler(sys.stdout)
    console.setFormatter(_formatter(structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty())))
    handlers.append(console)

    if log_file:
        json_file = logging.FileHandler(log_file, encoding="utf-8")
        json_file.setFormatter(_formatter(structlog.processors.JSONRenderer()))
        handlers.append(json_file)

    root = logging.getLogger()
    root.handlers.clear()
    for handler in handlers:
        handler.setLevel(log_level)
        root.addHandler(handler)
    root.setLevel(log_level)

    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


@contextmanager
def bound_job_context(job_id: str, job_type: str) -> Iterator[None]:
    """Attach the job id and type to every log line emitted in this context."""
    with structlog.contextvars.bound_contextvars(job_id=job_id, job_type=job_type):
        yield
