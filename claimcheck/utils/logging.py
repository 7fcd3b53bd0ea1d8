"""
Structured logging for ClaimCheck.

Log lines are JSON objects (console rendering in development). Every line
emitted while a job runs carries the job's ``job_id`` and current ``step``
through structlog contextvars, so concurrent jobs interleave in one stream
and can still be separated afterwards.
"""

import logging
import sys
from datetime import datetime
from pathlib import Path
from typing import Any

import structlog
from structlog.types import Processor

from claimcheck.utils.config import get_project_root, get_settings

# Third-party loggers that log every request at INFO
_NOISY_LOGGERS = ("httpx", "httpcore")


def configure_logging(
    log_level: str | None = None,
    log_file: str | Path | None = None,
    json_format: bool = True,
) -> None:
    """Configure structlog on top of stdlib logging.

    Args:
        log_level: DEBUG, INFO, WARNING or ERROR. Defaults to general.log_level.
        log_file: Log file path. Defaults to a dated file under general.logs_dir.
        json_format: JSON lines (True) or coloured console output (False).
    """
    general = get_settings().general
    log_level = (log_level or general.log_level).upper()

    if log_file is None:
        log_dir = get_project_root() / general.logs_dir
        log_dir.mkdir(parents=True, exist_ok=True)
        log_file = log_dir / f"claimcheck_{datetime.now().strftime('%Y%m%d')}.log"

    logging.basicConfig(
        format="%(message)s",
        level=getattr(logging, log_level, logging.INFO),
        handlers=[
            logging.StreamHandler(sys.stderr),
            logging.FileHandler(log_file, encoding="utf-8"),
        ],
    )
    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.stdlib.add_log_level,
        structlog.processors.StackInfoRenderer(),
    ]
    if json_format:
        processors += [
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(ensure_ascii=False),
        ]
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=True))

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    """Module logger, usually ``get_logger(__name__)``."""
    return structlog.get_logger(name)


def bind_context(**kwargs: Any) -> None:
    """Add key-value context to every later log line of the current task."""
    structlog.contextvars.bind_contextvars(**kwargs)


class LogContext:
    """Scoped logging context.

    On exit the keys get back the values they had on entry, so a nested
    context (or a ``bind_context(step=...)`` inside the block) never leaks
    out and never wipes the enclosing job's context.

    Example:
        with LogContext(job_id="job_123", step="queued"):
            logger.info("Job started")  # carries job_id and step
    """

    def __init__(self, **kwargs: Any):
        self.context = kwargs
        self._tokens: dict[str, Any] = {}

    def __enter__(self) -> "LogContext":
        self._tokens = dict(structlog.contextvars.bind_contextvars(**self.context))
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        structlog.contextvars.reset_contextvars(**self._tokens)
        self._tokens = {}
