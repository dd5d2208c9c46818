import logging
import sys
from typing import Optional

import structlog

from crosstool.core.settings import settings


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)


def configure_logging(level: Optional[str] = None, json_logs: Optional[bool] = None):
    """Configure structured logging on stderr.

    stdout is left alone: the server prints its startup signal there and the
    supervisor's launcher reads it line by line.
    """
    log_level = (level or settings.LOG_LEVEL or "INFO").upper()
    if json_logs is None:
        json_logs = bool(settings.LOG_JSON)

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stderr,
        level=getattr(logging, log_level, logging.INFO),
    )

    processors = [
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]

    if json_logs:
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=False))

    structlog.configure(
        processors=processors,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )
