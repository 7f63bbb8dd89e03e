"""
structlog setup shared by the API process, the scheduler worker and scripts.

Production (ENVIRONMENT=production) renders one JSON object per line so the
log shipper can index job_id/run_id; everywhere else logs go to a console
renderer. Background runs bind job_id and run_id through
structlog.contextvars (see core/context.py), and merge_contextvars puts them
on every line emitted while the run is active.

    logger = get_logger(__name__)
    logger.info("Synced new emails", user_id=7, synced_count=12)
"""

import logging
import sys
from typing import Any

import structlog

from agencyops.core.config import settings

IS_PRODUCTION = settings.ENVIRONMENT == "production"
IS_TEST = "pytest" in sys.modules

# Libraries that log every request or tick at INFO
NOISY_LOGGERS = ("httpx", "httpcore", "apscheduler", "asyncio", "sqlalchemy.engine")


def configure_logging(level: str = settings.LOG_LEVEL) -> None:
    log_level = logging.getLevelName(level.upper())
    if not isinstance(log_level, int):
        log_level = logging.INFO

    processors: list[Any] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.StackInfoRenderer(),
        structlog.dev.set_exc_info,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
    ]
    if IS_PRODUCTION:
        processors += [structlog.processors.format_exc_info, structlog.processors.JSONRenderer()]
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=not IS_TEST))

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )

    # stdlib loggers (uvicorn, sentry, libraries) share stdout
    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=log_level)
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)


configure_logging()
