"""
Error reporting for background jobs and the API process.

Everything reported here is logged through structlog first; when a Sentry DSN
is configured it is also sent to Sentry, tagged with the job_id/run_id of the
background run that produced it.

    capture_exception(exc, context={"user_id": 7})
    capture_message("Email account deactivated", level="warning", context={...})

    # Job top level: never let an error escape into the scheduler
    with error_boundary("visit_sla_check") as handler:
        checker.mark_overdue_uploads_and_notify()
    if handler.error:
        ...
"""

from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Dict, Iterator, List, Optional
import logging
import os

import sentry_sdk
from sentry_sdk.integrations.fastapi import FastApiIntegration
from sentry_sdk.integrations.logging import LoggingIntegration
from sentry_sdk.integrations.sqlalchemy import SqlalchemyIntegration

from agencyops.core.context import get_context_dict, get_job_id, get_run_id
from agencyops.core.logging_config import get_logger

logger = get_logger(__name__)

_sentry_initialized: bool = False


def init_sentry(
    dsn: str,
    environment: str = "production",
    traces_sample_rate: float = 0.1,
    release: Optional[str] = None,
) -> bool:
    """
    Initialize the Sentry SDK. Returns False (and reports nothing) without a DSN.

    release defaults to GIT_COMMIT_SHA from the deploy environment.
    """
    global _sentry_initialized

    if not dsn:
        logger.info("Sentry disabled (no DSN provided)")
        return False

    release = release or os.environ.get("GIT_COMMIT_SHA")
    try:
        sentry_sdk.init(
            dsn=dsn,
            environment=environment,
            traces_sample_rate=traces_sample_rate,
            release=release,
            integrations=[
                FastApiIntegration(transaction_style="endpoint"),
                SqlalchemyIntegration(),
                # Errors are captured explicitly; log records only become breadcrumbs
                LoggingIntegration(level=logging.INFO, event_level=None),
            ],
            ignore_errors=[KeyboardInterrupt, SystemExit],
            before_send=_before_send,
        )
    except Exception as e:
        logger.error("Failed to initialize Sentry", error=str(e))
        return False

    _sentry_initialized = True
    logger.info("Sentry initialized", environment=environment, release=release)
    return True


def _before_send(event: Dict[str, Any], hint: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    """Tag events with the background run that produced them."""
    tags = event.setdefault("tags", {})
    job_id = get_job_id()
    if job_id:
        tags["job_id"] = job_id
    run_id = get_run_id()
    if run_id:
        tags["run_id"] = run_id
    return event


def is_sentry_enabled() -> bool:
    return _sentry_initialized


def _enrich(context: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    return {
        **get_context_dict(),
        "timestamp": datetime.now(timezone.utc).isoformat(),
        **(context or {}),
    }


def _send(
    send,
    extras: Dict[str, Any],
    level: str,
    tags: Optional[Dict[str, str]],
    fingerprint: Optional[List[str]] = None,
) -> Optional[str]:
    """Run one sentry_sdk capture call inside an isolated scope."""
    if not _sentry_initialized:
        return None
    try:
        with sentry_sdk.new_scope() as scope:
            for key, value in extras.items():
                if value is not None:
                    scope.set_extra(key, value)
            for key, value in (tags or {}).items():
                scope.set_tag(key, value)
            if fingerprint:
                scope.fingerprint = fingerprint
            scope.set_level(level)
            return send()
    except Exception as e:
        logger.warning("Failed to send event to Sentry", error=str(e))
        return None


def capture_exception(
    exc: BaseException,
    context: Optional[Dict[str, Any]] = None,
    level: str = "error",
    fingerprint: Optional[List[str]] = None,
    tags: Optional[Dict[str, str]] = None,
) -> Optional[str]:
    """Log an exception and report it to Sentry. Returns the Sentry event id, if sent."""
    extras = _enrich({"error_type": type(exc).__name__, **(context or {})})
    logger.error("Exception captured", exc_info=exc, **extras)
    return _send(lambda: sentry_sdk.capture_exception(exc), extras, level, tags, fingerprint)


def capture_message(
    message: str,
    level: str = "info",
    context: Optional[Dict[str, Any]] = None,
    tags: Optional[Dict[str, str]] = None,
) -> Optional[str]:
    """
    Log and report a non-exception event.

    Used for circuit breaker transitions and for mailbox links that were
    deactivated and need the user to sign in again.
    """
    extras = _enrich(context)
    log = getattr(logger, level, logger.info)
    log(message, **extras)
    return _send(lambda: sentry_sdk.capture_message(message, level=level), extras, level, tags)


class ErrorHandler:
    """
    Context manager that captures an Exception raised inside it.

    The error is suppressed unless reraise=True and is kept on .error so the
    caller can branch on it afterwards. Cancellation and other BaseExceptions
    always propagate.
    """

    def __init__(
        self,
        operation: str,
        context: Optional[Dict[str, Any]] = None,
        capture: bool = True,
        reraise: bool = False,
        fingerprint: Optional[List[str]] = None,
    ):
        self.operation = operation
        self.context = context or {}
        self.capture = capture
        self.reraise = reraise
        self.fingerprint = fingerprint or [operation]
        self.event_id: Optional[str] = None
        self.error: Optional[Exception] = None

    def __enter__(self) -> "ErrorHandler":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> bool:
        if not isinstance(exc_val, Exception):
            return False

        self.error = exc_val
        if self.capture:
            self.event_id = capture_exception(
                exc_val,
                context={"operation": self.operation, **self.context},
                fingerprint=self.fingerprint + [type(exc_val).__name__],
            )
        else:
            logger.error(
                "Operation failed",
                operation=self.operation,
                error=str(exc_val),
                error_type=type(exc_val).__name__,
                **self.context,
            )
        return not self.reraise


@contextmanager
def error_boundary(operation: str, **context) -> Iterator[ErrorHandler]:
    """Capture and suppress any Exception raised inside the block."""
    handler = ErrorHandler(operation, context=context)
    with handler:
        yield handler
