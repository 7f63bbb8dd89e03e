"""
Job context management for background-run correlation.

Every scheduled or manual run gets a run_id so all log lines and error
reports emitted while it executes can be grouped together. Uses contextvars
for async-safe propagation and mirrors the values into structlog's
contextvars so they show up on every log event.

Usage:
    with job_context("email_sync"):
        await sync_all_users_emails(storage, graph)

    # Anywhere below, read-only
    capture_exception(exc, context={"run_id": get_run_id()})
"""

from contextlib import contextmanager
from contextvars import ContextVar
from typing import Iterator, Optional
import uuid

import structlog

__all__ = [
    "generate_run_id",
    "get_job_id",
    "get_run_id",
    "job_context",
    "get_context_dict",
]

_job_id: ContextVar[Optional[str]] = ContextVar("job_id", default=None)
_run_id: ContextVar[Optional[str]] = ContextVar("run_id", default=None)


def generate_run_id() -> str:
    """
    Generate a new run ID.

    Format: run_{16 hex chars}
    """
    return f"run_{uuid.uuid4().hex[:16]}"


def get_job_id() -> Optional[str]:
    """Get the job ID for the current async context."""
    return _job_id.get()


def get_run_id() -> Optional[str]:
    """Get the run ID for the current async context."""
    return _run_id.get()


@contextmanager
def job_context(job_id: str, run_id: Optional[str] = None) -> Iterator[str]:
    """Bind job_id/run_id for the duration of one job run and yield the run_id."""
    run_id = run_id or generate_run_id()
    job_token = _job_id.set(job_id)
    run_token = _run_id.set(run_id)
    try:
        with structlog.contextvars.bound_contextvars(job_id=job_id, run_id=run_id):
            yield run_id
    finally:
        _run_id.reset(run_token)
        _job_id.reset(job_token)


def get_context_dict() -> dict:
    """
    Get all context variables as dict.

    Useful for enriching error reports.
    """
    return {
        "job_id": get_job_id(),
        "run_id": get_run_id(),
    }
