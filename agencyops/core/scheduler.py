"""
Recurring background jobs.

A SchedulerHandle owns one AsyncIOScheduler and the jobs registered on it.
Build it once when the process is wired up, start it from the app lifespan
(or the dedicated worker script) and shut it down at process exit:

    handle = build_scheduler(storage, graph, checker)
    handle.start()
    ...
    handle.shutdown()

Each job fires on a cron expression in a fixed timezone, plus once shortly
after start so the first pass doesn't wait for the next cron slot. Firings do
not wait for each other; job bodies must be idempotent. Every job callable is
wrapped by guarded_job, so an exception inside a run is logged and reported
and the scheduler keeps ticking.
"""

import functools
import time
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional
from zoneinfo import ZoneInfo

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.schedulers.base import STATE_STOPPED
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.date import DateTrigger

from agencyops.core.config import settings
from agencyops.core.context import job_context
from agencyops.core.errors import error_boundary
from agencyops.core.logging_config import get_logger
from agencyops.services.email_sync import MailProvider, sync_all_users_emails
from agencyops.services.storage import Storage
from agencyops.services.visits_automation import VisitSlaChecker

logger = get_logger(__name__)

JobFunc = Callable[[], Awaitable[Any]]


@dataclass(frozen=True)
class RecurringJob:
    job_id: str
    func: JobFunc
    cron: str  # standard 5-field crontab
    initial_delay: Optional[float] = 60.0  # seconds; None disables the first run
    misfire_grace_time: int = 600


def guarded_job(job_id: str, func: JobFunc) -> JobFunc:
    """Wrap a job so nothing it raises ever reaches the scheduler."""

    @functools.wraps(func)
    async def run() -> Any:
        with job_context(job_id) as run_id:
            started = time.monotonic()
            logger.info("Job started", job=job_id)
            with error_boundary(f"job:{job_id}", run_id=run_id) as handler:
                result = await func()
            elapsed = time.monotonic() - started
            if handler.error is not None:
                logger.error("Job failed", job=job_id, duration_seconds=round(elapsed, 2))
                return None
            logger.info("Job finished", job=job_id, duration_seconds=round(elapsed, 2))
            return result

    return run


class SchedulerHandle:
    """
    Stopped -> Scheduled -> Stopped lifecycle over a set of recurring jobs.

    The underlying AsyncIOScheduler is started once and keeps running for the
    life of the handle; start() and stop() only add and remove this handle's
    jobs. AsyncIOScheduler.shutdown() is deferred to the event loop, so it is
    only called from shutdown() when the process is going away.
    """

    def __init__(
        self,
        jobs: Iterable[RecurringJob],
        timezone: str = settings.SCHEDULER_TIMEZONE,
        max_instances: int = settings.SCHEDULER_MAX_INSTANCES,
        scheduler: Optional[AsyncIOScheduler] = None,
    ):
        self.jobs: Dict[str, RecurringJob] = {job.job_id: job for job in jobs}
        self.timezone = ZoneInfo(timezone)
        self.max_instances = max_instances
        self.scheduler = scheduler or AsyncIOScheduler(timezone=self.timezone)
        self._job_ids: List[str] = []

    @property
    def running(self) -> bool:
        return bool(self._job_ids) and self.scheduler.running

    def start(self) -> None:
        """Register all jobs and start ticking. Restarts cleanly if already running."""
        if self._job_ids:
            self.stop()

        for job in self.jobs.values():
            runner = guarded_job(job.job_id, job.func)

            self.scheduler.add_job(
                runner,
                CronTrigger.from_crontab(job.cron, timezone=self.timezone),
                id=job.job_id,
                max_instances=self.max_instances,
                misfire_grace_time=job.misfire_grace_time,
                coalesce=True,
                replace_existing=True,
            )
            self._job_ids.append(job.job_id)

            if job.initial_delay is not None:
                # One-shot first run so the first pass doesn't race server startup
                initial_id = f"{job.job_id}_initial"
                self.scheduler.add_job(
                    runner,
                    DateTrigger(
                        run_date=datetime.now(self.timezone) + timedelta(seconds=job.initial_delay),
                        timezone=self.timezone,
                    ),
                    id=initial_id,
                    misfire_grace_time=job.misfire_grace_time,
                    replace_existing=True,
                )
                self._job_ids.append(initial_id)

        if self.scheduler.state == STATE_STOPPED:
            self.scheduler.start()
        logger.info("Scheduler started", timezone=str(self.timezone))
        for job in self.jobs.values():
            logger.info(
                f"  - {job.job_id}: '{job.cron}', first run in {job.initial_delay}s",
                job=job.job_id,
            )

    def stop(self) -> None:
        """Cancel every registered trigger. Safe to call when not running."""
        if not self._job_ids:
            return

        for job_id in self._job_ids:
            if self.scheduler.get_job(job_id) is not None:
                self.scheduler.remove_job(job_id)
        self._job_ids = []
        logger.info("Scheduler stopped")

    def shutdown(self) -> None:
        """Stop the jobs and the underlying scheduler. Call once, at process exit."""
        self.stop()
        if self.scheduler.state != STATE_STOPPED:
            self.scheduler.shutdown(wait=False)

    async def run_now(self, job_id: str) -> Any:
        """Run a job immediately, outside its schedule, with the same guards."""
        job = self.jobs.get(job_id)
        if job is None:
            raise KeyError(f"Unknown job: {job_id}")
        return await guarded_job(job_id, job.func)()


def build_scheduler(storage: Storage, graph: MailProvider, checker: VisitSlaChecker) -> SchedulerHandle:
    """Wire the email sync and visit SLA jobs from settings."""

    async def email_sync() -> Any:
        return await sync_all_users_emails(storage, graph)

    return SchedulerHandle(
        jobs=[
            RecurringJob(
                job_id="email_sync",
                func=email_sync,
                cron=settings.EMAIL_SYNC_CRON,
                initial_delay=settings.SCHEDULER_INITIAL_DELAY_SECONDS,
                misfire_grace_time=900,  # 15 minutes
            ),
            RecurringJob(
                job_id="visit_sla_check",
                func=checker.run,
                cron=settings.VISIT_SLA_CRON,
                initial_delay=settings.SCHEDULER_INITIAL_DELAY_SECONDS,
                misfire_grace_time=1800,  # 30 minutes
            ),
        ],
        timezone=settings.SCHEDULER_TIMEZONE,
    )
