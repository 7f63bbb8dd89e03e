"""
Process wiring: builds the long-lived collaborators once and hands them out.

Used by the API lifespan and by the standalone scripts so every entry point
runs the jobs against the same kind of object graph.
"""

from dataclasses import dataclass

from agencyops.core.circuit_breaker import set_notification_callback
from agencyops.core.config import settings
from agencyops.core.errors import capture_message, init_sentry
from agencyops.core.scheduler import SchedulerHandle, build_scheduler
from agencyops.db import engine
from agencyops.services.microsoft_graph import MicrosoftGraphClient
from agencyops.services.storage import Storage
from agencyops.services.visits_automation import VisitSlaChecker


@dataclass
class Services:
    storage: Storage
    graph: MicrosoftGraphClient
    checker: VisitSlaChecker
    scheduler: SchedulerHandle

    async def aclose(self) -> None:
        self.scheduler.shutdown()
        await self.graph.aclose()


def report_circuit_state_change(name: str, old_state: str, new_state: str) -> None:
    capture_message(
        f"Circuit breaker {name}: {old_state} -> {new_state}",
        level="warning" if new_state == "open" else "info",
        context={"circuit": name, "old_state": old_state, "new_state": new_state},
        tags={"circuit": name},
    )


def build_services() -> Services:
    init_sentry(
        settings.SENTRY_DSN,
        environment=settings.ENVIRONMENT,
        traces_sample_rate=settings.SENTRY_TRACES_SAMPLE_RATE,
    )
    set_notification_callback(report_circuit_state_change)

    storage = Storage(engine)
    graph = MicrosoftGraphClient()
    checker = VisitSlaChecker(engine, storage)
    return Services(
        storage=storage,
        graph=graph,
        checker=checker,
        scheduler=build_scheduler(storage, graph, checker),
    )
