"""
Overdue upload detection for creator visits.

A visit breaches its SLA when it is completed, the creator's upload has not
arrived and upload_due_at has passed. Each run flags a bounded batch of such
visits as overdue and notifies the internal roles that chase creators.
Already-flagged visits are never picked up again, so repeated runs only
notify about new breaches.
"""

from functools import cached_property
from typing import List, Sequence

from sqlalchemy import inspect
from sqlalchemy.engine import Engine
from sqlmodel import Session, select

from agencyops.core.config import settings
from agencyops.core.errors import error_boundary
from agencyops.core.logging_config import get_logger
from agencyops.core.typing import col, utc_now
from agencyops.models.creator_visit import CreatorVisit, VisitStatus
from agencyops.models.notification import NotificationType
from agencyops.models.user import UserRole
from agencyops.services.storage import Storage

logger = get_logger(__name__)

DEFAULT_NOTIFY_ROLES = (
    UserRole.ADMIN.value,
    UserRole.MANAGER.value,
    UserRole.CREATOR_MANAGER.value,
)


class VisitSlaChecker:
    def __init__(
        self,
        engine: Engine,
        storage: Storage,
        batch_size: int = settings.VISIT_SLA_BATCH_SIZE,
        notify_roles: Sequence[str] = DEFAULT_NOTIFY_ROLES,
    ):
        self.engine = engine
        self.storage = storage
        self.batch_size = batch_size
        self.notify_roles = list(notify_roles)

    @cached_property
    def table_available(self) -> bool:
        """Whether creator_visits exists. Checked once per checker."""
        table = CreatorVisit.__tablename__
        try:
            exists = inspect(self.engine).has_table(table)
        except Exception as e:
            logger.warning("Visits automation disabled: unable to check table existence", table=table, error=str(e))
            return False
        if not exists:
            logger.warning(
                "Visits automation disabled: table missing. Run migrations or restart after schema is applied.",
                table=table,
            )
        return exists

    def _flag_overdue(self) -> List[int]:
        """Flag one batch of breached visits in a single transaction and return their ids."""
        now = utc_now()
        with Session(self.engine) as session:
            stmt = (
                select(CreatorVisit)
                .where(
                    CreatorVisit.status == VisitStatus.COMPLETED.value,
                    col(CreatorVisit.upload_received).is_(False),
                    col(CreatorVisit.upload_overdue).is_(False),
                    col(CreatorVisit.upload_due_at).is_not(None),
                    col(CreatorVisit.upload_due_at) <= now,
                )
                .order_by(col(CreatorVisit.upload_due_at))
                .limit(self.batch_size)
                .with_for_update(skip_locked=True)
            )
            visits = session.exec(stmt).all()
            if not visits:
                return []

            for visit in visits:
                visit.upload_overdue = True
                session.add(visit)
            session.commit()
            return [visit.id for visit in visits if visit.id is not None]

    def _notify(self, visit_ids: List[int]) -> int:
        recipients = self.storage.get_users_by_roles(self.notify_roles)
        sent = 0
        for visit_id in visit_ids:
            for user in recipients:
                self.storage.create_notification(
                    user_id=user.id,
                    type=NotificationType.WARNING.value,
                    title="Upload Overdue",
                    message=f"A visit upload is overdue (visit {visit_id}).",
                    category="operations",
                    action_url=f"/visits/{visit_id}",
                    is_read=False,
                )
                sent += 1
        return sent

    def mark_overdue_uploads_and_notify(self) -> int:
        """Run one SLA pass. Returns the number of visits flagged; never raises."""
        with error_boundary("visit_sla_check"):
            if not self.table_available:
                return 0

            visit_ids = self._flag_overdue()
            if not visit_ids:
                logger.info("No overdue visit uploads")
                return 0

            sent = self._notify(visit_ids)
            logger.info("Flagged overdue visit uploads", visits=len(visit_ids), notifications=sent)
            return len(visit_ids)
        return 0

    async def run(self) -> int:
        """Coroutine entry point for the scheduler."""
        return self.mark_overdue_uploads_and_notify()
