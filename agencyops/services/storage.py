"""
Storage Service

Persistence boundary used by the background jobs. Every call opens its own
short-lived session so jobs running concurrently on the event loop never
share one. Infrastructure errors propagate to the caller.

Usage:
    from agencyops.db import engine
    from agencyops.services.storage import Storage

    storage = Storage(engine)
    account = storage.get_email_account_by_user_id(user.id)
    if account and not storage.email_exists(msg_id):
        storage.create_email(message_id=msg_id, user_id=user.id, folder="inbox")
"""

from typing import Any, List, Optional

from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, select

from agencyops.core.logging_config import get_logger
from agencyops.core.typing import col, utc_now
from agencyops.models.email import Email
from agencyops.models.email_account import EmailAccount
from agencyops.models.notification import Notification
from agencyops.models.user import User

logger = get_logger(__name__)


class Storage:
    def __init__(self, engine: Engine):
        self.engine = engine

    # Users

    def get_users(self) -> List[User]:
        with Session(self.engine) as session:
            return list(session.exec(select(User).order_by(col(User.id))).all())

    def get_users_by_roles(self, roles: List[str]) -> List[User]:
        """Active users holding any of `roles`; deactivated accounts get no notices."""
        with Session(self.engine) as session:
            stmt = select(User).where(col(User.role).in_(roles), col(User.is_active).is_(True))
            return list(session.exec(stmt.order_by(col(User.id))).all())

    # Account links

    def get_email_account_by_user_id(self, user_id: int) -> Optional[EmailAccount]:
        with Session(self.engine) as session:
            stmt = (
                select(EmailAccount)
                .where(EmailAccount.user_id == user_id)
                .order_by(col(EmailAccount.is_active).desc(), col(EmailAccount.id).desc())
            )
            return session.exec(stmt).first()

    def update_email_account(self, account_id: int, **fields: Any) -> EmailAccount:
        with Session(self.engine) as session:
            account = session.get(EmailAccount, account_id)
            if account is None:
                raise LookupError(f"Email account {account_id} not found")
            for key, value in fields.items():
                setattr(account, key, value)
            account.updated_at = utc_now()
            session.add(account)
            session.commit()
            session.refresh(account)
            return account

    # Synced mail

    def email_exists(self, message_id: str) -> bool:
        with Session(self.engine) as session:
            stmt = select(Email.id).where(Email.message_id == message_id)
            return session.exec(stmt).first() is not None

    def create_email(self, **fields: Any) -> Optional[Email]:
        """
        Insert a synced message.

        Returns None when another run already inserted the same message_id
        between our existence check and this insert.
        """
        with Session(self.engine) as session:
            email = Email(**fields)
            session.add(email)
            try:
                session.commit()
            except IntegrityError:
                session.rollback()
                logger.info("Email already stored, skipping duplicate", message_id=fields.get("message_id"))
                return None
            session.refresh(email)
            return email

    # Notifications

    def create_notification(self, **fields: Any) -> Notification:
        with Session(self.engine) as session:
            notification = Notification(**fields)
            session.add(notification)
            session.commit()
            session.refresh(notification)
            return notification
