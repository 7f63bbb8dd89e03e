from enum import Enum
from typing import Optional
from sqlmodel import Field, SQLModel
from sqlalchemy import Index
from datetime import datetime

from agencyops.core.typing import utc_now


class NotificationType(str, Enum):
    INFO = "info"
    SUCCESS = "success"
    WARNING = "warning"
    ERROR = "error"


class Notification(SQLModel, table=True):
    """In-app notification shown in a user's notification center."""

    __tablename__ = "notifications"
    __table_args__ = (
        Index("ix_notifications_user_read", "user_id", "is_read"),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: int = Field(foreign_key="users.id", index=True)
    title: str
    message: str
    type: str = Field(default=NotificationType.INFO.value)
    category: str = Field(default="general")  # task, payment, deadline, operations, general
    action_url: Optional[str] = Field(default=None, nullable=True)
    is_read: bool = Field(default=False)
    created_at: datetime = Field(default_factory=utc_now)
