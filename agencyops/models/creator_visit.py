"""
Creator field visits.

After a visit is completed the creator owes an upload of the captured content
by upload_due_at. The SLA check flips upload_overdue once that deadline passes
without upload_received, and never flips it back.
"""

from enum import Enum
from typing import Optional
from sqlmodel import Field, SQLModel, Column
from sqlalchemy import Index, Text
from datetime import datetime

from agencyops.core.typing import utc_now


class VisitStatus(str, Enum):
    SCHEDULED = "scheduled"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    NO_SHOW = "no_show"


class CreatorVisit(SQLModel, table=True):
    __tablename__ = "creator_visits"
    __table_args__ = (
        Index("ix_creator_visits_overdue_scan", "status", "upload_received", "upload_overdue"),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    client_id: str = Field(index=True)
    creator_id: str = Field(index=True)
    scheduled_start: datetime
    scheduled_end: datetime
    status: str = Field(default=VisitStatus.SCHEDULED.value)
    completed_at: Optional[datetime] = Field(default=None, nullable=True)

    upload_received: bool = Field(default=False)
    upload_timestamp: Optional[datetime] = Field(default=None, nullable=True)
    upload_due_at: Optional[datetime] = Field(default=None, nullable=True)
    upload_overdue: bool = Field(default=False)

    notes: Optional[str] = Field(default=None, sa_column=Column(Text))
    created_at: datetime = Field(default_factory=utc_now)
