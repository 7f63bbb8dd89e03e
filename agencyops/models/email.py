"""
Mail messages pulled from a linked mailbox.

message_id is the provider's id and is unique: the sync checks it before
inserting and the constraint rejects any duplicate that slips past the check.
"""

from typing import List, Optional
from sqlmodel import Field, SQLModel, Column, JSON
from sqlalchemy import Index, Text
from datetime import datetime

from agencyops.core.typing import utc_now


class Email(SQLModel, table=True):
    __tablename__ = "emails"
    __table_args__ = (
        Index("ix_emails_user_folder", "user_id", "folder"),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    message_id: str = Field(unique=True, index=True)  # External id from the provider
    user_id: Optional[int] = Field(default=None, foreign_key="users.id", index=True)

    from_address: str = Field(default="")
    from_name: str = Field(default="")
    to: List[str] = Field(default_factory=list, sa_column=Column(JSON, nullable=False, default=[]))
    cc: Optional[List[str]] = Field(default=None, sa_column=Column(JSON))
    bcc: Optional[List[str]] = Field(default=None, sa_column=Column(JSON))

    subject: str = Field(default="(No Subject)")
    body: str = Field(default="", sa_column=Column(Text, nullable=False, default=""))
    body_preview: Optional[str] = Field(default=None, nullable=True)
    folder: str = Field(default="inbox")  # inbox, sent, spam, trash, archive

    is_read: bool = Field(default=False)
    is_important: bool = Field(default=False)
    has_attachments: bool = Field(default=False)

    received_at: datetime = Field(default_factory=utc_now, index=True)
    sent_at: Optional[datetime] = Field(default=None, nullable=True)
    created_at: datetime = Field(default_factory=utc_now)
