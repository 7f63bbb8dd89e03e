"""
OAuth link between an internal user and their external mailbox.

Created when the user completes the Microsoft sign-in flow; the background
sync refreshes the tokens and flips is_active off when the link can no
longer be used without the user signing in again.
"""

from typing import Optional
from sqlmodel import Field, SQLModel
from datetime import datetime

from agencyops.core.typing import utc_now


class EmailAccount(SQLModel, table=True):
    __tablename__ = "email_accounts"

    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: int = Field(foreign_key="users.id", index=True)
    email: str
    provider: str = Field(default="microsoft")  # "microsoft", "google"

    access_token: Optional[str] = Field(default=None, nullable=True)
    refresh_token: Optional[str] = Field(default=None, nullable=True)
    token_expires_at: Optional[datetime] = Field(default=None, nullable=True)

    is_active: bool = Field(default=True)
    last_synced_at: Optional[datetime] = Field(default=None, nullable=True)
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)
