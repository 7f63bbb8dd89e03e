from enum import Enum
from typing import Optional
from sqlmodel import Field, SQLModel
from datetime import datetime

from agencyops.core.typing import utc_now


class UserRole(str, Enum):
    ADMIN = "admin"
    MANAGER = "manager"
    STAFF = "staff"
    SALES_AGENT = "sales_agent"
    CREATOR_MANAGER = "creator_manager"
    CREATOR = "creator"
    STAFF_CONTENT_CREATOR = "staff_content_creator"  # Internal creator for client documents/content
    CLIENT = "client"
    PROSPECTIVE_CLIENT = "prospective_client"


class User(SQLModel, table=True):
    __tablename__ = "users"

    id: Optional[int] = Field(default=None, primary_key=True)
    email: str = Field(unique=True, index=True)
    name: Optional[str] = Field(default=None, nullable=True)
    role: str = Field(default=UserRole.STAFF.value, index=True)
    is_active: bool = Field(default=True)
    created_at: datetime = Field(default_factory=utc_now)
