"""
Type and time helpers for SQLModel code.

SQLModel fields are declared with Python types (e.g., `status: str`) but at the
class level they're actually InstrumentedAttribute descriptors with SQLAlchemy
column methods like .in_(), .is_(), .desc(). Type checkers see them as plain
Python types; col() bridges that gap.
"""

from typing import TYPE_CHECKING, Optional, TypeVar
from datetime import datetime, timezone

if TYPE_CHECKING:
    from sqlalchemy.orm.attributes import InstrumentedAttribute

T = TypeVar("T")


def col(attr: T) -> "InstrumentedAttribute[T]":
    """
    Type helper for SQLAlchemy column operations in queries.

    At runtime this is a no-op - it just returns the input unchanged.

    Usage:
        select(CreatorVisit).where(col(CreatorVisit.id).in_(ids))
    """
    return attr  # type: ignore[return-value]


def utc_now() -> datetime:
    """
    Get current UTC time (timezone-aware).

    Use as default_factory in SQLModel fields.
    """
    return datetime.now(timezone.utc)


def ensure_utc(value: Optional[datetime]) -> Optional[datetime]:
    """
    Treat naive datetimes as UTC.

    Databases without timezone support (SQLite, `timestamp` columns) hand back
    naive values; comparing those with utc_now() would raise TypeError.
    """
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value
