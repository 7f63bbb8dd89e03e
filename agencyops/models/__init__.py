from .user import User, UserRole
from .email_account import EmailAccount
from .email import Email
from .notification import Notification, NotificationType
from .creator_visit import CreatorVisit, VisitStatus

__all__ = [
    "User",
    "UserRole",
    "EmailAccount",
    "Email",
    "Notification",
    "NotificationType",
    "CreatorVisit",
    "VisitStatus",
]
