from birthdays.models.base import Base
from birthdays.models.message import MessageStatus, MessageTemplate, PendingMessage
from birthdays.models.user import User

__all__ = [
    "Base",
    "User",
    "MessageStatus",
    "MessageTemplate",
    "PendingMessage",
]
