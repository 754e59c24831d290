"""Message templates and the pending-message queue."""

from __future__ import annotations

import enum
from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import Enum, ForeignKey, Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from birthdays.models.base import Base, TimestampMixin

if TYPE_CHECKING:
    from birthdays.models.user import User

BIRTHDAY_TEMPLATE_ID = 1
BIRTHDAY_TEMPLATE_CONTENT = "Hey, {full_name} it's your birthday"


def render_body(content: str, full_name: str) -> str:
    """Fill the ``{full_name}`` placeholder of a template body."""
    return content.replace("{full_name}", full_name)


class MessageStatus(str, enum.Enum):
    """Lifecycle status of a pending message.

    A delivered message is deleted rather than flagged, so there is no
    terminal value here.
    """

    PENDING = "pending"
    IN_FLIGHT = "in_flight"


class MessageTemplate(Base):
    """Message body with a ``{full_name}`` placeholder."""

    __tablename__ = "message_templates"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(50), unique=True)
    content: Mapped[str] = mapped_column(Text)

    def render(self, full_name: str) -> str:
        return render_body(self.content, full_name)

    def __repr__(self) -> str:
        return f"<MessageTemplate {self.name}>"


class PendingMessage(Base, TimestampMixin):
    """A one-shot message waiting for (or undergoing) delivery.

    At most one row exists per (user, template). The row is removed once
    delivery succeeds and reverts to PENDING when delivery fails.
    """

    __tablename__ = "pending_messages"
    __table_args__ = (
        UniqueConstraint("user_id", "template_id", name="uq_pending_user_template"),
        Index("ix_pending_messages_status_dispatch_at", "status", "dispatch_at"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("users.id", ondelete="CASCADE"), index=True
    )
    template_id: Mapped[int] = mapped_column(Integer, ForeignKey("message_templates.id"))
    dispatch_at: Mapped[datetime] = mapped_column()  # naive UTC
    status: Mapped[MessageStatus] = mapped_column(
        Enum(
            MessageStatus,
            values_callable=lambda e: [x.value for x in e],
            name="messagestatus",
            native_enum=False,
            length=20,
        ),
        default=MessageStatus.PENDING,
    )
    claimed_at: Mapped[datetime | None] = mapped_column(default=None)

    # Relationships
    user: Mapped[User] = relationship(back_populates="pending_messages", lazy="selectin")
    template: Mapped[MessageTemplate] = relationship(lazy="selectin")

    def __repr__(self) -> str:
        return f"<PendingMessage user={self.user_id} at={self.dispatch_at} {self.status.value}>"
