"""Value objects passed between the store, the planner and the delivery engine."""

from datetime import date, datetime

from pydantic import BaseModel, ConfigDict


class BirthdayCandidate(BaseModel):
    """A user whose birthday occurrence falls inside a scan window."""

    model_config = ConfigDict(frozen=True)

    user_id: int
    birth_date: date  # occurrence in the scanned range, not the year of birth
    timezone: str


class ScheduledMessage(BaseModel):
    """A planner decision: send template to user at dispatch_at (naive UTC)."""

    model_config = ConfigDict(frozen=True)

    user_id: int
    template_id: int
    dispatch_at: datetime


class ClaimedMessage(BaseModel):
    """Everything the delivery engine needs, joined at claim time."""

    model_config = ConfigDict(frozen=True)

    message_id: int
    user_id: int
    recipient_address: str
    rendered_body: str


class DeliveryOutcome(BaseModel):
    """Per-item result reported by the delivery engine."""

    message_id: int
    success: bool
    attempts: int
    error: str | None = None
