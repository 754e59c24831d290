"""Error taxonomy for scheduling, delivery and storage failures.

Per-item errors (InvalidTimezone, DeliveryError) are isolated to the item
being processed. StoreUnavailable aborts the whole scan or dispatch pass.
"""


class InvalidTimezone(ValueError):
    """Raised when a location is not a recognised IANA timezone identifier."""

    def __init__(self, timezone: str) -> None:
        super().__init__(f"Invalid timezone: {timezone!r}")
        self.timezone = timezone


class DeliveryError(Exception):
    """A single delivery try failed."""


class DeliveryTimeout(DeliveryError):
    """The endpoint did not answer within the per-try timeout."""


class DeliveryRejected(DeliveryError):
    """The endpoint answered, but not with a successful "sent" status."""


class StoreUnavailable(Exception):
    """The persistent store could not complete an operation."""
