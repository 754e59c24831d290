"""Pending message lifecycle and the dispatch pass.

States and transitions:

    PENDING --claim--> IN_FLIGHT --delivered--> (row deleted)
                          |
                          +--failed / lease expired--> PENDING

Claiming is the only way into IN_FLIGHT and is a single atomic store
operation, so overlapping dispatch passes never send the same message twice.
A failed message waits for the next pass; the dispatch cadence is the backoff.
"""

from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import datetime, timedelta

from birthdays.config import get_config
from birthdays.core.datetime_utils import to_naive_utc
from birthdays.core.logging import get_logger
from birthdays.schemas.message import ClaimedMessage, DeliveryOutcome
from birthdays.services.delivery import DeliveryEngine
from birthdays.services.schedule_store import ScheduleStore

logger = get_logger(__name__)


@dataclass
class DispatchSummary:
    """Result of one dispatch pass."""

    dispatched_at: datetime
    released: int = 0
    claimed: int = 0
    sent_ids: list[int] = field(default_factory=list)
    failed_ids: list[int] = field(default_factory=list)

    @property
    def sent(self) -> int:
        return len(self.sent_ids)

    @property
    def failed(self) -> int:
        return len(self.failed_ids)


async def claim(store: ScheduleStore, now: datetime) -> list[ClaimedMessage]:
    """Claim every pending message due at or before now.

    Returns an empty list when nothing is due.
    """
    claimed = await store.claim_due_pending_messages(to_naive_utc(now))
    if claimed:
        logger.bind(count=len(claimed)).info("messages_claimed")
    return claimed


async def commit_outcomes(
    store: ScheduleStore,
    outcomes: Sequence[DeliveryOutcome],
) -> tuple[list[int], list[int]]:
    """Apply delivery outcomes: delete delivered messages, revert failed ones.

    Returns:
        (sent ids, failed ids)

    Raises:
        StoreUnavailable: If either write fails. Messages left IN_FLIGHT are
            recovered by the claim lease on a later pass.
    """
    sent_ids = [o.message_id for o in outcomes if o.success]
    failed_ids = [o.message_id for o in outcomes if not o.success]

    if sent_ids:
        await store.delete_pending_messages(sent_ids)
    if failed_ids:
        await store.revert_to_pending(failed_ids)
    return sent_ids, failed_ids


async def run_dispatch_pass(
    store: ScheduleStore,
    engine: DeliveryEngine,
    now: datetime,
    concurrency: int | None = None,
    claim_lease: timedelta | None = None,
) -> DispatchSummary:
    """Claim due messages, deliver them, and commit each outcome.

    Args:
        store: Schedule store
        engine: Delivery engine
        now: Current instant
        concurrency: Delivery worker count, defaults to the engine's config
        claim_lease: How long a claim may stay IN_FLIGHT before it is
            released, defaults to config.yml dispatch.claim_lease_seconds

    Returns:
        DispatchSummary for the pass

    Raises:
        StoreUnavailable: If the store fails; the pass aborts
    """
    now = to_naive_utc(now)
    if claim_lease is None:
        claim_lease = timedelta(seconds=get_config().dispatch.claim_lease_seconds)

    summary = DispatchSummary(dispatched_at=now)

    summary.released = await store.release_stale_claims(now - claim_lease)
    if summary.released:
        logger.bind(count=summary.released).warning("stale_claims_released")

    claimed = await claim(store, now)
    summary.claimed = len(claimed)
    if not claimed:
        logger.bind(now=str(now)).debug("dispatch_pass_nothing_due")
        return summary

    outcomes = await engine.deliver(claimed, concurrency)
    summary.sent_ids, summary.failed_ids = await commit_outcomes(store, outcomes)

    logger.bind(
        claimed=summary.claimed,
        sent=summary.sent,
        failed=summary.failed,
    ).info("dispatch_pass_completed")
    return summary
