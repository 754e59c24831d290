"""Tests for the dispatch pass and pending message lifecycle."""

from datetime import datetime, timedelta
from unittest.mock import AsyncMock

import httpx
import pytest

from birthdays.core.exceptions import StoreUnavailable
from birthdays.models import MessageStatus
from birthdays.schemas.message import DeliveryOutcome
from birthdays.services.delivery import DeliveryEngine
from birthdays.services.message_lifecycle import commit_outcomes, run_dispatch_pass
from birthdays.services.schedule_store import ScheduleStore

pytestmark = pytest.mark.asyncio

NOW = datetime(2025, 1, 1, 9, 0)


class TestRunDispatchPass:
    """Tests for run_dispatch_pass."""

    async def test_delivered_message_is_deleted(
        self, store, pending_message_factory, delivery_engine_factory, fetch_messages
    ):
        message = await pending_message_factory(NOW - timedelta(minutes=5))

        summary = await run_dispatch_pass(store, delivery_engine_factory(), NOW)

        assert summary.claimed == 1
        assert summary.sent_ids == [message.id]
        assert summary.failed_ids == []
        assert await fetch_messages() == []

    async def test_failed_message_reverts_to_pending(
        self, store, pending_message_factory, delivery_engine_factory, fetch_messages
    ):
        """Should put an undeliverable message back for the next pass."""
        message = await pending_message_factory(NOW)
        engine = delivery_engine_factory(lambda request: httpx.Response(500), max_attempts=2)

        summary = await run_dispatch_pass(store, engine, NOW)

        assert summary.failed_ids == [message.id]
        [row] = await fetch_messages()
        assert row.status == MessageStatus.PENDING
        assert row.claimed_at is None

    async def test_failed_message_retried_on_next_pass(
        self, store, pending_message_factory, delivery_engine_factory, fetch_messages
    ):
        await pending_message_factory(NOW)
        await run_dispatch_pass(
            store, delivery_engine_factory(lambda request: httpx.Response(500)), NOW
        )

        summary = await run_dispatch_pass(
            store, delivery_engine_factory(), NOW + timedelta(minutes=15)
        )

        assert summary.sent == 1
        assert await fetch_messages() == []

    async def test_future_messages_untouched(
        self, store, pending_message_factory, delivery_engine_factory, fetch_messages
    ):
        future = await pending_message_factory(NOW + timedelta(hours=1))
        handler = AsyncMock(return_value=httpx.Response(200, json={"status": "sent"}))

        summary = await run_dispatch_pass(store, delivery_engine_factory(handler), NOW)

        assert summary.claimed == 0
        handler.assert_not_awaited()
        [row] = await fetch_messages()
        assert (row.id, row.status) == (future.id, MessageStatus.PENDING)

    async def test_stale_claim_released_and_delivered(
        self, store, pending_message_factory, delivery_engine_factory, fetch_messages
    ):
        """Should recover a message stranded in flight by a crashed pass."""
        await pending_message_factory(
            NOW - timedelta(hours=3),
            status=MessageStatus.IN_FLIGHT,
            claimed_at=NOW - timedelta(hours=2),
        )

        summary = await run_dispatch_pass(
            store, delivery_engine_factory(), NOW, claim_lease=timedelta(hours=1)
        )

        assert summary.released == 1
        assert summary.sent == 1
        assert await fetch_messages() == []

    async def test_live_claim_not_redelivered(
        self, store, pending_message_factory, delivery_engine_factory, fetch_messages
    ):
        """Should leave a message claimed by an overlapping pass alone."""
        await pending_message_factory(
            NOW, status=MessageStatus.IN_FLIGHT, claimed_at=NOW - timedelta(minutes=1)
        )

        summary = await run_dispatch_pass(
            store, delivery_engine_factory(), NOW, claim_lease=timedelta(hours=1)
        )

        assert summary.released == 0
        assert summary.claimed == 0
        assert len(await fetch_messages()) == 1

    async def test_store_failure_aborts_pass(self):
        """Should propagate StoreUnavailable and deliver nothing."""
        failing = AsyncMock(spec=ScheduleStore)
        failing.release_stale_claims.return_value = 0
        failing.claim_due_pending_messages.side_effect = StoreUnavailable("down")
        engine = AsyncMock(spec=DeliveryEngine)

        with pytest.raises(StoreUnavailable):
            await run_dispatch_pass(failing, engine, NOW, claim_lease=timedelta(hours=1))

        engine.deliver.assert_not_awaited()


class TestCommitOutcomes:
    """Tests for commit_outcomes."""

    async def test_splits_success_and_failure(self):
        store = AsyncMock(spec=ScheduleStore)
        outcomes = [
            DeliveryOutcome(message_id=1, success=True, attempts=1),
            DeliveryOutcome(message_id=2, success=False, attempts=3, error="HTTP 500"),
            DeliveryOutcome(message_id=3, success=True, attempts=2),
        ]

        sent, failed = await commit_outcomes(store, outcomes)

        assert (sent, failed) == ([1, 3], [2])
        store.delete_pending_messages.assert_awaited_once_with([1, 3])
        store.revert_to_pending.assert_awaited_once_with([2])

    async def test_no_outcomes_no_writes(self):
        store = AsyncMock(spec=ScheduleStore)

        assert await commit_outcomes(store, []) == ([], [])

        store.delete_pending_messages.assert_not_awaited()
        store.revert_to_pending.assert_not_awaited()
