"""Tests for the scheduled job wrappers."""

from datetime import date, datetime
from unittest.mock import AsyncMock, patch

import pytest

from birthdays.core import scheduler
from birthdays.core.exceptions import StoreUnavailable

pytestmark = pytest.mark.asyncio

NOW = datetime(2025, 1, 1, 0, 0)


class TestStartScheduler:
    """Tests for start_scheduler."""

    async def test_disabled_by_settings(self):
        """Should not start anything when the scheduler is switched off."""
        assert await scheduler.start_scheduler() is None
        assert await scheduler.get_job_schedules() == []


class TestDailyScanJob:
    """Tests for daily_scan_job."""

    async def test_runs_scan_with_fresh_session(
        self, session_factory, user_factory, fetch_messages
    ):
        user = await user_factory(birth_date=date(1990, 1, 1), location="UTC")

        with (
            patch.object(scheduler, "AsyncSessionLocal", session_factory),
            patch.object(scheduler, "utc_now", return_value=NOW),
        ):
            await scheduler.daily_scan_job()

        [message] = await fetch_messages()
        assert message.user_id == user.id
        assert message.dispatch_at == datetime(2025, 1, 1, 9, 0)

    async def test_failure_is_reraised(self, session_factory):
        """Should re-raise so the scheduler records the failed run."""
        with (
            patch.object(scheduler, "AsyncSessionLocal", session_factory),
            patch.object(
                scheduler, "run_daily_scan", AsyncMock(side_effect=StoreUnavailable("down"))
            ),
        ):
            with pytest.raises(StoreUnavailable):
                await scheduler.daily_scan_job()


class TestDispatchPassJob:
    """Tests for dispatch_pass_job."""

    async def test_failure_is_reraised(self, session_factory):
        with (
            patch.object(scheduler, "AsyncSessionLocal", session_factory),
            patch.object(
                scheduler, "run_dispatch_pass", AsyncMock(side_effect=StoreUnavailable("down"))
            ),
        ):
            with pytest.raises(StoreUnavailable):
                await scheduler.dispatch_pass_job()
