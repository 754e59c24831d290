"""Persistent store for pending messages.

ScheduleStore is the only seam between the scheduling core and the database.
The planner, claimer and lifecycle depend on the abstract interface; the
SQLAlchemy implementation works on PostgreSQL and SQLite.
"""

from abc import ABC, abstractmethod
from collections.abc import Sequence
from datetime import date, datetime

from sqlalchemy import and_, delete, extract, or_, select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from birthdays.core.datetime_utils import birthday_occurrences, date_range, is_leap_day_observed
from birthdays.core.exceptions import StoreUnavailable
from birthdays.core.logging import get_logger
from birthdays.models.message import (
    MessageStatus,
    MessageTemplate,
    PendingMessage,
    render_body,
)
from birthdays.models.user import User
from birthdays.schemas.message import BirthdayCandidate, ClaimedMessage

logger = get_logger(__name__)


class ScheduleStore(ABC):
    """Operations the scheduling core needs from persistent storage."""

    @abstractmethod
    async def list_users_with_birthday_in_range(
        self, start: date, end: date
    ) -> list[BirthdayCandidate]:
        """
        List users whose birthday occurs between start and end (inclusive).

        Returns:
            Candidates carrying the birthday occurrence inside the range
        """

    @abstractmethod
    async def upsert_pending_message(
        self,
        user_id: int,
        template_id: int,
        dispatch_at: datetime,
        overwrite: bool = True,
    ) -> int:
        """
        Create the (user, template) pending message.

        On conflict, overwrite the dispatch instant of a still-pending row
        when ``overwrite`` is set, otherwise leave the existing row alone.

        Returns:
            Rows written, 0 when an existing row was left alone
        """

    @abstractmethod
    async def delete_pending_messages_for_user(
        self, user_id: int, template_id: int | None = None
    ) -> int:
        """Cancel a user's pending messages. Returns the number removed."""

    @abstractmethod
    async def claim_due_pending_messages(self, now: datetime) -> list[ClaimedMessage]:
        """
        Atomically mark every pending message due at or before now as in-flight.

        Returns:
            The claimed messages joined with recipient and rendered body
        """

    @abstractmethod
    async def delete_pending_messages(self, ids: Sequence[int]) -> int:
        """Remove delivered messages. Returns the number removed."""

    @abstractmethod
    async def revert_to_pending(self, ids: Sequence[int]) -> int:
        """Return in-flight messages to pending. Returns the number reverted."""

    @abstractmethod
    async def release_stale_claims(self, older_than: datetime) -> int:
        """Revert in-flight messages claimed before older_than to pending."""


class SqlScheduleStore(ScheduleStore):
    """ScheduleStore backed by an AsyncSession. Every operation commits."""

    def __init__(self, db: AsyncSession) -> None:
        self.db = db

    def _insert(self):  # type: ignore[no-untyped-def]
        dialect = self.db.get_bind().dialect.name
        if dialect == "postgresql":
            return pg_insert(PendingMessage)
        if dialect == "sqlite":
            return sqlite_insert(PendingMessage)
        raise NotImplementedError(f"Upsert not supported for dialect {dialect!r}")

    async def _fail(self, operation: str, error: SQLAlchemyError) -> StoreUnavailable:
        await self.db.rollback()
        logger.bind(operation=operation, error=str(error)).error("store_operation_failed")
        return StoreUnavailable(f"{operation} failed: {error}")

    async def list_users_with_birthday_in_range(
        self, start: date, end: date
    ) -> list[BirthdayCandidate]:
        days = date_range(start, end)
        if not days:
            return []

        month_days = {(d.month, d.day) for d in days}
        if any(is_leap_day_observed(d) for d in days):
            month_days.add((2, 29))

        conditions = [
            and_(
                extract("month", User.birth_date) == month,
                extract("day", User.birth_date) == day,
            )
            for month, day in sorted(month_days)
        ]

        try:
            result = await self.db.execute(
                select(User.id, User.birth_date, User.location)
                .where(or_(*conditions))
                .order_by(User.id)
            )
            rows = result.all()
        except SQLAlchemyError as e:
            raise await self._fail("list_users_with_birthday_in_range", e) from e

        candidates = []
        for user_id, birth_date, location in rows:
            for occurrence in birthday_occurrences(birth_date, days):
                candidates.append(
                    BirthdayCandidate(user_id=user_id, birth_date=occurrence, timezone=location)
                )
        return candidates

    async def upsert_pending_message(
        self,
        user_id: int,
        template_id: int,
        dispatch_at: datetime,
        overwrite: bool = True,
    ) -> int:
        stmt = self._insert().values(
            user_id=user_id,
            template_id=template_id,
            dispatch_at=dispatch_at,
            status=MessageStatus.PENDING,
        )
        if overwrite:
            stmt = stmt.on_conflict_do_update(
                index_elements=["user_id", "template_id"],
                set_={"dispatch_at": stmt.excluded.dispatch_at},
                where=PendingMessage.status == MessageStatus.PENDING,
            )
        else:
            stmt = stmt.on_conflict_do_nothing(index_elements=["user_id", "template_id"])

        try:
            result = await self.db.execute(stmt)
            await self.db.commit()
        except SQLAlchemyError as e:
            raise await self._fail("upsert_pending_message", e) from e
        return result.rowcount or 0

    async def delete_pending_messages_for_user(
        self, user_id: int, template_id: int | None = None
    ) -> int:
        stmt = delete(PendingMessage).where(
            PendingMessage.user_id == user_id,
            PendingMessage.status == MessageStatus.PENDING,
        )
        if template_id is not None:
            stmt = stmt.where(PendingMessage.template_id == template_id)

        try:
            result = await self.db.execute(stmt.execution_options(synchronize_session=False))
            await self.db.commit()
        except SQLAlchemyError as e:
            raise await self._fail("delete_pending_messages_for_user", e) from e
        return result.rowcount or 0

    async def claim_due_pending_messages(self, now: datetime) -> list[ClaimedMessage]:
        # Single conditional update: a concurrent claimer either waits on the
        # row lock and re-checks the predicate, or never sees the row at all.
        claim = (
            update(PendingMessage)
            .where(
                PendingMessage.status == MessageStatus.PENDING,
                PendingMessage.dispatch_at <= now,
            )
            .values(status=MessageStatus.IN_FLIGHT, claimed_at=now)
            .returning(PendingMessage.id)
            .execution_options(synchronize_session=False)
        )

        try:
            result = await self.db.execute(claim)
            claimed_ids = list(result.scalars().all())
            if not claimed_ids:
                await self.db.commit()
                return []

            rows = await self.db.execute(
                select(
                    PendingMessage.id,
                    User.id,
                    User.email,
                    User.first_name,
                    User.last_name,
                    MessageTemplate.content,
                )
                .join(User, User.id == PendingMessage.user_id)
                .join(MessageTemplate, MessageTemplate.id == PendingMessage.template_id)
                .where(PendingMessage.id.in_(claimed_ids))
                .order_by(PendingMessage.dispatch_at, PendingMessage.id)
            )
            projection = rows.all()
            await self.db.commit()
        except SQLAlchemyError as e:
            raise await self._fail("claim_due_pending_messages", e) from e

        return [
            ClaimedMessage(
                message_id=message_id,
                user_id=user_id,
                recipient_address=email,
                rendered_body=render_body(content, f"{first_name} {last_name}"),
            )
            for message_id, user_id, email, first_name, last_name, content in projection
        ]

    async def delete_pending_messages(self, ids: Sequence[int]) -> int:
        if not ids:
            return 0
        stmt = delete(PendingMessage).where(
            PendingMessage.id.in_(list(ids)),
            PendingMessage.status == MessageStatus.IN_FLIGHT,
        )
        try:
            result = await self.db.execute(stmt.execution_options(synchronize_session=False))
            await self.db.commit()
        except SQLAlchemyError as e:
            raise await self._fail("delete_pending_messages", e) from e
        return result.rowcount or 0

    async def revert_to_pending(self, ids: Sequence[int]) -> int:
        if not ids:
            return 0
        stmt = (
            update(PendingMessage)
            .where(
                PendingMessage.id.in_(list(ids)),
                PendingMessage.status == MessageStatus.IN_FLIGHT,
            )
            .values(status=MessageStatus.PENDING, claimed_at=None)
            .execution_options(synchronize_session=False)
        )
        try:
            result = await self.db.execute(stmt)
            await self.db.commit()
        except SQLAlchemyError as e:
            raise await self._fail("revert_to_pending", e) from e
        return result.rowcount or 0

    async def release_stale_claims(self, older_than: datetime) -> int:
        stmt = (
            update(PendingMessage)
            .where(
                PendingMessage.status == MessageStatus.IN_FLIGHT,
                PendingMessage.claimed_at < older_than,
            )
            .values(status=MessageStatus.PENDING, claimed_at=None)
            .execution_options(synchronize_session=False)
        )
        try:
            result = await self.db.execute(stmt)
            await self.db.commit()
        except SQLAlchemyError as e:
            raise await self._fail("release_stale_claims", e) from e
        return result.rowcount or 0
