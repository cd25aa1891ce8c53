"""
Dispatch ledger: append-only record of claimed reminder deliveries.

The unique key on (schedule_id, scheduled_date) turns "is it already sent
today?" into a single atomic insert. Whoever inserts the row owns the day's
delivery; everyone else learns they lost and moves on.
"""

import logging
import uuid
from datetime import datetime
from typing import Iterable, Optional, Set, Tuple

from sqlalchemy import insert, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from dosepush.domain.dispatch import DispatchRecord, DispatchStatus
from dosepush.domain.results import ClaimResult
from dosepush.domain.schedule import RecurringSchedule

logger = logging.getLogger(__name__)

MAX_ERROR_LENGTH = 1000


def _insert_ignoring_duplicates(dialect_name: str):
    """INSERT that affects zero rows instead of failing on the unique key."""
    if dialect_name == "sqlite":
        from sqlalchemy.dialects.sqlite import insert as sqlite_insert
        return sqlite_insert(DispatchRecord).on_conflict_do_nothing(
            index_elements=["schedule_id", "scheduled_date"]
        )
    if dialect_name == "postgresql":
        from sqlalchemy.dialects.postgresql import insert as pg_insert
        return pg_insert(DispatchRecord).on_conflict_do_nothing(
            index_elements=["schedule_id", "scheduled_date"]
        )
    if dialect_name in ("mysql", "mariadb"):
        return insert(DispatchRecord).prefix_with("IGNORE")
    return None


class DispatchLedger:
    """Owns every DispatchRecord row."""

    def __init__(self, session_factory: async_sessionmaker):
        self.session_factory = session_factory

    async def claim(
        self,
        schedule_id: str,
        scheduled_for: datetime,
        workspace_id: int,
        user_id: int,
    ) -> ClaimResult:
        """
        Claim a schedule's delivery for the day of scheduled_for.

        Args:
            schedule_id: Schedule being dispatched
            scheduled_for: Local wall time the reminder was due
            workspace_id: Schedule owner's workspace
            user_id: Schedule owner

        Returns:
            ClaimResult(claimed=True) for the single winner of the day,
            ClaimResult(claimed=False) for everyone else
        """
        dispatch_id = str(uuid.uuid4())
        now = datetime.utcnow()
        values = {
            "id": dispatch_id,
            "schedule_id": schedule_id,
            "workspace_id": workspace_id,
            "user_id": user_id,
            "scheduled_for": scheduled_for,
            "scheduled_date": scheduled_for.date(),
            "status": DispatchStatus.PENDING,
            "sent_count": 0,
            "created_at": now,
            "updated_at": now,
        }

        async with self.session_factory() as session:
            statement = _insert_ignoring_duplicates(session.bind.dialect.name)
            if statement is not None:
                result = await session.execute(statement.values(**values))
                await session.commit()
                claimed = result.rowcount == 1
            else:
                claimed = await self._insert_or_detect_duplicate(session, values)

            if claimed:
                logger.info(f"Claimed schedule {schedule_id} for {scheduled_for:%Y-%m-%d} as {dispatch_id}")
                return ClaimResult(claimed=True, dispatch_id=dispatch_id)

            existing = await session.execute(
                select(DispatchRecord.id).where(
                    DispatchRecord.schedule_id == schedule_id,
                    DispatchRecord.scheduled_date == scheduled_for.date(),
                )
            )
            logger.info(f"Schedule {schedule_id} already claimed for {scheduled_for:%Y-%m-%d}")
            return ClaimResult(claimed=False, dispatch_id=existing.scalar_one_or_none())

    @staticmethod
    async def _insert_or_detect_duplicate(session: AsyncSession, values: dict) -> bool:
        try:
            await session.execute(insert(DispatchRecord).values(**values))
            await session.commit()
        except IntegrityError:
            await session.rollback()
            return False
        return True

    async def finalize(
        self,
        dispatch_id: str,
        sent_count: int,
        status: DispatchStatus,
        error: Optional[str] = None,
    ) -> bool:
        """
        Record the terminal outcome of a claimed dispatch.

        Only a pending record is updated; a second finalize is a no-op.

        Returns:
            True if the record moved out of pending
        """
        if status == DispatchStatus.PENDING:
            raise ValueError("finalize requires a terminal status")

        async with self.session_factory() as session:
            result = await session.execute(
                update(DispatchRecord)
                .where(
                    DispatchRecord.id == dispatch_id,
                    DispatchRecord.status == DispatchStatus.PENDING,
                )
                .values(
                    status=status,
                    sent_count=sent_count,
                    error_message=error[:MAX_ERROR_LENGTH] if error else None,
                    updated_at=datetime.utcnow(),
                )
            )
            await session.commit()

        finalized = result.rowcount > 0
        if not finalized:
            logger.warning(f"Dispatch {dispatch_id} was already finalized")
        return finalized

    async def claimed_schedule_ids(
        self,
        day_start: datetime,
        day_end: datetime,
        schedule_ids: Optional[Iterable[str]] = None,
    ) -> Set[str]:
        """Schedules with a dispatch whose scheduled_for lies in [day_start, day_end)."""
        query = select(DispatchRecord.schedule_id).where(
            DispatchRecord.scheduled_for >= day_start,
            DispatchRecord.scheduled_for < day_end,
        )
        if schedule_ids is not None:
            ids = list(schedule_ids)
            if not ids:
                return set()
            query = query.where(DispatchRecord.schedule_id.in_(ids))

        async with self.session_factory() as session:
            result = await session.execute(query)
            return set(result.scalars().all())

    async def get(self, dispatch_id: str) -> Optional[DispatchRecord]:
        async with self.session_factory() as session:
            return await session.get(DispatchRecord, dispatch_id)

    async def latest_for_owner(
        self,
        workspace_id: int,
        user_id: int,
        since: datetime,
    ) -> Optional[Tuple[DispatchRecord, RecurringSchedule]]:
        """Newest dispatch created since a point in time, with its schedule."""
        async with self.session_factory() as session:
            result = await session.execute(
                select(DispatchRecord, RecurringSchedule)
                .join(RecurringSchedule, RecurringSchedule.id == DispatchRecord.schedule_id)
                .where(
                    DispatchRecord.workspace_id == workspace_id,
                    DispatchRecord.user_id == user_id,
                    DispatchRecord.created_at >= since,
                )
                .order_by(DispatchRecord.created_at.desc())
                .limit(1)
            )
            row = result.first()
            return (row[0], row[1]) if row else None
