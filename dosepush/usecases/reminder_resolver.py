"""
Reminder resolver: the batch pass that finds due schedules, claims them
through the dispatch ledger and pushes them to the owner's browsers.

A pass is stateless. Several passes may run at once (manual trigger, cron
caller, in-process job); the ledger guarantees at most one dispatch per
schedule per calendar day regardless of interleaving.
"""

import logging
import time
from datetime import datetime
from typing import List, Optional
from zoneinfo import ZoneInfo

from sqlalchemy import select
from sqlalchemy.ext.asyncio import async_sessionmaker

from dosepush.domain.dispatch import DispatchStatus
from dosepush.domain.results import BatchResult, DeliverySummary, ResolveScope
from dosepush.domain.schedule import RecurringSchedule
from dosepush.usecases.dispatch_ledger import DispatchLedger
from dosepush.usecases.push_delivery import PushDeliveryService
from dosepush.utils.time import (
    day_bounds,
    get_current_time,
    parse_time_of_day,
    scheduled_instant,
    to_local_naive,
    to_zone,
)

logger = logging.getLogger(__name__)

NO_SUBSCRIPTIONS_ERROR = "No active push subscriptions."


def _failure_summary(summary: DeliverySummary) -> Optional[str]:
    if summary.attempted == 0:
        return NO_SUBSCRIPTIONS_ERROR
    errors = [f"{f.host or 'unknown'}: {f.error or f'status {f.status}'}" for f in summary.failures]
    return "; ".join(errors) or None


class ReminderResolver:
    """Runs one reminder pass over the active schedules."""

    def __init__(
        self,
        session_factory: async_sessionmaker,
        ledger: DispatchLedger,
        delivery: PushDeliveryService,
        zone: ZoneInfo,
    ):
        self.session_factory = session_factory
        self.ledger = ledger
        self.delivery = delivery
        self.zone = zone

    async def resolve_due(
        self,
        now: Optional[datetime] = None,
        scope: Optional[ResolveScope] = None,
        deadline: Optional[float] = None,
    ) -> BatchResult:
        """
        Dispatch every schedule that is due today and not yet claimed.

        Args:
            now: Reference time (naive values are deployment-local wall time)
            scope: Restrict the pass to one workspace and optionally one user
            deadline: Bound on total runtime in seconds

        Returns:
            BatchResult; every processed schedule lands in exactly one bucket

        Raises:
            Database errors while loading the schedule list or the day's
            claims. Failures for individual schedules are contained.
        """
        now_local = to_zone(now, self.zone) if now is not None else get_current_time(self.zone)
        today = now_local.date()
        started = time.monotonic()

        schedules = await self._load_active_schedules(scope)
        day_start, day_end = day_bounds(today, self.zone)
        claimed_today = await self.ledger.claimed_schedule_ids(
            to_local_naive(day_start, self.zone),
            to_local_naive(day_end, self.zone),
            [schedule.id for schedule in schedules],
        )

        result = BatchResult(processed=len(schedules))
        deadline_at = started + deadline if deadline is not None else None

        for schedule in schedules:
            if deadline_at is not None and time.monotonic() >= deadline_at:
                result.skipped_deadline_exceeded += 1
                continue

            if schedule.id in claimed_today:
                result.skipped_already_dispatched_today += 1
                continue

            scheduled_for = scheduled_instant(today, parse_time_of_day(schedule.time_of_day), self.zone)
            if scheduled_for > now_local:
                result.skipped_not_due_yet += 1
                continue

            await self._dispatch(schedule, scheduled_for, result, deadline_at)

        result.skipped = (
            result.skipped_not_due_yet
            + result.skipped_already_dispatched_today
            + result.skipped_deadline_exceeded
        )

        logger.info(
            f"Reminder pass at {now_local.isoformat()}: processed={result.processed} due={result.due} "
            f"sent={result.sent} skipped={result.skipped} failures={result.failure_count}",
            extra={"event": "reminder.batch_complete", "result": result.model_dump(exclude={"failures"})},
        )
        return result

    async def _load_active_schedules(self, scope: Optional[ResolveScope]) -> List[RecurringSchedule]:
        query = select(RecurringSchedule).where(RecurringSchedule.is_active.is_(True))
        if scope is not None:
            query = query.where(RecurringSchedule.workspace_id == scope.workspace_id)
            if scope.user_id is not None:
                query = query.where(RecurringSchedule.user_id == scope.user_id)
        query = query.order_by(RecurringSchedule.time_of_day, RecurringSchedule.id)

        async with self.session_factory() as session:
            result = await session.execute(query)
            schedules = list(result.scalars().all())

        valid = []
        for schedule in schedules:
            if parse_time_of_day(schedule.time_of_day) is None:
                logger.warning(f"Ignoring schedule {schedule.id} with invalid time of day {schedule.time_of_day!r}")
                continue
            valid.append(schedule)
        return valid

    async def _dispatch(
        self,
        schedule: RecurringSchedule,
        scheduled_for: datetime,
        result: BatchResult,
        deadline_at: Optional[float],
    ) -> None:
        local_scheduled_for = to_local_naive(scheduled_for, self.zone)

        try:
            claim = await self.ledger.claim(
                schedule.id,
                local_scheduled_for,
                workspace_id=schedule.workspace_id,
                user_id=schedule.user_id,
            )
        except Exception as e:
            logger.exception(f"Failed to claim schedule {schedule.id}: {e}")
            result.due += 1
            result.add_failure(schedule.id, f"Claim failed: {e}")
            return

        if not claim.claimed:
            # A concurrent pass got there first
            result.skipped_already_dispatched_today += 1
            logger.info(
                f"Schedule {schedule.id} claimed by another run",
                extra={"event": "reminder.claim_lost", "schedule_id": schedule.id},
            )
            return

        result.due += 1
        logger.info(
            f"Dispatching schedule {schedule.id} due at {local_scheduled_for:%Y-%m-%d %H:%M:%S}",
            extra={"event": "reminder.claimed", "schedule_id": schedule.id, "dispatch_id": claim.dispatch_id},
        )

        # Sends still running at the deadline are cut off inside deliver()
        timeout = max(deadline_at - time.monotonic(), 0.0) if deadline_at is not None else None
        try:
            summary = await self.delivery.deliver(
                schedule.workspace_id,
                schedule.user_id,
                context="reminder",
                timeout=timeout,
            )
        except Exception as e:
            logger.exception(f"Delivery failed for schedule {schedule.id}: {e}")
            await self._finalize(claim.dispatch_id, schedule.id, 0, DispatchStatus.FAILED, str(e), result)
            return

        result.add_delivery(summary)
        if summary.sent > 0:
            result.sent += 1
            await self._finalize(
                claim.dispatch_id,
                schedule.id,
                summary.sent,
                DispatchStatus.SENT,
                _failure_summary(summary) if summary.failures else None,
                result,
            )
        else:
            await self._finalize(
                claim.dispatch_id,
                schedule.id,
                0,
                DispatchStatus.FAILED,
                _failure_summary(summary),
                result,
            )

    async def _finalize(
        self,
        dispatch_id: str,
        schedule_id: str,
        sent_count: int,
        status: DispatchStatus,
        error: Optional[str],
        result: BatchResult,
    ) -> None:
        if status == DispatchStatus.FAILED:
            result.add_failure(schedule_id, error or "Push delivery failed.")

        try:
            await self.ledger.finalize(dispatch_id, sent_count, status, error)
        except Exception as e:
            logger.exception(f"Failed to finalize dispatch {dispatch_id}: {e}")
            if status != DispatchStatus.FAILED:
                result.add_failure(schedule_id, f"Finalize failed: {e}")
            return

        logger.info(
            f"Dispatch {dispatch_id} finalized as {status.value} (sent={sent_count})",
            extra={"event": "reminder.finalized", "dispatch_id": dispatch_id, "status": status.value},
        )
