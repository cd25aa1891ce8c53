"""
Notification text for empty-body pushes.

Pushes carry no payload, so the service worker asks what to display. The
answer is the owner's most recent dispatch, or a generic reminder.
"""

import logging
from datetime import datetime, timedelta
from decimal import Decimal, InvalidOperation
from typing import Optional

from dosepush.domain.results import NotificationContent
from dosepush.domain.schedule import RecurringSchedule
from dosepush.usecases.dispatch_ledger import DispatchLedger
from dosepush.usecases.subscription_registry import SubscriptionRegistry

logger = logging.getLogger(__name__)

RECENT_DISPATCH_WINDOW = timedelta(minutes=30)


def format_dosage(value) -> str:
    """2.50 -> "2.5", 1.00 -> "1"."""
    try:
        text = f"{Decimal(str(value)):.2f}"
    except (InvalidOperation, ValueError):
        return str(value)
    return text.rstrip("0").rstrip(".") or "0"


def describe_schedule(schedule: RecurringSchedule) -> NotificationContent:
    """Notification for one schedule; a custom reminder message wins."""
    if schedule.reminder_message:
        body = schedule.reminder_message
    else:
        body = f"Time to take {format_dosage(schedule.dosage_value)} {schedule.dosage_unit} of {schedule.medicine_name}."
    return NotificationContent(title=f"{schedule.medicine_name} reminder", body=body)


class NotificationContentService:
    """Resolves what a browser should show when an empty push arrives."""

    def __init__(self, registry: SubscriptionRegistry, ledger: DispatchLedger):
        self.registry = registry
        self.ledger = ledger

    async def for_owner(
        self,
        workspace_id: int,
        user_id: int,
        now: Optional[datetime] = None,
    ) -> NotificationContent:
        since = (now or datetime.utcnow()) - RECENT_DISPATCH_WINDOW
        latest = await self.ledger.latest_for_owner(workspace_id, user_id, since)
        if latest is None:
            return NotificationContent()

        _, schedule = latest
        return describe_schedule(schedule)

    async def for_endpoint(self, endpoint: str, now: Optional[datetime] = None) -> Optional[NotificationContent]:
        """Content for the owner of a subscription endpoint, or None if unknown."""
        subscription = await self.registry.find_active_by_endpoint(endpoint)
        if subscription is None:
            logger.info("Notification content requested for an unknown endpoint")
            return None
        return await self.for_owner(subscription.workspace_id, subscription.user_id, now=now)
