"""
Subscription registry: one row per (owner, browser endpoint).
"""

import logging
from datetime import datetime
from typing import Iterable, List, Optional

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import async_sessionmaker

from dosepush.domain.subscription import PushSubscription, SubscriptionCreate, endpoint_hash

logger = logging.getLogger(__name__)


class SubscriptionRegistry:
    """Stores browser push subscriptions; rows are soft-deleted, never removed."""

    def __init__(self, session_factory: async_sessionmaker):
        self.session_factory = session_factory

    async def upsert(self, workspace_id: int, user_id: int, data: SubscriptionCreate) -> PushSubscription:
        """
        Register a browser subscription, overwriting keys on re-registration.

        Args:
            workspace_id: Owner's workspace
            user_id: Owner
            data: Validated subscription payload

        Returns:
            The active subscription row
        """
        key = endpoint_hash(data.endpoint)
        now = datetime.utcnow()

        async with self.session_factory() as session:
            subscription = await self._find(session, workspace_id, user_id, key)
            if subscription is None:
                subscription = PushSubscription(
                    workspace_id=workspace_id,
                    user_id=user_id,
                    endpoint=data.endpoint,
                    endpoint_hash=key,
                )
                session.add(subscription)

            self._apply(subscription, data, now)
            try:
                await session.commit()
            except IntegrityError:
                # Lost a race with a concurrent registration of the same browser
                await session.rollback()
                subscription = await self._find(session, workspace_id, user_id, key)
                self._apply(subscription, data, now)
                await session.commit()

        logger.info(f"Registered push subscription {subscription.id} for user {user_id}")
        return subscription

    async def unsubscribe(self, workspace_id: int, user_id: int, endpoint: str) -> bool:
        """Deactivate the owner's subscription for an endpoint."""
        async with self.session_factory() as session:
            result = await session.execute(
                update(PushSubscription)
                .where(
                    PushSubscription.workspace_id == workspace_id,
                    PushSubscription.user_id == user_id,
                    PushSubscription.endpoint_hash == endpoint_hash(endpoint.strip()),
                    PushSubscription.is_active.is_(True),
                )
                .values(is_active=False, updated_at=datetime.utcnow())
            )
            await session.commit()
        return result.rowcount > 0

    async def list_active(self, workspace_id: int, user_id: int) -> List[PushSubscription]:
        """Active subscriptions for one user."""
        async with self.session_factory() as session:
            result = await session.execute(
                select(PushSubscription)
                .where(
                    PushSubscription.workspace_id == workspace_id,
                    PushSubscription.user_id == user_id,
                    PushSubscription.is_active.is_(True),
                )
                .order_by(PushSubscription.id)
            )
            return list(result.scalars().all())

    async def find_active_by_endpoint(self, endpoint: str) -> Optional[PushSubscription]:
        """Look up the newest active subscription for an endpoint, across owners."""
        async with self.session_factory() as session:
            result = await session.execute(
                select(PushSubscription)
                .where(
                    PushSubscription.endpoint_hash == endpoint_hash(endpoint.strip()),
                    PushSubscription.is_active.is_(True),
                )
                .order_by(PushSubscription.last_seen_at.desc())
                .limit(1)
            )
            return result.scalar_one_or_none()

    async def deactivate(self, subscription_ids: Iterable[int]) -> int:
        """Retire subscriptions the push service reported as gone."""
        ids = list(subscription_ids)
        if not ids:
            return 0

        async with self.session_factory() as session:
            result = await session.execute(
                update(PushSubscription)
                .where(PushSubscription.id.in_(ids), PushSubscription.is_active.is_(True))
                .values(is_active=False, updated_at=datetime.utcnow())
            )
            await session.commit()

        logger.info(f"Deactivated push subscriptions: {ids}")
        return result.rowcount

    @staticmethod
    async def _find(session, workspace_id: int, user_id: int, key: str) -> Optional[PushSubscription]:
        result = await session.execute(
            select(PushSubscription).where(
                PushSubscription.workspace_id == workspace_id,
                PushSubscription.user_id == user_id,
                PushSubscription.endpoint_hash == key,
            )
        )
        return result.scalar_one_or_none()

    @staticmethod
    def _apply(subscription: PushSubscription, data: SubscriptionCreate, now: datetime) -> None:
        subscription.endpoint = data.endpoint
        subscription.p256dh = data.keys.p256dh
        subscription.auth = data.keys.auth
        subscription.user_agent = data.user_agent
        subscription.last_seen_at = now
        subscription.updated_at = now
        subscription.is_active = True
