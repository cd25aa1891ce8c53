"""
Wiring for the dispatch engine.

Every component receives its collaborators explicitly; this is the one
place they are assembled from settings.
"""

from typing import Optional

from sqlalchemy.ext.asyncio import AsyncEngine, async_sessionmaker

from dosepush.config.settings import Settings
from dosepush.infrastructure.database import build_database
from dosepush.infrastructure.push_transport import HttpxPushTransport, PushTransport
from dosepush.infrastructure.vapid import VapidSigner
from dosepush.usecases.dispatch_ledger import DispatchLedger
from dosepush.usecases.notification_content import NotificationContentService
from dosepush.usecases.push_delivery import PushDeliveryService
from dosepush.usecases.reminder_resolver import ReminderResolver
from dosepush.usecases.subscription_registry import SubscriptionRegistry
from dosepush.utils.time import get_zone


class Services:
    """The assembled engine: registry, ledger, delivery, resolver."""

    def __init__(
        self,
        settings: Settings,
        session_factory: async_sessionmaker,
        transport: PushTransport,
        signer: Optional[VapidSigner] = None,
        engine: Optional[AsyncEngine] = None,
    ):
        self.settings = settings
        self.engine = engine
        self.session_factory = session_factory
        self.transport = transport
        self.zone = get_zone(settings.app_timezone)

        self.signer = signer or VapidSigner.from_settings(settings)
        self.registry = SubscriptionRegistry(session_factory)
        self.ledger = DispatchLedger(session_factory)
        self.delivery = PushDeliveryService(
            self.registry,
            self.signer,
            transport,
            ttl=settings.push_ttl,
        )
        self.resolver = ReminderResolver(session_factory, self.ledger, self.delivery, self.zone)
        self.notifications = NotificationContentService(self.registry, self.ledger)

    @classmethod
    def from_settings(cls, settings: Settings) -> "Services":
        engine, session_factory = build_database(settings)
        transport = HttpxPushTransport(timeout=settings.push_timeout_seconds)
        return cls(settings, session_factory, transport, engine=engine)

    async def aclose(self) -> None:
        close = getattr(self.transport, "aclose", None)
        if close is not None:
            await close()
        if self.engine is not None:
            await self.engine.dispose()
