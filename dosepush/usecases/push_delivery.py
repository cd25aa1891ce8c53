"""
Push delivery: send an empty-body Web Push to every browser of one user.
"""

import asyncio
import logging
from typing import List, Optional
from urllib.parse import urlsplit

from dosepush.domain.results import DeliveryFailure, DeliverySummary, TransportResult
from dosepush.domain.subscription import PushSubscription
from dosepush.infrastructure.push_transport import PushTransport
from dosepush.infrastructure.vapid import VapidSigner, audience_from_endpoint
from dosepush.usecases.subscription_registry import SubscriptionRegistry

logger = logging.getLogger(__name__)

DEFAULT_TTL = 60
VALIDATION_TRANSPORT = "validation"
UNFINISHED_ERROR = "Push request did not finish before the batch deadline."


def _endpoint_host(endpoint: str) -> str:
    try:
        return urlsplit(endpoint).hostname or ""
    except ValueError:
        return ""


class PushDeliveryService:
    """Delivers to all active subscriptions of a user and retires dead ones."""

    def __init__(
        self,
        registry: SubscriptionRegistry,
        signer: VapidSigner,
        transport: PushTransport,
        ttl: int = DEFAULT_TTL,
    ):
        self.registry = registry
        self.signer = signer
        self.transport = transport
        self.ttl = ttl

    async def deliver(
        self,
        workspace_id: int,
        user_id: int,
        context: str = "reminder",
        timeout: Optional[float] = None,
    ) -> DeliverySummary:
        """
        Push to every active subscription of one user.

        One bad subscription never blocks the others: each endpoint's outcome
        is isolated and aggregated. 404/410 responses deactivate the
        subscription; every other failure leaves it active for the next run.

        Args:
            workspace_id: Owner's workspace
            user_id: Owner
            context: Why the push is sent ("reminder", "test"), for logs
            timeout: Seconds to wait for the sends; unfinished ones count as
                transient failures and their subscriptions stay active

        Returns:
            DeliverySummary with per-endpoint failures
        """
        subscriptions = await self.registry.list_active(workspace_id, user_id)
        summary = DeliverySummary(attempted=len(subscriptions))
        if not subscriptions:
            logger.info(f"No active push subscriptions for user {user_id} ({context})")
            return summary

        config_error = self.signer.configuration_error()
        results = await self._send_all(subscriptions, config_error, timeout)

        gone = []
        for subscription, result in zip(subscriptions, results):
            if result.ok:
                summary.sent += 1
                continue

            summary.failed += 1
            summary.failures.append(
                DeliveryFailure(
                    host=_endpoint_host(subscription.endpoint),
                    status=result.status_code,
                    transport=result.transport,
                    error=result.error,
                )
            )
            if result.is_gone:
                gone.append(subscription.id)

        if gone:
            await self.registry.deactivate(gone)
            summary.deactivated = len(gone)

        logger.info(
            f"Push {context} for user {user_id}: attempted={summary.attempted} "
            f"sent={summary.sent} failed={summary.failed} deactivated={summary.deactivated}"
        )
        return summary

    async def _send_all(
        self,
        subscriptions: List[PushSubscription],
        config_error: Optional[str],
        timeout: Optional[float],
    ) -> List[TransportResult]:
        tasks = [asyncio.ensure_future(self._send_one(s, config_error)) for s in subscriptions]
        if timeout is not None and timeout <= 0:
            done = set()
        else:
            done, _ = await asyncio.wait(tasks, timeout=timeout)

        unfinished = [task for task in tasks if task not in done]
        for task in unfinished:
            task.cancel()
        if unfinished:
            logger.warning(f"{len(unfinished)} push request(s) cut off by the batch deadline")
            await asyncio.gather(*unfinished, return_exceptions=True)

        results = []
        for task in tasks:
            if task in done:
                results.append(task.result())
            else:
                results.append(TransportResult(
                    ok=False,
                    error=UNFINISHED_ERROR,
                    transport=getattr(self.transport, "name", None),
                ))
        return results

    async def _send_one(self, subscription: PushSubscription, config_error: Optional[str]) -> TransportResult:
        if config_error:
            return TransportResult(ok=False, error=config_error, transport=VALIDATION_TRANSPORT)

        audience = audience_from_endpoint(subscription.endpoint)
        if audience is None:
            return TransportResult(ok=False, error="Invalid push subscription endpoint.", transport=VALIDATION_TRANSPORT)

        token = self.signer.sign(audience)
        if token is None:
            return TransportResult(ok=False, error="Unable to sign VAPID JWT.", transport=VALIDATION_TRANSPORT)

        headers = self.signer.request_headers(token, self.ttl)
        try:
            return await self.transport.post(subscription.endpoint, headers)
        except Exception as e:
            logger.exception(f"Push transport raised for subscription {subscription.id}: {e}")
            return TransportResult(
                ok=False,
                error=str(e) or e.__class__.__name__,
                transport=getattr(self.transport, "name", None),
            )
