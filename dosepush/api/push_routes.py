"""
Push subscription and reminder dispatch endpoints.
"""

import hmac
import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query

from dosepush.api.dependencies import Owner, get_optional_owner, get_owner, get_services
from dosepush.domain.results import ResolveScope
from dosepush.domain.subscription import SubscriptionCreate, SubscriptionRemove
from dosepush.infrastructure.container import Services

logger = logging.getLogger(__name__)
router = APIRouter()


@router.get("/push/public-key")
async def push_public_key(services: Services = Depends(get_services)):
    """VAPID public key the browser needs to subscribe."""
    return {
        "ok": True,
        "public_key": services.signer.public_key,
        "configured": services.signer.configuration_error() is None,
    }


@router.post("/push/subscribe")
async def push_subscribe(
    payload: SubscriptionCreate,
    owner: Owner = Depends(get_owner),
    services: Services = Depends(get_services),
):
    """Register (or refresh) this browser's subscription."""
    subscription = await services.registry.upsert(owner.workspace_id, owner.user_id, payload)
    return {"ok": True, "subscription_id": subscription.id}


@router.post("/push/unsubscribe")
async def push_unsubscribe(
    payload: SubscriptionRemove,
    owner: Owner = Depends(get_owner),
    services: Services = Depends(get_services),
):
    """Deactivate this browser's subscription."""
    deactivated = await services.registry.unsubscribe(owner.workspace_id, owner.user_id, payload.endpoint)
    return {"ok": True, "deactivated": deactivated}


@router.post("/push/test")
async def push_test(
    owner: Owner = Depends(get_owner),
    services: Services = Depends(get_services),
):
    """Send a test push to every browser of the current user."""
    config_error = services.signer.configuration_error()
    if config_error:
        raise HTTPException(status_code=503, detail=config_error)

    summary = await services.delivery.deliver(owner.workspace_id, owner.user_id, context="test")
    return {"ok": True, "dispatch": summary.model_dump()}


@router.get("/push/message")
async def push_message(
    endpoint: Optional[str] = Query(default=None),
    owner: Optional[Owner] = Depends(get_optional_owner),
    services: Services = Depends(get_services),
):
    """
    Text for the service worker to display.

    The push itself has no body. The worker calls back here, identified by
    its session when it has one, otherwise by its subscription endpoint.
    """
    if owner is not None:
        notification = await services.notifications.for_owner(owner.workspace_id, owner.user_id)
    elif endpoint:
        notification = await services.notifications.for_endpoint(endpoint)
    else:
        raise HTTPException(status_code=401, detail="Authentication required.")

    if notification is None:
        raise HTTPException(status_code=404, detail="Unknown push subscription.")
    return {"ok": True, "notification": notification.model_dump()}


@router.api_route("/reminders/process", methods=["GET", "POST"])
async def process_reminders(
    token: Optional[str] = Query(default=None),
    owner: Optional[Owner] = Depends(get_optional_owner),
    services: Services = Depends(get_services),
):
    """
    Run one reminder pass.

    A valid cron token runs over every workspace. Without a token the pass
    is restricted to the calling user.
    """
    scope = None
    if token is not None:
        expected = services.settings.reminder_cron_token
        if not expected:
            raise HTTPException(status_code=503, detail="Reminder cron token is not configured.")
        if not hmac.compare_digest(token.encode("utf-8"), expected.encode("utf-8")):
            logger.warning("Rejected reminder run with an invalid cron token")
            raise HTTPException(status_code=403, detail="Invalid token.")
    elif owner is not None:
        scope = ResolveScope(workspace_id=owner.workspace_id, user_id=owner.user_id)
    else:
        raise HTTPException(status_code=401, detail="Authentication required.")

    try:
        result = await services.resolver.resolve_due(
            scope=scope,
            deadline=services.settings.batch_deadline_seconds,
        )
    except Exception as e:
        logger.exception(f"Reminder pass failed: {e}")
        raise HTTPException(status_code=500, detail="Reminder processing failed.")

    return {"ok": True, "result": result.model_dump()}
