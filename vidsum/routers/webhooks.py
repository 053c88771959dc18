# Stripe webhook endpoint:
# - 500 when STRIPE_WEBHOOK_SECRET is unset
# - 400 on a missing or invalid signature, nothing processed
# - 200 for every recognized or ignored event
# - 500 on a store failure so Stripe redelivers

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from vidsum.config import Settings, get_settings
from vidsum.database import get_db
from vidsum.dependencies import get_billing_provider, get_reconciler
from vidsum.errors import ConfigurationError, InvalidSignature
from vidsum.services.audit import audit_service
from vidsum.services.reconciler import WebhookReconciler
from vidsum.services.stripe_service import BillingProvider

logger = logging.getLogger(__name__)

router = APIRouter(tags=["webhooks"])


@router.post("/webhooks/stripe")
async def stripe_webhook(
    request: Request,
    provider: BillingProvider = Depends(get_billing_provider),
    reconciler: WebhookReconciler = Depends(get_reconciler),
    settings: Settings = Depends(get_settings),
    db: AsyncSession = Depends(get_db),
):
    if not settings.stripe_webhook_secret:
        raise ConfigurationError("STRIPE_WEBHOOK_SECRET")

    # raw bytes: the signature covers the exact body
    payload = await request.body()
    sig_header = request.headers.get("stripe-signature")
    if not sig_header:
        raise InvalidSignature("Missing stripe-signature header")

    event = provider.verify_webhook(payload, sig_header, settings.stripe_webhook_secret)

    try:
        outcome = await reconciler.reconcile(event)
    except SQLAlchemyError as e:
        logger.error("[WEBHOOK_FATAL_ERROR] %s %s", event.event_id, e)
        raise HTTPException(status_code=500, detail="Webhook handler error")

    await audit_service.log(
        db=db,
        event_type=outcome.event_type,
        source="stripe_webhook",
        status=outcome.action,
        user_id=outcome.user_id,
        reference_id=outcome.event_id,
        details=f"subscription={outcome.subscription_id} duplicates={outcome.canceled_duplicates}",
    )
    return {"ok": True, "result": outcome.to_dict()}
