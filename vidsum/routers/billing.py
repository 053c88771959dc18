from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, Header
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from vidsum.config import Settings, get_settings
from vidsum.database import get_db
from vidsum.dependencies import (
    get_billing_provider,
    get_cancellation_coordinator,
    get_catalog,
    get_checkout_orchestrator,
    get_reconciler,
    get_store,
)
from vidsum.errors import ConfigurationError, InvalidPlan, NotAuthenticated, NotFound
from vidsum.routers.auth import get_current_user, get_optional_user
from vidsum.services.audit import audit_service
from vidsum.services.cancellation import CancellationCoordinator
from vidsum.services.checkout import CheckoutOrchestrator, CurrentUser
from vidsum.services.plans import PlanAction, PlanCatalog
from vidsum.services.reconciler import WebhookReconciler
from vidsum.services.stripe_service import BillingProvider
from vidsum.services.subscription_store import SubscriptionStore

router = APIRouter(prefix="/billing", tags=["billing"])


# -------------------------
# Schemas
# -------------------------
class PlanResponse(BaseModel):
    name: str
    price_id: Optional[str] = None
    tier_rank: int
    display_price: str
    interval: str
    description: str
    features: List[str]
    popular: bool
    action: Optional[str] = None


class SubscriptionResponse(BaseModel):
    provider_subscription_id: str
    price_id: Optional[str] = None
    plan_name: Optional[str] = None
    tier_rank: Optional[int] = None
    status: str
    current_period_end: Optional[datetime] = None
    canceled_at: Optional[datetime] = None
    amount: Optional[str] = None
    currency: Optional[str] = None
    interval: Optional[str] = None


class AccessStatusResponse(BaseModel):
    user_id: str
    tier_rank: int
    subscription: Optional[SubscriptionResponse] = None


class CheckoutRequest(BaseModel):
    price_id: str
    from_subscription_id: Optional[str] = None
    customer_id: Optional[str] = None


class CancelRequest(BaseModel):
    subscription_id: str


# -------------------------
# Routes
# -------------------------
@router.get("/plans", response_model=List[PlanResponse])
async def list_plans(
    current_user: Optional[CurrentUser] = Depends(get_optional_user),
    catalog: PlanCatalog = Depends(get_catalog),
    store: SubscriptionStore = Depends(get_store),
):
    current_price_id = None
    if current_user:
        active = await store.find_active(current_user.id)
        current_price_id = active.price_id if active else None

    plans = []
    for tier in catalog.tiers:
        action: Optional[str] = None
        if current_user:
            if tier.is_baseline:
                action = PlanAction.DOWNGRADE.value if current_price_id else PlanAction.NOOP.value
            else:
                try:
                    action = catalog.classify(current_price_id, tier.price_id).value
                except InvalidPlan:
                    action = None
        plans.append(PlanResponse(**tier.to_dict(), action=action))
    return plans


@router.get("/subscription", response_model=AccessStatusResponse)
async def get_subscription(
    current_user: CurrentUser = Depends(get_current_user),
    catalog: PlanCatalog = Depends(get_catalog),
    store: SubscriptionStore = Depends(get_store),
):
    active = await store.find_active(current_user.id)
    if active is None:
        return AccessStatusResponse(user_id=current_user.id, tier_rank=catalog.baseline.tier_rank)

    try:
        tier = catalog.get(active.price_id)
    except InvalidPlan:
        tier = None

    return AccessStatusResponse(
        user_id=current_user.id,
        tier_rank=tier.tier_rank if tier else catalog.baseline.tier_rank,
        subscription=SubscriptionResponse(
            provider_subscription_id=active.provider_subscription_id,
            price_id=active.price_id,
            plan_name=tier.name if tier else None,
            tier_rank=tier.tier_rank if tier else None,
            status=active.status,
            current_period_end=active.current_period_end,
            canceled_at=active.canceled_at,
            amount=str(active.amount) if active.amount is not None else None,
            currency=active.currency,
            interval=active.interval,
        ),
    )


@router.post("/checkout")
async def create_checkout(
    request: CheckoutRequest,
    current_user: Optional[CurrentUser] = Depends(get_optional_user),
    orchestrator: CheckoutOrchestrator = Depends(get_checkout_orchestrator),
    db: AsyncSession = Depends(get_db),
):
    result = await orchestrator.start_checkout(
        current_user,
        request.price_id,
        from_subscription_id=request.from_subscription_id,
        customer_id=request.customer_id,
    )

    await audit_service.log(
        db=db,
        event_type="checkout_created",
        source="billing",
        status="partial" if result.partial else "success",
        user_id=current_user.id,
        reference_id=result.session_id,
        details=f"price={request.price_id} action={result.action.value} upgrade_from={result.upgrade_from}",
    )

    return {
        "url": result.url,
        "session_id": result.session_id,
        "action": result.action.value,
        "partial": result.partial,
        "warnings": [w.to_dict() for w in result.warnings],
    }


@router.post("/cancel")
async def cancel_subscription(
    request: CancelRequest,
    current_user: CurrentUser = Depends(get_current_user),
    coordinator: CancellationCoordinator = Depends(get_cancellation_coordinator),
    db: AsyncSession = Depends(get_db),
):
    result = await coordinator.cancel(current_user.id, request.subscription_id)

    await audit_service.log(
        db=db,
        event_type="subscription_canceled",
        source="billing",
        status="partial" if result.partial else "success",
        user_id=current_user.id,
        reference_id=request.subscription_id,
    )
    return result.to_dict()


@router.post("/portal")
async def create_portal(
    current_user: CurrentUser = Depends(get_current_user),
    provider: BillingProvider = Depends(get_billing_provider),
    store: SubscriptionStore = Depends(get_store),
    settings: Settings = Depends(get_settings),
):
    latest = await store.find(current_user.id)
    customer_id = latest.provider_customer_id if latest else None
    if not customer_id:
        customer_id = await store.profile_customer_id(current_user.id)
    if not customer_id:
        raise NotFound("No billing customer for this account")

    url = await provider.create_portal_session(customer_id, settings.absolute_url(settings.portal_return_path))
    return {"url": url}


@router.post("/sweep")
async def sweep_duplicates(
    x_admin_token: Optional[str] = Header(default=None),
    reconciler: WebhookReconciler = Depends(get_reconciler),
    settings: Settings = Depends(get_settings),
    db: AsyncSession = Depends(get_db),
):
    if not settings.admin_token:
        raise ConfigurationError("ADMIN_TOKEN")
    if x_admin_token != settings.admin_token:
        raise NotAuthenticated("Invalid admin token")

    report = await reconciler.sweep()

    await audit_service.log(
        db=db,
        event_type="duplicate_sweep",
        source="billing",
        status="partial" if report.failures else "success",
        details=f"checked={report.users_checked} canceled={len(report.canceled)} failed={len(report.failures)}",
    )
    return {"ok": True, "result": report.to_dict()}
