"""
Checkout orchestration.

Builds Stripe checkout sessions for new subscriptions and plan changes.
A plan change cancels the old subscription before the new session is
created so the user is never billed twice; that cancellation is
best-effort and its failure comes back as a ``PartialSuccess`` warning
(the webhook dedup pass and the sweep clean up whatever is left).
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, List, Optional

from sqlalchemy.exc import SQLAlchemyError

from vidsum.errors import InvalidPlan, NotAuthenticated, NotFound, ProviderError
from vidsum.services.plans import PlanAction, PlanCatalog
from vidsum.services.results import PartialSuccess
from vidsum.services.stripe_service import BillingProvider
from vidsum.services.subscription_store import SubscriptionStore

logger = logging.getLogger(__name__)

NEW_SUBSCRIPTION = "new_subscription"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class CurrentUser:
    id: str
    email: Optional[str] = None


@dataclass(frozen=True)
class CheckoutRedirects:
    base_url: str
    success_path: str = "/settings?upgraded=true"
    cancel_path: str = "/pricing"

    def _join(self, path: str) -> str:
        return self.base_url.rstrip("/") + "/" + path.lstrip("/")

    @property
    def success_url(self) -> str:
        return self._join(self.success_path)

    @property
    def cancel_url(self) -> str:
        return self._join(self.cancel_path)


@dataclass
class CheckoutResult:
    url: str
    session_id: str
    action: PlanAction
    customer_id: str
    upgrade_from: Optional[str] = None
    warnings: List[PartialSuccess] = field(default_factory=list)

    @property
    def partial(self) -> bool:
        return bool(self.warnings)


class CheckoutOrchestrator:
    def __init__(
        self,
        provider: BillingProvider,
        store: SubscriptionStore,
        catalog: PlanCatalog,
        redirects: CheckoutRedirects,
        customer_retries: int = 2,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.provider = provider
        self.store = store
        self.catalog = catalog
        self.redirects = redirects
        self.customer_retries = customer_retries
        self.clock = clock

    async def start_checkout(
        self,
        user: Optional[CurrentUser],
        price_id: str,
        from_subscription_id: Optional[str] = None,
        customer_id: Optional[str] = None,
    ) -> CheckoutResult:
        if user is None or not user.id:
            raise NotAuthenticated()

        tier = self.catalog.get(price_id)
        if tier.is_baseline:
            raise InvalidPlan("The free tier cannot be purchased", price_id=price_id)

        current = await self.store.find_active(user.id)
        current_price_id = current.price_id if current else None
        current_provider_id = current.provider_subscription_id if current else None
        try:
            action = self.catalog.classify(current_price_id, price_id)
        except InvalidPlan:
            # legacy price on the active record: still a change of plan
            logger.warning("[CHECKOUT] active price %s not in catalog for user %s", current_price_id, user.id)
            action = PlanAction.UPGRADE

        if action == PlanAction.NOOP:
            raise InvalidPlan("Already subscribed to this plan", price_id=price_id, code="PLAN_UNCHANGED")

        if from_subscription_id is None and action in (PlanAction.UPGRADE, PlanAction.DOWNGRADE):
            from_subscription_id = current_provider_id

        previous_record_id = None
        previous_period_end = None
        if from_subscription_id:
            previous = await self.store.find_by_provider_id(from_subscription_id)
            if previous is None or previous.user_id != user.id:
                raise NotFound("Subscription not found", subscription_id=from_subscription_id)
            if previous.is_active:
                previous_record_id = previous.id
                previous_period_end = previous.current_period_end

        customer_id = await self._resolve_customer(user, customer_id)

        warnings: List[PartialSuccess] = []
        if previous_record_id:
            warnings.extend(await self._terminate_previous(previous_record_id, from_subscription_id, previous_period_end))

        metadata = {
            "userId": user.id,
            "upgradeFrom": from_subscription_id or NEW_SUBSCRIPTION,
        }
        session = await self.provider.create_checkout_session({
            "customer": customer_id,
            "mode": "subscription",
            "payment_method_types": ["card"],
            "line_items": [{"price": price_id, "quantity": 1}],
            "success_url": self.redirects.success_url,
            "cancel_url": self.redirects.cancel_url,
            "client_reference_id": user.id,
            "metadata": metadata,
            "subscription_data": {"metadata": metadata},
        })
        logger.info(
            "[CHECKOUT] session=%s user=%s price=%s action=%s",
            session.id, user.id, price_id, action.value,
        )

        return CheckoutResult(
            url=session.url,
            session_id=session.id,
            action=action,
            customer_id=customer_id,
            upgrade_from=from_subscription_id,
            warnings=warnings,
        )

    async def _resolve_customer(self, user: CurrentUser, customer_id: Optional[str]) -> str:
        latest = await self.store.find(user.id)
        known = [latest.provider_customer_id if latest else None, await self.store.profile_customer_id(user.id)]
        known = [c for c in known if c]

        if customer_id:
            # only a customer already bound to this user may be reused
            if customer_id not in known:
                logger.warning("[CHECKOUT] user %s asked for customer %s it does not own", user.id, customer_id)
                raise NotFound("Customer not found")
            return customer_id

        if known:
            return known[0]

        # Same idempotency key on every attempt: a retry after a lost
        # response returns the customer Stripe already created.
        idempotency_key = f"customer-create-{user.id}"
        attempt = 0
        while True:
            try:
                new_id = await self.provider.create_customer(
                    user.email, {"userId": user.id}, idempotency_key=idempotency_key
                )
                break
            except ProviderError as e:
                attempt += 1
                if attempt > self.customer_retries:
                    raise
                logger.warning("[CHECKOUT] create_customer attempt %d failed for %s: %s", attempt, user.id, e.message)

        logger.info("[CHECKOUT] created customer %s for user %s", new_id, user.id)
        await self.store.remember_customer_id(user.id, new_id, email=user.email)
        return new_id

    async def _terminate_previous(
        self, record_id: str, subscription_id: str, period_end: Optional[datetime]
    ) -> List[PartialSuccess]:
        try:
            await self.provider.cancel_subscription(subscription_id)
        except ProviderError as e:
            logger.error("[CHECKOUT] could not cancel previous subscription %s: %s", subscription_id, e.message)
            return [PartialSuccess(step="cancel_previous_subscription", message=e.message, subscription_id=subscription_id)]

        try:
            await self.store.mark_canceled(record_id, canceled_at=self.clock(), ends_at=period_end)
        except SQLAlchemyError as e:
            logger.error("[CHECKOUT] canceled %s at Stripe but local update failed: %s", subscription_id, e)
            return [PartialSuccess(step="mirror_cancellation", message=str(e), subscription_id=subscription_id)]
        return []
