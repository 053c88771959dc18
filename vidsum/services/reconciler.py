"""
Webhook Reconciler

Applies verified Stripe subscription events to the local store and keeps
each user down to a single active subscription.

Transition table (keyed by provider subscription id):

    SubscriptionCreated   dedup pass over the user's other active records,
                          then upsert the new record as active
    SubscriptionUpdated   upsert status/period/price fields; unknown ids are
                          treated as created
    SubscriptionDeleted   status -> canceled, canceled_at set once, row kept
    UnknownEvent          acknowledged, no-op

Every write is an upsert keyed by provider id, so redelivered events can be
replayed. Events are applied in arrival order: an older event delivered
late overwrites newer state. ``sweep`` is the backstop for duplicates the
event-driven pass missed.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Awaitable, Callable, Dict, List, Optional, Type

from sqlalchemy.exc import SQLAlchemyError

from vidsum.errors import ProviderError
from vidsum.models.subscription import SubscriptionStatus
from vidsum.services.events import (
    SubscriptionCreated,
    SubscriptionDeleted,
    SubscriptionSnapshot,
    SubscriptionUpdated,
    UnknownEvent,
    WebhookEvent,
)
from vidsum.services.results import PartialSuccess
from vidsum.services.stripe_service import BillingProvider
from vidsum.services.subscription_store import SubscriptionStore

logger = logging.getLogger(__name__)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


EVENT_NAMES: Dict[type, str] = {
    SubscriptionCreated: "subscription.created",
    SubscriptionUpdated: "subscription.updated",
    SubscriptionDeleted: "subscription.deleted",
}


@dataclass
class ReconcileOutcome:
    event_id: str
    event_type: str
    action: str
    subscription_id: Optional[str] = None
    user_id: Optional[str] = None
    canceled_duplicates: List[str] = field(default_factory=list)
    warnings: List[PartialSuccess] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "event_id": self.event_id,
            "event_type": self.event_type,
            "action": self.action,
            "subscription_id": self.subscription_id,
            "user_id": self.user_id,
            "canceled_duplicates": self.canceled_duplicates,
            "warnings": [w.to_dict() for w in self.warnings],
        }


@dataclass
class SweepReport:
    users_checked: int = 0
    kept: Dict[str, str] = field(default_factory=dict)
    canceled: List[str] = field(default_factory=list)
    failures: List[PartialSuccess] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "users_checked": self.users_checked,
            "kept": self.kept,
            "canceled": self.canceled,
            "failures": [f.to_dict() for f in self.failures],
        }


class WebhookReconciler:
    def __init__(
        self,
        provider: BillingProvider,
        store: SubscriptionStore,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.provider = provider
        self.store = store
        self.clock = clock
        self._handlers: Dict[Type, Callable[..., Awaitable[ReconcileOutcome]]] = {
            SubscriptionCreated: self._on_created,
            SubscriptionUpdated: self._on_updated,
            SubscriptionDeleted: self._on_deleted,
            UnknownEvent: self._on_unknown,
        }

    async def reconcile(self, event: WebhookEvent) -> ReconcileOutcome:
        handler = self._handlers.get(type(event), self._on_unknown)
        return await handler(event)

    # -------------------------------------------------------------------------
    # Transitions
    # -------------------------------------------------------------------------

    async def _on_created(self, event: SubscriptionCreated) -> ReconcileOutcome:
        snap = event.subscription
        user_id = snap.user_id
        if not user_id:
            logger.warning("[WEBHOOK] %s for %s has no userId metadata, dropping", event.event_id, snap.provider_subscription_id)
            return self._outcome(event, "dropped")

        outcome = self._outcome(event, "created", user_id=user_id)
        await self._dedup_pass(user_id, snap.provider_subscription_id, outcome)
        await self.store.upsert_by_provider_id(
            snap.provider_subscription_id,
            user_id=user_id,
            status=SubscriptionStatus.ACTIVE,
            **self._snapshot_fields(snap),
        )
        logger.info("[WEBHOOK] created sub=%s user=%s price=%s", snap.provider_subscription_id, user_id, snap.price_id)
        return outcome

    async def _on_updated(self, event: SubscriptionUpdated) -> ReconcileOutcome:
        snap = event.subscription
        existing = await self.store.find_by_provider_id(snap.provider_subscription_id)

        if existing is None:
            user_id = snap.user_id
            if not user_id:
                logger.warning("[WEBHOOK] update for unknown %s without userId, dropping", snap.provider_subscription_id)
                return self._outcome(event, "dropped")
            status = snap.status or SubscriptionStatus.ACTIVE
            outcome = self._outcome(event, "created", user_id=user_id)
            if status == SubscriptionStatus.ACTIVE:
                await self._dedup_pass(user_id, snap.provider_subscription_id, outcome)
            await self.store.upsert_by_provider_id(
                snap.provider_subscription_id,
                user_id=user_id,
                status=status,
                canceled_at=self.clock() if status == SubscriptionStatus.CANCELED else None,
                **self._snapshot_fields(snap),
            )
            logger.info("[WEBHOOK] inserted sub=%s from update, status=%s", snap.provider_subscription_id, status)
            return outcome

        user_id = existing.user_id
        needs_canceled_at = snap.status == SubscriptionStatus.CANCELED and existing.canceled_at is None
        await self.store.upsert_by_provider_id(
            snap.provider_subscription_id,
            status=snap.status,
            canceled_at=self.clock() if needs_canceled_at else None,
            **self._snapshot_fields(snap),
        )
        logger.info("[WEBHOOK] updated sub=%s status=%s", snap.provider_subscription_id, snap.status)
        return self._outcome(event, "updated", user_id=user_id)

    async def _on_deleted(self, event: SubscriptionDeleted) -> ReconcileOutcome:
        snap = event.subscription
        record = await self.store.update_status(
            provider_subscription_id=snap.provider_subscription_id,
            status=SubscriptionStatus.CANCELED,
            canceled_at=self.clock(),
            keep_canceled_at=True,
        )
        if record is None:
            logger.warning("[WEBHOOK] deletion of unknown subscription %s ignored", snap.provider_subscription_id)
            return self._outcome(event, "ignored")
        logger.info("[WEBHOOK] canceled sub=%s user=%s", snap.provider_subscription_id, record.user_id)
        return self._outcome(event, "canceled", user_id=record.user_id)

    async def _on_unknown(self, event: UnknownEvent) -> ReconcileOutcome:
        logger.debug("[WEBHOOK] ignoring %s (%s)", event.event_type, event.event_id)
        return ReconcileOutcome(event_id=event.event_id, event_type=event.event_type, action="ignored")

    # -------------------------------------------------------------------------
    # Duplicate handling
    # -------------------------------------------------------------------------

    async def _dedup_pass(self, user_id: str, keep_provider_id: str, outcome: ReconcileOutcome) -> None:
        others = await self.store.find_all_active(user_id, exclude_provider_id=keep_provider_id)
        targets = [(r.id, r.provider_subscription_id, r.current_period_end) for r in others]
        if targets:
            logger.info("[WEBHOOK] user %s has %d other active subscription(s), canceling", user_id, len(targets))
        for record_id, provider_id, period_end in targets:
            warning = await self._cancel_duplicate(record_id, provider_id, period_end)
            if warning is None:
                outcome.canceled_duplicates.append(provider_id)
            else:
                outcome.warnings.append(warning)

    async def _cancel_duplicate(
        self, record_id: str, provider_id: str, period_end: Optional[datetime]
    ) -> Optional[PartialSuccess]:
        """
        Cancel at Stripe first, then locally. ``ends_at`` keeps the paid
        period so access is not revoked mid-period.
        """
        try:
            await self.provider.cancel_subscription(provider_id)
        except ProviderError as e:
            logger.error("[DEDUP] failed to cancel %s at Stripe: %s", provider_id, e.message)
            return PartialSuccess(step="cancel_duplicate", message=e.message, subscription_id=provider_id)

        try:
            await self.store.mark_canceled(record_id, canceled_at=self.clock(), ends_at=period_end)
        except SQLAlchemyError as e:
            logger.error("[DEDUP] canceled %s at Stripe but local update failed: %s", provider_id, e)
            return PartialSuccess(step="mirror_cancellation", message=str(e), subscription_id=provider_id)

        logger.info("[DEDUP] canceled duplicate subscription %s", provider_id)
        return None

    async def sweep(self) -> SweepReport:
        """
        Find users with more than one active record, keep the most recently
        created one and cancel the rest. Safe to run repeatedly.
        """
        report = SweepReport()
        user_ids = await self.store.users_with_multiple_active()
        report.users_checked = len(user_ids)
        if not user_ids:
            logger.info("[SWEEP] no users with multiple active subscriptions")
            return report

        for user_id in user_ids:
            active = await self.store.find_all_active(user_id)
            rows = [(r.id, r.provider_subscription_id, r.current_period_end) for r in active]
            if len(rows) < 2:
                continue
            report.kept[user_id] = rows[0][1]
            for record_id, provider_id, period_end in rows[1:]:
                warning = await self._cancel_duplicate(record_id, provider_id, period_end)
                if warning is None:
                    report.canceled.append(provider_id)
                else:
                    report.failures.append(warning)

        logger.info(
            "[SWEEP] checked=%d canceled=%d failed=%d",
            report.users_checked, len(report.canceled), len(report.failures),
        )
        return report

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    @staticmethod
    def _snapshot_fields(snap: SubscriptionSnapshot) -> dict:
        return {
            "provider_customer_id": snap.provider_customer_id,
            "price_id": snap.price_id,
            "current_period_end": snap.current_period_end,
            "amount": snap.amount,
            "currency": snap.currency,
            "interval": snap.interval,
        }

    @staticmethod
    def _outcome(event, action: str, user_id: Optional[str] = None) -> ReconcileOutcome:
        return ReconcileOutcome(
            event_id=event.event_id,
            event_type=EVENT_NAMES.get(type(event), "unknown"),
            action=action,
            subscription_id=event.subscription.provider_subscription_id,
            user_id=user_id,
        )
