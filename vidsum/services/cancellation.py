from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Optional

from sqlalchemy.exc import SQLAlchemyError

from vidsum.errors import NotAuthenticated, NotFound
from vidsum.services.results import PartialSuccess
from vidsum.services.stripe_service import BillingProvider
from vidsum.services.subscription_store import SubscriptionStore

logger = logging.getLogger(__name__)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class CancellationResult:
    subscription_id: str
    provider_status: Optional[str]
    canceled_at: datetime
    warning: Optional[PartialSuccess] = None

    @property
    def partial(self) -> bool:
        return self.warning is not None

    def to_dict(self) -> dict:
        return {
            "success": True,
            "partial": self.partial,
            "subscription_id": self.subscription_id,
            "status": self.provider_status,
            "canceled_at": self.canceled_at,
            "warning": self.warning.to_dict() if self.warning else None,
        }


class CancellationCoordinator:
    """
    User-initiated cancellation: Stripe first, then the local mirror.

    A Stripe failure aborts with ProviderError and leaves the record alone.
    A local failure after Stripe succeeded is reported as a warning on an
    otherwise successful result.
    """

    def __init__(
        self,
        provider: BillingProvider,
        store: SubscriptionStore,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.provider = provider
        self.store = store
        self.clock = clock

    async def cancel(self, user_id: Optional[str], provider_subscription_id: str) -> CancellationResult:
        if not user_id:
            raise NotAuthenticated()

        record = await self.store.find_by_provider_id(provider_subscription_id)
        if record is None or record.user_id != user_id:
            raise NotFound("Subscription not found", subscription_id=provider_subscription_id)
        record_id = record.id

        canceled = await self.provider.cancel_subscription(provider_subscription_id)
        canceled_at = self.clock()
        logger.info("[CANCEL] Stripe canceled %s for user %s (status=%s)", provider_subscription_id, user_id, canceled.status)

        result = CancellationResult(
            subscription_id=provider_subscription_id,
            provider_status=canceled.status,
            canceled_at=canceled_at,
        )
        try:
            await self.store.mark_canceled(record_id, canceled_at=canceled_at)
        except SQLAlchemyError as e:
            logger.error("[CANCEL] %s canceled at Stripe but local mirror is stale: %s", provider_subscription_id, e)
            result.warning = PartialSuccess(
                step="mirror_cancellation",
                message=f"Canceled at Stripe, local record not updated: {e}",
                subscription_id=provider_subscription_id,
            )
        return result
