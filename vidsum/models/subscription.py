from __future__ import annotations

import uuid
from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy import String, DateTime, Numeric, ForeignKey
from sqlalchemy.orm import Mapped, mapped_column

from vidsum.database import Base


def utcnow():
    return datetime.now(timezone.utc)


class SubscriptionStatus:
    # Stripe may send others (trialing, unpaid, incomplete...); they are stored as-is.
    ACTIVE = "active"
    CANCELED = "canceled"
    PAST_DUE = "past_due"


class SubscriptionRecord(Base):
    __tablename__ = "subscriptions"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id: Mapped[str] = mapped_column(String(64), ForeignKey("users.id"), index=True, nullable=False)

    provider_subscription_id: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    provider_customer_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    price_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    status: Mapped[str] = mapped_column(String(50), index=True, nullable=False, default=SubscriptionStatus.ACTIVE)

    current_period_end: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    canceled_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    ends_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    amount: Mapped[Decimal | None] = mapped_column(Numeric(12, 2), nullable=True)
    currency: Mapped[str | None] = mapped_column(String(8), nullable=True)
    interval: Mapped[str | None] = mapped_column(String(16), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)

    @property
    def is_active(self) -> bool:
        return self.status == SubscriptionStatus.ACTIVE

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "provider_subscription_id": self.provider_subscription_id,
            "provider_customer_id": self.provider_customer_id,
            "price_id": self.price_id,
            "status": self.status,
            "current_period_end": self.current_period_end,
            "canceled_at": self.canceled_at,
            "ends_at": self.ends_at,
            "amount": str(self.amount) if self.amount is not None else None,
            "currency": self.currency,
            "interval": self.interval,
        }
