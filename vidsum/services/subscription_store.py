from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, List, Optional

from sqlalchemy import select, func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from vidsum.models.subscription import SubscriptionRecord, SubscriptionStatus
from vidsum.models.user import User

logger = logging.getLogger(__name__)


class SubscriptionStore:
    """
    Persistence for subscription records and the customer id on user profiles.

    Every mutation commits on its own: one record per transaction, so
    readers see either the old or the new row, never a mix.
    """

    def __init__(self, db: AsyncSession):
        self.db = db

    # -------------------------
    # Reads
    # -------------------------
    async def find(self, user_id: str) -> Optional[SubscriptionRecord]:
        """Most recent record for the user, whatever its status."""
        result = await self.db.execute(
            select(SubscriptionRecord)
            .where(SubscriptionRecord.user_id == user_id)
            .order_by(SubscriptionRecord.created_at.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def find_active(self, user_id: str) -> Optional[SubscriptionRecord]:
        active = await self.find_all_active(user_id)
        return active[0] if active else None

    async def find_all_active(self, user_id: str, exclude_provider_id: Optional[str] = None) -> List[SubscriptionRecord]:
        """Active records of the user, newest first."""
        stmt = select(SubscriptionRecord).where(
            SubscriptionRecord.user_id == user_id,
            SubscriptionRecord.status == SubscriptionStatus.ACTIVE,
        )
        if exclude_provider_id:
            stmt = stmt.where(SubscriptionRecord.provider_subscription_id != exclude_provider_id)
        result = await self.db.execute(stmt.order_by(SubscriptionRecord.created_at.desc()))
        return list(result.scalars().all())

    async def find_by_provider_id(self, provider_subscription_id: str) -> Optional[SubscriptionRecord]:
        result = await self.db.execute(
            select(SubscriptionRecord).where(
                SubscriptionRecord.provider_subscription_id == provider_subscription_id
            )
        )
        return result.scalar_one_or_none()

    async def users_with_multiple_active(self) -> List[str]:
        result = await self.db.execute(
            select(SubscriptionRecord.user_id)
            .where(SubscriptionRecord.status == SubscriptionStatus.ACTIVE)
            .group_by(SubscriptionRecord.user_id)
            .having(func.count(SubscriptionRecord.id) > 1)
        )
        return [row[0] for row in result.all()]

    # -------------------------
    # Writes
    # -------------------------
    async def upsert_by_provider_id(
        self,
        provider_subscription_id: str,
        *,
        user_id: Optional[str] = None,
        **fields: Any,
    ) -> SubscriptionRecord:
        """
        Insert or update the record keyed by ``provider_subscription_id``.

        ``None`` values leave the stored column untouched. Inserting needs a
        ``user_id``; an insert that loses a race to a concurrent delivery
        falls back to updating the row the other delivery wrote.
        """
        values = {k: v for k, v in fields.items() if v is not None}
        record = await self.find_by_provider_id(provider_subscription_id)

        if record is None:
            if not user_id:
                raise ValueError(f"cannot insert subscription {provider_subscription_id} without a user id")
            await self.ensure_user(user_id)
            record = SubscriptionRecord(
                provider_subscription_id=provider_subscription_id,
                user_id=user_id,
                **values,
            )
            self.db.add(record)
            try:
                await self.db.commit()
                return record
            except IntegrityError:
                await self.db.rollback()
                logger.info("[STORE] concurrent insert for %s, updating instead", provider_subscription_id)
                record = await self.find_by_provider_id(provider_subscription_id)
                if record is None:
                    raise

        for key, value in values.items():
            setattr(record, key, value)
        try:
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise
        return record

    async def update_status(
        self,
        *,
        status: str,
        record_id: Optional[str] = None,
        provider_subscription_id: Optional[str] = None,
        canceled_at: Optional[datetime] = None,
        ends_at: Optional[datetime] = None,
        keep_canceled_at: bool = False,
    ) -> Optional[SubscriptionRecord]:
        """
        Set the status (and timestamps) of one record picked by local id or by
        provider id. Returns the updated record, or None when nothing matched.

        With ``keep_canceled_at`` an already recorded cancellation time wins,
        so replayed cancellations do not move it.
        """
        if record_id:
            record = await self.db.get(SubscriptionRecord, record_id)
        elif provider_subscription_id:
            record = await self.find_by_provider_id(provider_subscription_id)
        else:
            raise ValueError("update_status needs record_id or provider_subscription_id")

        if record is None:
            return None

        record.status = status
        if ends_at is not None:
            record.ends_at = ends_at
        if canceled_at is not None and not (keep_canceled_at and record.canceled_at is not None):
            record.canceled_at = canceled_at

        try:
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise
        return record

    async def mark_canceled(
        self,
        record_id: str,
        *,
        canceled_at: datetime,
        ends_at: Optional[datetime] = None,
    ) -> Optional[SubscriptionRecord]:
        return await self.update_status(
            record_id=record_id,
            status=SubscriptionStatus.CANCELED,
            canceled_at=canceled_at,
            ends_at=ends_at,
        )

    # -------------------------
    # User profile
    # -------------------------
    async def profile_customer_id(self, user_id: str) -> Optional[str]:
        result = await self.db.execute(select(User.stripe_customer_id).where(User.id == user_id))
        return result.scalar_one_or_none()

    async def remember_customer_id(self, user_id: str, customer_id: str, email: Optional[str] = None) -> None:
        user = await self.ensure_user(user_id, email=email)
        user.stripe_customer_id = customer_id
        await self.db.commit()

    async def ensure_user(self, user_id: str, email: Optional[str] = None) -> User:
        user = await self.db.get(User, user_id)
        if user is None:
            user = User(id=user_id, email=email)
            self.db.add(user)
            await self.db.flush()
        elif email and not user.email:
            user.email = email
        return user
