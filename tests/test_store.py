from datetime import timedelta
from decimal import Decimal

import pytest

from vidsum.models import SubscriptionRecord, SubscriptionStatus
from vidsum.services.subscription_store import SubscriptionStore
from tests.helpers import FIXED_NOW, add_record, as_naive


@pytest.mark.asyncio
async def test_upsert_inserts_then_updates(store, session_maker):
    created = await store.upsert_by_provider_id(
        "sub_a",
        user_id="user_1",
        status=SubscriptionStatus.ACTIVE,
        price_id="price_basic",
        amount=Decimal("1.00"),
        currency="gbp",
    )
    assert created.user_id == "user_1"

    await store.upsert_by_provider_id("sub_a", status=SubscriptionStatus.PAST_DUE, price_id=None)

    async with session_maker() as fresh:
        rows = (await fresh.execute(SubscriptionRecord.__table__.select())).all()
        assert len(rows) == 1
        record = await fresh.get(SubscriptionRecord, created.id)
        assert record.status == SubscriptionStatus.PAST_DUE
        # None leaves the stored value alone
        assert record.price_id == "price_basic"
        assert record.currency == "gbp"


@pytest.mark.asyncio
async def test_upsert_insert_needs_user_id(store):
    with pytest.raises(ValueError):
        await store.upsert_by_provider_id("sub_orphan", status=SubscriptionStatus.ACTIVE)


@pytest.mark.asyncio
async def test_active_lookups_are_newest_first(store, session):
    await add_record(session, "user_1", "sub_old", created_at=FIXED_NOW - timedelta(days=2))
    await add_record(session, "user_1", "sub_new", created_at=FIXED_NOW)
    await add_record(session, "user_1", "sub_gone", status=SubscriptionStatus.CANCELED, created_at=FIXED_NOW + timedelta(days=1))

    active = await store.find_all_active("user_1")
    assert [r.provider_subscription_id for r in active] == ["sub_new", "sub_old"]
    assert (await store.find_active("user_1")).provider_subscription_id == "sub_new"
    assert (await store.find("user_1")).provider_subscription_id == "sub_gone"

    others = await store.find_all_active("user_1", exclude_provider_id="sub_new")
    assert [r.provider_subscription_id for r in others] == ["sub_old"]

    assert await store.find_active("user_2") is None


@pytest.mark.asyncio
async def test_update_status_by_provider_id(store, session):
    await add_record(session, "user_1", "sub_a")
    first = FIXED_NOW
    later = FIXED_NOW + timedelta(hours=3)

    record = await store.update_status(
        provider_subscription_id="sub_a", status=SubscriptionStatus.CANCELED, canceled_at=first
    )
    assert record.status == SubscriptionStatus.CANCELED

    record = await store.update_status(
        provider_subscription_id="sub_a",
        status=SubscriptionStatus.CANCELED,
        canceled_at=later,
        keep_canceled_at=True,
    )
    assert as_naive(record.canceled_at) == as_naive(first)

    assert await store.update_status(provider_subscription_id="sub_missing", status=SubscriptionStatus.CANCELED) is None


@pytest.mark.asyncio
async def test_update_status_needs_a_key(store):
    with pytest.raises(ValueError):
        await store.update_status(status=SubscriptionStatus.CANCELED)


@pytest.mark.asyncio
async def test_mark_canceled_keeps_paid_period(store, session):
    period_end = FIXED_NOW + timedelta(days=20)
    record = await add_record(session, "user_1", "sub_a", current_period_end=period_end)

    updated = await store.mark_canceled(record.id, canceled_at=FIXED_NOW, ends_at=period_end)

    assert updated.status == SubscriptionStatus.CANCELED
    assert as_naive(updated.ends_at) == as_naive(period_end)
    assert as_naive(updated.canceled_at) == as_naive(FIXED_NOW)


@pytest.mark.asyncio
async def test_users_with_multiple_active(store, session):
    await add_record(session, "user_1", "sub_1a")
    await add_record(session, "user_1", "sub_1b")
    await add_record(session, "user_2", "sub_2a")
    await add_record(session, "user_3", "sub_3a")
    await add_record(session, "user_3", "sub_3b", status=SubscriptionStatus.CANCELED)

    assert await store.users_with_multiple_active() == ["user_1"]


@pytest.mark.asyncio
async def test_customer_id_on_profile(store):
    assert await store.profile_customer_id("user_1") is None

    await store.remember_customer_id("user_1", "cus_42", email="user1@example.com")

    assert await store.profile_customer_id("user_1") == "cus_42"
    user = await store.ensure_user("user_1")
    assert user.email == "user1@example.com"


@pytest.mark.asyncio
async def test_upsert_that_loses_insert_race_updates_winner(session, session_maker):
    class StaleReadStore(SubscriptionStore):
        # first lookup misses, as if another delivery inserted right after it
        misses = 1

        async def find_by_provider_id(self, provider_subscription_id):
            if self.misses:
                self.misses -= 1
                return None
            return await super().find_by_provider_id(provider_subscription_id)

    async with session_maker() as other:
        winner = await add_record(other, "user_1", "sub_a", status=SubscriptionStatus.ACTIVE)

    record = await StaleReadStore(session).upsert_by_provider_id(
        "sub_a", user_id="user_1", status=SubscriptionStatus.PAST_DUE, price_id="price_late"
    )

    assert record.id == winner.id
    async with session_maker() as fresh:
        rows = (await fresh.execute(SubscriptionRecord.__table__.select())).all()
        assert len(rows) == 1
        stored = await fresh.get(SubscriptionRecord, winner.id)
        assert stored.status == SubscriptionStatus.PAST_DUE
        assert stored.price_id == "price_late"
