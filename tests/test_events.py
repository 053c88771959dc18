from datetime import datetime, timezone
from decimal import Decimal

import pytest

from vidsum.services.events import (
    SubscriptionCreated,
    SubscriptionDeleted,
    SubscriptionUpdated,
    UnknownEvent,
    parse_event,
)
from tests.helpers import PERIOD_END, subscription_event


def test_created_event_is_parsed_into_snapshot():
    event = parse_event(subscription_event("customer.subscription.created", "sub_a", event_id="evt_1"))

    assert isinstance(event, SubscriptionCreated)
    assert event.event_id == "evt_1"
    snap = event.subscription
    assert snap.provider_subscription_id == "sub_a"
    assert snap.provider_customer_id == "cus_1"
    assert snap.user_id == "user_1"
    assert snap.status == "active"
    assert snap.price_id == "price_1R1qvqEA8X51ZZ0PgR6R9vDc"
    assert snap.amount == Decimal("1.00")
    assert snap.currency == "gbp"
    assert snap.interval == "month"
    assert snap.current_period_end == datetime.fromtimestamp(PERIOD_END, tz=timezone.utc)


@pytest.mark.parametrize(
    "event_type, variant",
    [
        ("customer.subscription.updated", SubscriptionUpdated),
        ("customer.subscription.deleted", SubscriptionDeleted),
        ("customer.subscription.canceled", SubscriptionDeleted),
    ],
)
def test_event_types_map_to_variants(event_type, variant):
    assert isinstance(parse_event(subscription_event(event_type, "sub_a")), variant)


def test_unrecognized_type_is_unknown_event():
    event = parse_event({"id": "evt_x", "type": "invoice.paid", "data": {"object": {"id": "in_1"}}})
    assert event == UnknownEvent(event_id="evt_x", event_type="invoice.paid")


def test_subscription_event_without_object_id_is_rejected():
    payload = subscription_event("customer.subscription.created", "sub_a")
    del payload["data"]["object"]["id"]
    with pytest.raises(ValueError):
        parse_event(payload)


@pytest.mark.parametrize("data", ["oops", {"object": ["sub_a"]}])
def test_subscription_event_with_non_mapping_data_is_rejected(data):
    with pytest.raises(ValueError):
        parse_event({"id": "evt_x", "type": "customer.subscription.created", "data": data})


def test_top_level_period_end_wins_over_items():
    payload = subscription_event("customer.subscription.updated", "sub_a", period_end=1_800_000_000)
    payload["data"]["object"]["current_period_end"] = 1_700_000_000

    snap = parse_event(payload).subscription
    assert snap.current_period_end == datetime.fromtimestamp(1_700_000_000, tz=timezone.utc)


def test_user_id_fallbacks():
    payload = subscription_event("customer.subscription.created", "sub_a", user_id=None)
    assert parse_event(payload).subscription.user_id is None

    payload["data"]["object"]["metadata"] = {"user_id": "user_9"}
    assert parse_event(payload).subscription.user_id == "user_9"

    payload["data"]["object"]["metadata"] = {"userId": "   "}
    assert parse_event(payload).subscription.user_id is None
