"""
Webhook event variants.

Stripe payloads are parsed once, right after signature verification, into
one of the event classes below. The reconciler dispatches on the class, so
nothing downstream of this module branches on event-type strings.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict, Optional, Union


@dataclass(frozen=True)
class SubscriptionSnapshot:
    provider_subscription_id: str
    provider_customer_id: Optional[str] = None
    status: Optional[str] = None
    price_id: Optional[str] = None
    current_period_end: Optional[datetime] = None
    amount: Optional[Decimal] = None
    currency: Optional[str] = None
    interval: Optional[str] = None
    metadata: Dict[str, str] = field(default_factory=dict)

    @property
    def user_id(self) -> Optional[str]:
        for key in ("userId", "user_id"):
            value = self.metadata.get(key)
            if value and value.strip():
                return value.strip()
        return None


@dataclass(frozen=True)
class SubscriptionCreated:
    event_id: str
    subscription: SubscriptionSnapshot


@dataclass(frozen=True)
class SubscriptionUpdated:
    event_id: str
    subscription: SubscriptionSnapshot


@dataclass(frozen=True)
class SubscriptionDeleted:
    event_id: str
    subscription: SubscriptionSnapshot


@dataclass(frozen=True)
class UnknownEvent:
    event_id: str
    event_type: str


WebhookEvent = Union[SubscriptionCreated, SubscriptionUpdated, SubscriptionDeleted, UnknownEvent]

SUBSCRIPTION_EVENT_TYPES = {
    "customer.subscription.created": SubscriptionCreated,
    "customer.subscription.updated": SubscriptionUpdated,
    "customer.subscription.deleted": SubscriptionDeleted,
    "customer.subscription.canceled": SubscriptionDeleted,
}


def _safe_get_meta(obj: Dict[str, Any]) -> Dict[str, str]:
    meta = obj.get("metadata") or {}
    out: Dict[str, str] = {}
    for k, v in meta.items():
        if v is None:
            continue
        out[str(k)] = str(v)
    return out


def _to_datetime(ts: Any) -> Optional[datetime]:
    if ts is None:
        return None
    return datetime.fromtimestamp(int(ts), tz=timezone.utc)


def _first_item(obj: Dict[str, Any]) -> Dict[str, Any]:
    data = (obj.get("items") or {}).get("data") or []
    return data[0] if data else {}


def _extract_current_period_end(obj: Dict[str, Any]) -> Optional[datetime]:
    """
    Older API versions put ``current_period_end`` on the subscription;
    newer ones put it on each subscription item.
    """
    if obj.get("current_period_end") is not None:
        return _to_datetime(obj["current_period_end"])
    ends = [
        int(item["current_period_end"])
        for item in (obj.get("items") or {}).get("data") or []
        if item.get("current_period_end") is not None
    ]
    if ends:
        return _to_datetime(max(ends))
    return _to_datetime(obj.get("cancel_at"))


def parse_subscription(obj: Dict[str, Any]) -> SubscriptionSnapshot:
    item = _first_item(obj)
    price = item.get("price") or obj.get("plan") or {}
    unit_amount = price.get("unit_amount")
    recurring = price.get("recurring") or {}
    return SubscriptionSnapshot(
        provider_subscription_id=str(obj["id"]),
        provider_customer_id=obj.get("customer"),
        status=obj.get("status"),
        price_id=price.get("id"),
        current_period_end=_extract_current_period_end(obj),
        amount=(Decimal(int(unit_amount)) / 100) if unit_amount is not None else None,
        currency=price.get("currency"),
        interval=recurring.get("interval") or price.get("interval"),
        metadata=_safe_get_meta(obj),
    )


def parse_event(payload: Dict[str, Any]) -> WebhookEvent:
    """Turn a verified Stripe event payload into its event variant."""
    event_id = str(payload.get("id") or "")
    event_type = str(payload.get("type") or "")
    variant = SUBSCRIPTION_EVENT_TYPES.get(event_type)
    if variant is None:
        return UnknownEvent(event_id=event_id, event_type=event_type)

    data = payload.get("data") or {}
    obj = (data.get("object") if isinstance(data, dict) else None) or {}
    if not isinstance(obj, dict):
        raise ValueError(f"{event_type} event {event_id} object is not a mapping")
    if not obj.get("id"):
        raise ValueError(f"{event_type} event {event_id} has no subscription id")
    return variant(event_id=event_id, subscription=parse_subscription(obj))
