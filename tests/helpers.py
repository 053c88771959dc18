"""Shared test doubles and payload builders."""

from __future__ import annotations

import hashlib
import hmac
import json
import time
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

from jose import jwt
from sqlalchemy.ext.asyncio import AsyncSession

from vidsum.errors import ProviderError
from vidsum.models import SubscriptionRecord, User
from vidsum.services.stripe_service import CheckoutSession, ProviderSubscription, verify_webhook

JWT_SECRET = "test-jwt-secret"
WEBHOOK_SECRET = "whsec_test_secret"
ADMIN_TOKEN = "admin-token"

FIXED_NOW = datetime(2026, 1, 15, 12, 0, tzinfo=timezone.utc)
PERIOD_END = 1_900_000_000


def as_naive(value: Optional[datetime]) -> Optional[datetime]:
    """SQLite hands back naive datetimes; compare everything in naive UTC."""
    if value is None:
        return None
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def fixed_clock() -> datetime:
    return FIXED_NOW


# -------------------------
# Fake billing provider
# -------------------------
class FakeProvider:
    """In-memory stand-in for StripeService that records every call."""

    def __init__(self):
        self.customers: List[Dict[str, Any]] = []
        self.sessions: List[Dict[str, Any]] = []
        self.canceled: List[str] = []
        self.portal_sessions: List[Dict[str, str]] = []

        self.customer_failures = 0
        self.fail_cancel_for: set = set()
        self.fail_checkout = False

    async def create_customer(self, email, metadata, idempotency_key=None):
        self.customers.append({"email": email, "metadata": metadata, "idempotency_key": idempotency_key})
        if self.customer_failures > 0:
            self.customer_failures -= 1
            raise ProviderError("Stripe is unavailable", operation="create_customer")
        return f"cus_{len(self.customers)}"

    async def create_checkout_session(self, params):
        if self.fail_checkout:
            raise ProviderError("Card declined", operation="create_checkout_session", provider_code="card_declined")
        self.sessions.append(params)
        session_id = f"cs_test_{len(self.sessions)}"
        return CheckoutSession(id=session_id, url=f"https://checkout.stripe.test/{session_id}")

    async def cancel_subscription(self, subscription_id):
        if subscription_id in self.fail_cancel_for:
            raise ProviderError(f"No such subscription: {subscription_id}", operation="cancel_subscription")
        self.canceled.append(subscription_id)
        return ProviderSubscription(id=subscription_id, status="canceled")

    async def create_portal_session(self, customer_id, return_url):
        self.portal_sessions.append({"customer": customer_id, "return_url": return_url})
        return f"https://billing.stripe.test/session/{customer_id}"

    def verify_webhook(self, payload, sig_header, secret):
        return verify_webhook(payload, sig_header, secret)


# -------------------------
# Payload helpers
# -------------------------
def sign_payload(payload: bytes, secret: str = WEBHOOK_SECRET, timestamp: Optional[int] = None) -> str:
    ts = int(time.time()) if timestamp is None else timestamp
    signed = f"{ts}.".encode("utf-8") + payload
    signature = hmac.new(secret.encode("utf-8"), signed, hashlib.sha256).hexdigest()
    return f"t={ts},v1={signature}"


def subscription_event(
    event_type: str,
    subscription_id: str,
    *,
    user_id: Optional[str] = "user_1",
    price_id: str = "price_1R1qvqEA8X51ZZ0PgR6R9vDc",
    status: str = "active",
    customer: str = "cus_1",
    period_end: int = PERIOD_END,
    unit_amount: int = 100,
    event_id: Optional[str] = None,
) -> Dict[str, Any]:
    return {
        "id": event_id or f"evt_{uuid.uuid4().hex[:12]}",
        "object": "event",
        "type": event_type,
        "data": {
            "object": {
                "id": subscription_id,
                "object": "subscription",
                "customer": customer,
                "status": status,
                "metadata": {"userId": user_id} if user_id else {},
                "items": {
                    "data": [
                        {
                            "current_period_end": period_end,
                            "price": {
                                "id": price_id,
                                "unit_amount": unit_amount,
                                "currency": "gbp",
                                "recurring": {"interval": "month"},
                            },
                        }
                    ]
                },
            }
        },
    }


def encode(event: Dict[str, Any]) -> bytes:
    return json.dumps(event).encode("utf-8")


def make_token(user_id: str = "user_1", email: Optional[str] = "user1@example.com", secret: str = JWT_SECRET) -> str:
    claims = {"sub": user_id, "exp": datetime.now(timezone.utc) + timedelta(hours=1)}
    if email:
        claims["email"] = email
    return jwt.encode(claims, secret, algorithm="HS256")


def auth_headers(user_id: str = "user_1", email: Optional[str] = "user1@example.com") -> Dict[str, str]:
    return {"Authorization": f"Bearer {make_token(user_id, email)}"}


async def add_record(
    session: AsyncSession,
    user_id: str,
    provider_subscription_id: str,
    *,
    price_id: str = "price_1R1qvqEA8X51ZZ0PgR6R9vDc",
    status: str = "active",
    customer_id: Optional[str] = "cus_1",
    created_at: Optional[datetime] = None,
    current_period_end: Optional[datetime] = None,
) -> SubscriptionRecord:
    if await session.get(User, user_id) is None:
        session.add(User(id=user_id))
    record = SubscriptionRecord(
        user_id=user_id,
        provider_subscription_id=provider_subscription_id,
        provider_customer_id=customer_id,
        price_id=price_id,
        status=status,
        current_period_end=current_period_end,
        created_at=created_at or FIXED_NOW,
    )
    session.add(record)
    await session.commit()
    return record


