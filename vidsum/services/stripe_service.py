from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Dict, Optional, Protocol

import stripe

from vidsum.config import Settings
from vidsum.errors import ConfigurationError, InvalidSignature, ProviderError
from vidsum.services.events import WebhookEvent, parse_event

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StripeConfig:
    secret_key: str
    webhook_secret: Optional[str]
    timeout_seconds: float = 10.0
    signature_tolerance: int = 300

    @classmethod
    def from_settings(cls, settings: Settings) -> "StripeConfig":
        if not settings.stripe_secret_key:
            raise ConfigurationError("STRIPE_SECRET_KEY")
        return cls(
            secret_key=settings.stripe_secret_key,
            webhook_secret=settings.stripe_webhook_secret,
            timeout_seconds=settings.stripe_timeout_seconds,
        )


@dataclass(frozen=True)
class CheckoutSession:
    id: str
    url: str


@dataclass(frozen=True)
class ProviderSubscription:
    id: str
    status: Optional[str]


class BillingProvider(Protocol):
    async def create_customer(
        self, email: Optional[str], metadata: Dict[str, str], idempotency_key: Optional[str] = None
    ) -> str: ...

    async def create_checkout_session(self, params: Dict[str, Any]) -> CheckoutSession: ...

    async def cancel_subscription(self, subscription_id: str) -> ProviderSubscription: ...

    async def create_portal_session(self, customer_id: str, return_url: str) -> str: ...

    def verify_webhook(self, payload: bytes, sig_header: str, secret: str) -> WebhookEvent: ...


def verify_webhook(payload: bytes, sig_header: str, secret: str, tolerance: int = 300) -> WebhookEvent:
    """
    Check the Stripe-Signature header against the exact raw body and parse
    the event. Any failure is an InvalidSignature; nothing is processed.
    """
    try:
        body = payload.decode("utf-8")
        stripe.WebhookSignature.verify_header(body, sig_header, secret, tolerance)
    except (stripe.SignatureVerificationError, UnicodeDecodeError) as e:
        raise InvalidSignature(f"Webhook signature error: {e}")

    try:
        return parse_event(json.loads(body))
    except (ValueError, KeyError, TypeError, AttributeError) as e:
        raise InvalidSignature(f"Malformed webhook payload: {e}")


class StripeService:
    """
    Stateless adapter over the Stripe API.

    No module-level ``stripe.api_key``: the key from ``StripeConfig`` is sent
    per request. Retrying is left to callers; customer creation takes an
    idempotency key so a retried call cannot create a second customer.
    """

    def __init__(self, config: StripeConfig):
        self.config = config

    async def _call(self, operation: str, call: Awaitable[Any]) -> Any:
        try:
            return await asyncio.wait_for(call, timeout=self.config.timeout_seconds)
        except asyncio.TimeoutError:
            logger.error("[STRIPE] %s timed out after %ss", operation, self.config.timeout_seconds)
            raise ProviderError(
                f"Stripe {operation} timed out after {self.config.timeout_seconds}s",
                operation=operation,
            )
        except stripe.StripeError as e:
            logger.error("[STRIPE] %s failed: %s", operation, e)
            raise ProviderError(
                getattr(e, "user_message", None) or str(e),
                operation=operation,
                provider_code=getattr(e, "code", None),
                request_id=getattr(e, "request_id", None),
            )

    async def create_customer(
        self, email: Optional[str], metadata: Dict[str, str], idempotency_key: Optional[str] = None
    ) -> str:
        params: Dict[str, Any] = {"metadata": metadata, "api_key": self.config.secret_key}
        if email:
            params["email"] = email
        if idempotency_key:
            params["idempotency_key"] = idempotency_key
        customer = await self._call("create_customer", stripe.Customer.create_async(**params))
        return str(customer.id)

    async def create_checkout_session(self, params: Dict[str, Any]) -> CheckoutSession:
        session = await self._call(
            "create_checkout_session",
            stripe.checkout.Session.create_async(api_key=self.config.secret_key, **params),
        )
        return CheckoutSession(id=str(session.id), url=str(session.url))

    async def cancel_subscription(self, subscription_id: str) -> ProviderSubscription:
        sub = await self._call(
            "cancel_subscription",
            stripe.Subscription.cancel_async(subscription_id, api_key=self.config.secret_key),
        )
        return ProviderSubscription(id=str(sub.id), status=getattr(sub, "status", None))

    async def create_portal_session(self, customer_id: str, return_url: str) -> str:
        sess = await self._call(
            "create_portal_session",
            stripe.billing_portal.Session.create_async(
                customer=customer_id,
                return_url=return_url,
                api_key=self.config.secret_key,
            ),
        )
        return str(sess.url)

    def verify_webhook(self, payload: bytes, sig_header: str, secret: str) -> WebhookEvent:
        return verify_webhook(payload, sig_header, secret, tolerance=self.config.signature_tolerance)
