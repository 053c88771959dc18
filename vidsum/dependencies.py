"""FastAPI wiring: every service gets its collaborators here, and tests override these."""

from functools import lru_cache

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from vidsum.config import Settings, get_settings
from vidsum.database import get_db
from vidsum.services.cancellation import CancellationCoordinator
from vidsum.services.checkout import CheckoutOrchestrator, CheckoutRedirects
from vidsum.services.plans import PlanCatalog, build_catalog
from vidsum.services.reconciler import WebhookReconciler
from vidsum.services.stripe_service import BillingProvider, StripeConfig, StripeService
from vidsum.services.subscription_store import SubscriptionStore
from vidsum.services.summarizer import SummarizerClient


@lru_cache
def get_catalog() -> PlanCatalog:
    return build_catalog(get_settings())


def get_billing_provider(settings: Settings = Depends(get_settings)) -> BillingProvider:
    return StripeService(StripeConfig.from_settings(settings))


def get_store(db: AsyncSession = Depends(get_db)) -> SubscriptionStore:
    return SubscriptionStore(db)


def get_checkout_orchestrator(
    provider: BillingProvider = Depends(get_billing_provider),
    store: SubscriptionStore = Depends(get_store),
    catalog: PlanCatalog = Depends(get_catalog),
    settings: Settings = Depends(get_settings),
) -> CheckoutOrchestrator:
    redirects = CheckoutRedirects(
        base_url=settings.site_url,
        success_path=settings.checkout_success_path,
        cancel_path=settings.checkout_cancel_path,
    )
    return CheckoutOrchestrator(
        provider, store, catalog, redirects, customer_retries=settings.provider_retries
    )


def get_reconciler(
    provider: BillingProvider = Depends(get_billing_provider),
    store: SubscriptionStore = Depends(get_store),
) -> WebhookReconciler:
    return WebhookReconciler(provider, store)


def get_cancellation_coordinator(
    provider: BillingProvider = Depends(get_billing_provider),
    store: SubscriptionStore = Depends(get_store),
) -> CancellationCoordinator:
    return CancellationCoordinator(provider, store)


def get_summarizer(settings: Settings = Depends(get_settings)) -> SummarizerClient:
    return SummarizerClient(settings.summarizer_url, timeout=settings.summarizer_timeout_seconds)
