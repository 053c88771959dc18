from vidsum.services.stripe_service import StripeService
from vidsum.services.audit import AuditService
from vidsum.services.checkout import CheckoutOrchestrator
from vidsum.services.reconciler import WebhookReconciler
from vidsum.services.cancellation import CancellationCoordinator

__all__ = [
    "StripeService",
    "AuditService",
    "CheckoutOrchestrator",
    "WebhookReconciler",
    "CancellationCoordinator",
]
