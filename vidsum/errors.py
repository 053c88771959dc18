"""
Billing Errors

Exception classes shared by the billing services and mapped to HTTP
responses by the handler registered in ``vidsum.main``.
"""

from typing import Optional


class BillingError(Exception):
    """
    Base exception for all billing-related errors.

    ``status_code`` is the HTTP status the API answers with when the
    error escapes a route handler.
    """

    status_code = 500

    def __init__(self, message: str, code: str = "BILLING_ERROR", details: Optional[dict] = None):
        self.message = message
        self.code = code
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> dict:
        """Convert exception to dictionary for API responses."""
        return {
            'error': self.code,
            'message': self.message,
            'details': self.details
        }


class NotAuthenticated(BillingError):
    status_code = 401

    def __init__(self, message: str = "Not authenticated"):
        super().__init__(message=message, code="NOT_AUTHENTICATED")


class InvalidPlan(BillingError):
    """Raised when a price id is not a purchasable tier of the plan catalog."""

    status_code = 400

    def __init__(self, message: str = "Invalid plan", price_id: Optional[str] = None, code: str = "INVALID_PLAN"):
        super().__init__(
            message=message,
            code=code,
            details={'price_id': price_id} if price_id else {}
        )
        self.price_id = price_id


class NotFound(BillingError):
    status_code = 404

    def __init__(self, message: str = "Not found", subscription_id: Optional[str] = None):
        super().__init__(
            message=message,
            code="NOT_FOUND",
            details={'subscription_id': subscription_id} if subscription_id else {}
        )
        self.subscription_id = subscription_id


class InvalidSignature(BillingError):
    """
    Raised when a webhook payload fails verification.

    Terminal for the request: nothing is processed and Stripe redelivers
    on its own schedule.
    """

    status_code = 400

    def __init__(self, message: str = "Invalid webhook signature"):
        super().__init__(message=message, code="INVALID_SIGNATURE")


class ProviderError(BillingError):
    """
    Raised when a call to the billing provider fails or times out.

    The upstream message is preserved in ``message`` and, when Stripe
    supplied them, the error code and request id in ``details``.
    """

    status_code = 502

    def __init__(
        self,
        message: str = "Billing provider error",
        operation: Optional[str] = None,
        provider_code: Optional[str] = None,
        request_id: Optional[str] = None,
    ):
        details = {}
        if operation:
            details['operation'] = operation
        if provider_code:
            details['provider_code'] = provider_code
        if request_id:
            details['request_id'] = request_id

        super().__init__(
            message=message,
            code="PROVIDER_ERROR",
            details=details
        )
        self.operation = operation
        self.provider_code = provider_code


class ConfigurationError(BillingError):
    """Raised when a required server secret or setting is missing."""

    status_code = 500

    def __init__(self, setting: str):
        super().__init__(
            message=f"{setting} is not configured",
            code="CONFIGURATION_ERROR",
            details={'setting': setting}
        )
        self.setting = setting
