"""
Checkout: provider sessions in, entitlement records out.
The provider is opaque (CheckoutProvider); completion is idempotent per session id.
"""
from app.checkout.completion import CheckoutCompletionHandler
from app.checkout.models import (
    CheckoutOutcome,
    CheckoutRequest,
    CheckoutSession,
    CheckoutStatus,
    CompletionResult,
)
from app.checkout.provider import CheckoutProvider, CheckoutRejectedError, StripeCheckoutProvider
from app.checkout.webhooks import WebhookSignatureError, handle_event, verify_signature

__all__ = [
    "CheckoutCompletionHandler",
    "CheckoutOutcome",
    "CheckoutProvider",
    "CheckoutRejectedError",
    "CheckoutRequest",
    "CheckoutSession",
    "CheckoutStatus",
    "CompletionResult",
    "StripeCheckoutProvider",
    "WebhookSignatureError",
    "handle_event",
    "verify_signature",
]
