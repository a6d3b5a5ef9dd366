"""
Provider webhooks: signature check and event dispatch.

Signatures are checked by the Stripe SDK ("t=<unix ts>,v1=<hmac-sha256>" header).
Handled events:
- checkout.session.completed -> complete()  (may race the success page; idempotent)
- invoice.paid (renewals only)  -> renew()
Everything else is acknowledged and ignored.
"""
import logging
from typing import Any

import stripe

from app.checkout.completion import CheckoutCompletionHandler
from app.checkout.models import CompletionResult
from app.checkout.provider import outcome_from_session

logger = logging.getLogger(__name__)


class WebhookSignatureError(Exception):
    pass


def verify_signature(
    payload: bytes,
    header: str | None,
    secret: str,
    *,
    tolerance_seconds: int = 300,
) -> None:
    """Raise WebhookSignatureError unless header carries a fresh, matching v1 signature."""
    if not secret:
        raise WebhookSignatureError("webhook secret not configured")
    if not header:
        raise WebhookSignatureError("missing signature header")
    try:
        stripe.WebhookSignature.verify_header(payload.decode("utf-8"), header, secret, tolerance_seconds)
    except UnicodeDecodeError as e:
        raise WebhookSignatureError("payload is not utf-8") from e
    except stripe.SignatureVerificationError as e:
        raise WebhookSignatureError(str(e)) from e


def handle_event(event: dict[str, Any], handler: CheckoutCompletionHandler) -> CompletionResult | None:
    """Dispatch a verified event. Returns None for event types we do not act on."""
    event_type = event.get("type", "")
    obj = (event.get("data") or {}).get("object") or {}

    if event_type == "checkout.session.completed":
        outcome = outcome_from_session(obj)
        result = handler.complete(outcome.session_id, outcome)
        logger.info(
            "webhook_checkout_completed",
            extra={
                "event_type": event_type,
                "session_id": outcome.session_id,
                "outcome": result.failure.value if result.failure else ("created" if result.created else "duplicate"),
            },
        )
        return result

    if event_type == "invoice.paid":
        # The first invoice is covered by checkout.session.completed.
        if obj.get("billing_reason") == "subscription_create":
            return None
        subscription_id = obj.get("subscription")
        if isinstance(subscription_id, dict):
            subscription_id = subscription_id.get("id")
        if not subscription_id:
            return None
        return handler.renew(obj.get("id", ""), subscription_id)

    logger.info("webhook_ignored", extra={"event_type": event_type})
    return None
