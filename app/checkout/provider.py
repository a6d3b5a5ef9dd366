"""
Checkout Provider client on the Stripe SDK.
Connection failures, rate limits and 5xx become UpstreamUnavailableError; other
API errors become CheckoutRejectedError and do not trip the circuit breaker.
"""
import logging
from abc import ABC, abstractmethod
from typing import Any, Callable

import pybreaker
import stripe

from app.checkout.models import CheckoutOutcome, CheckoutRequest, CheckoutSession, CheckoutStatus
from app.core.config import settings
from app.core.errors import UpstreamUnavailableError
from app.entitlements.models import PurchaseType
from app.services.circuit_breaker import get_circuit_breaker
from app.utils.metrics import checkout_provider_requests_total


logger = logging.getLogger(__name__)

_RECURRING_INTERVAL = {
    PurchaseType.MONTHLY: "month",
    PurchaseType.YEARLY: "year",
}


class CheckoutRejectedError(Exception):
    """Provider answered but refused the request (unknown session, bad parameters)."""

    def __init__(self, message: str, status_code: int):
        super().__init__(message)
        self.status_code = status_code


class CheckoutProvider(ABC):
    @abstractmethod
    def create_session(self, request: CheckoutRequest) -> CheckoutSession:
        raise NotImplementedError

    @abstractmethod
    def get_session_outcome(self, session_id: str) -> CheckoutOutcome:
        raise NotImplementedError


def _parse_int(value: Any) -> int | None:
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def _parse_purchase_type(value: Any) -> PurchaseType | None:
    try:
        return PurchaseType(value)
    except ValueError:
        return None


def _object_id(value: Any) -> str | None:
    """Expandable fields arrive either as an id string or as an object with an id."""
    if isinstance(value, dict):
        return value.get("id")
    return value or None


def outcome_from_session(session: dict[str, Any]) -> CheckoutOutcome:
    """Normalize a provider checkout-session object (API response or webhook payload)."""
    metadata = session.get("metadata") or {}
    if session.get("payment_status") in ("paid", "no_payment_required"):
        status = CheckoutStatus.PAID
    elif session.get("status") == "expired":
        status = CheckoutStatus.CANCELLED
    else:
        status = CheckoutStatus.UNPAID
    return CheckoutOutcome(
        session_id=session.get("id", ""),
        status=status,
        user_id=metadata.get("userId") or None,
        product_id=_parse_int(metadata.get("productId")),
        purchase_type=_parse_purchase_type(metadata.get("purchaseType")),
        amount_cents=_parse_int(metadata.get("priceCents")) or _parse_int(session.get("amount_total")) or 0,
        subscription_id=_object_id(session.get("subscription")),
        payment_intent_id=_object_id(session.get("payment_intent")),
    )


class StripeCheckoutProvider(CheckoutProvider):
    """
    Sync client; one breaker per process guards every call.
    The API key is passed per request so the global stripe module stays unconfigured.
    """

    def __init__(
        self,
        api_key: str,
        *,
        currency: str = "eur",
        breaker: pybreaker.CircuitBreaker | None = None,
    ) -> None:
        self._api_key = api_key
        self._currency = currency
        self._breaker = breaker or get_circuit_breaker("checkout_provider", exclude=[CheckoutRejectedError])

    @classmethod
    def from_settings(cls) -> "StripeCheckoutProvider":
        return cls(settings.checkout_api_key, currency=settings.checkout_currency)

    def _send(self, operation: str, fn: Callable[..., Any], *args: Any, **params: Any) -> Any:
        try:
            result = fn(*args, api_key=self._api_key, **params)
        except (stripe.APIConnectionError, stripe.RateLimitError) as e:
            checkout_provider_requests_total.labels(method=operation, status="unavailable").inc()
            raise UpstreamUnavailableError("checkout provider unavailable", {"error": str(e)}) from e
        except stripe.StripeError as e:
            status_code = e.http_status
            checkout_provider_requests_total.labels(method=operation, status=str(status_code)).inc()
            if status_code is None or status_code >= 500:
                raise UpstreamUnavailableError(
                    "checkout provider unavailable", {"status_code": status_code, "error": str(e)}
                ) from e
            raise CheckoutRejectedError(e.user_message or str(e), status_code) from e
        checkout_provider_requests_total.labels(method=operation, status="ok").inc()
        return result

    def _call(self, operation: str, fn: Callable[..., Any], *args: Any, **params: Any) -> Any:
        try:
            return self._breaker.call(self._send, operation, fn, *args, **params)
        except pybreaker.CircuitBreakerError as e:
            raise UpstreamUnavailableError("checkout provider circuit open", {"error": str(e)}) from e

    def create_session(self, request: CheckoutRequest) -> CheckoutSession:
        price_data: dict[str, Any] = {
            "currency": self._currency,
            "unit_amount": request.amount_cents,
            "product_data": {"name": request.product_name},
        }
        interval = _RECURRING_INTERVAL.get(request.purchase_type)
        if interval:
            price_data["recurring"] = {"interval": interval}
        params: dict[str, Any] = {
            "mode": "payment" if request.purchase_type is PurchaseType.DIRECT else "subscription",
            "line_items": [{"quantity": 1, "price_data": price_data}],
            "success_url": request.success_url,
            "cancel_url": request.cancel_url,
            "metadata": {
                "userId": request.user_id,
                "productId": str(request.product_id),
                "purchaseType": request.purchase_type.value,
                "priceCents": str(request.amount_cents),
            },
        }
        if request.customer_id:
            params["customer"] = request.customer_id
        elif request.email:
            params["customer_email"] = request.email

        session = self._call("create", stripe.checkout.Session.create, **params)
        logger.info(
            "checkout_session_created",
            extra={"session_id": session["id"], "user_id": request.user_id, "product_id": request.product_id},
        )
        return CheckoutSession(session_id=session["id"], url=session["url"])

    def get_session_outcome(self, session_id: str) -> CheckoutOutcome:
        session = self._call("retrieve", stripe.checkout.Session.retrieve, session_id)
        return outcome_from_session(session)
