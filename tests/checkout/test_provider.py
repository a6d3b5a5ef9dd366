"""Tests for the Stripe provider client; SDK calls are patched at the resource class."""
from unittest.mock import patch

import pybreaker
import pytest
import stripe

from app.checkout.models import CheckoutRequest, CheckoutStatus
from app.checkout.provider import CheckoutRejectedError, StripeCheckoutProvider, outcome_from_session
from app.core.errors import UpstreamUnavailableError
from app.entitlements.models import PurchaseType


def _provider(fail_max=5):
    breaker = pybreaker.CircuitBreaker(fail_max=fail_max, reset_timeout=60, exclude=[CheckoutRejectedError])
    return StripeCheckoutProvider("sk_test", breaker=breaker)


def _request(purchase_type=PurchaseType.DIRECT, amount=4900):
    return CheckoutRequest(
        user_id="u1",
        email="buyer@example.com",
        product_id=2,
        product_name="Linux Hardening Check",
        purchase_type=purchase_type,
        amount_cents=amount,
        success_url="https://shop.test/checkout/success?session_id={CHECKOUT_SESSION_ID}",
        cancel_url="https://shop.test/products/2",
    )


def _retrieve(**kwargs):
    return patch.object(stripe.checkout.Session, "retrieve", **kwargs)


class TestCreateSession:
    def test_one_time_payment(self):
        with patch.object(
            stripe.checkout.Session, "create", return_value={"id": "cs_1", "url": "https://pay.test/cs_1"}
        ) as create:
            session = _provider().create_session(_request())

        assert session.session_id == "cs_1"
        assert session.url == "https://pay.test/cs_1"
        params = create.call_args.kwargs
        assert params["api_key"] == "sk_test"
        assert params["mode"] == "payment"
        assert params["metadata"]["userId"] == "u1"
        assert params["metadata"]["purchaseType"] == "direct"
        assert params["customer_email"] == "buyer@example.com"
        assert "recurring" not in params["line_items"][0]["price_data"]

    def test_yearly_subscription(self):
        with patch.object(
            stripe.checkout.Session, "create", return_value={"id": "cs_2", "url": "https://pay.test/cs_2"}
        ) as create:
            _provider().create_session(_request(PurchaseType.YEARLY, 10200))

        params = create.call_args.kwargs
        price_data = params["line_items"][0]["price_data"]
        assert params["mode"] == "subscription"
        assert price_data["recurring"] == {"interval": "year"}
        assert price_data["unit_amount"] == 10200

    def test_invalid_request_is_rejection(self):
        error = stripe.InvalidRequestError("bad currency", "currency", http_status=400)
        with patch.object(stripe.checkout.Session, "create", side_effect=error):
            with pytest.raises(CheckoutRejectedError) as exc:
                _provider().create_session(_request())
        assert exc.value.status_code == 400


class TestGetSessionOutcome:
    def test_paid(self):
        session = {
            "id": "cs_1",
            "payment_status": "paid",
            "metadata": {"userId": "u1", "productId": "2", "purchaseType": "monthly", "priceCents": "1000"},
            "subscription": {"id": "sub_9"},
        }
        with _retrieve(return_value=session) as retrieve:
            outcome = _provider().get_session_outcome("cs_1")

        assert retrieve.call_args.args == ("cs_1",)
        assert outcome.paid
        assert outcome.purchase_type is PurchaseType.MONTHLY
        assert outcome.subscription_id == "sub_9"

    def test_unknown_session(self):
        error = stripe.InvalidRequestError("No such checkout.session", "id", http_status=404)
        with _retrieve(side_effect=error):
            with pytest.raises(CheckoutRejectedError):
                _provider().get_session_outcome("cs_x")

    @pytest.mark.parametrize(
        "error",
        [
            stripe.RateLimitError("slow down", http_status=429),
            stripe.APIError("boom", http_status=500),
            stripe.APIError("unavailable", http_status=503),
            stripe.APIConnectionError("refused"),
        ],
    )
    def test_outages_are_upstream_unavailable(self, error):
        with _retrieve(side_effect=error):
            with pytest.raises(UpstreamUnavailableError):
                _provider().get_session_outcome("cs_1")

    def test_breaker_opens_after_repeated_outages(self):
        provider = _provider(fail_max=2)
        with _retrieve(side_effect=stripe.APIError("bad gateway", http_status=502)) as retrieve:
            for _ in range(4):
                with pytest.raises(UpstreamUnavailableError):
                    provider.get_session_outcome("cs_1")
        assert retrieve.call_count == 2

    def test_rejections_do_not_open_breaker(self):
        provider = _provider(fail_max=2)
        error = stripe.InvalidRequestError("No such checkout.session", "id", http_status=404)
        with _retrieve(side_effect=error) as retrieve:
            for _ in range(4):
                with pytest.raises(CheckoutRejectedError):
                    provider.get_session_outcome("cs_x")
        assert retrieve.call_count == 4


class TestOutcomeFromSession:
    def test_expired_is_cancelled(self):
        outcome = outcome_from_session({"id": "cs_1", "status": "expired", "payment_status": "unpaid"})
        assert outcome.status is CheckoutStatus.CANCELLED

    def test_open_is_unpaid(self):
        outcome = outcome_from_session({"id": "cs_1", "status": "open", "payment_status": "unpaid"})
        assert outcome.status is CheckoutStatus.UNPAID

    def test_garbage_metadata_becomes_none(self):
        outcome = outcome_from_session(
            {"id": "cs_1", "payment_status": "paid", "metadata": {"productId": "abc", "purchaseType": "lifetime"}}
        )
        assert outcome.product_id is None
        assert outcome.purchase_type is None
        assert outcome.user_id is None
