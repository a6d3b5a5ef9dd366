"""
CheckoutCompletionHandler: turns a confirmed provider session into exactly one entitlement.

Responsibilities:
- Idempotent completion keyed by the provider session id (webhook retries, success-page reloads)
- Rejection of unpaid / cancelled sessions and of outcomes naming unknown users or products
- Subscription renewals as new append-only rows keyed by the invoice id
"""
import logging
from datetime import datetime, timezone
from typing import Callable

from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session

from app.checkout.models import CheckoutOutcome, CompletionResult
from app.checkout.provider import CheckoutProvider, CheckoutRejectedError
from app.core.errors import FailureKind, UpstreamUnavailableError
from app.entitlements.ledger import EntitlementLedger
from app.entitlements.models import EntitlementKind, EntitlementRecord
from app.entitlements.pricing import expires_at_for
from app.models.entitlement import Entitlement
from app.models.product import Product
from app.models.user import User
from app.services.audit.service import AuditService
from app.services.notifier import Notifier, notify_safely
from app.utils.metrics import checkout_completions_total

logger = logging.getLogger(__name__)

CONFIRM_FAILED_MESSAGE = "Could not confirm payment"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class CheckoutCompletionHandler:
    def __init__(
        self,
        db: Session,
        *,
        provider: CheckoutProvider | None = None,
        notifier: Notifier | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.db = db
        self.ledger = EntitlementLedger(db)
        self.provider = provider
        self.notifier = notifier
        self._clock = clock

    # ------------------------------------------------------------------
    # Completion (idempotent)
    # ------------------------------------------------------------------

    def complete(self, session_id: str, outcome: CheckoutOutcome) -> CompletionResult:
        if not session_id or outcome.session_id != session_id:
            return self._result("invalid_input", CompletionResult.fail(FailureKind.INVALID_INPUT, CONFIRM_FAILED_MESSAGE))
        try:
            return self._complete(session_id, outcome)
        except OperationalError as e:
            self.db.rollback()
            logger.error("checkout_store_unavailable", extra={"session_id": session_id, "error": str(e)})
            return self._result(
                "upstream_unavailable",
                CompletionResult.fail(FailureKind.UPSTREAM_UNAVAILABLE, CONFIRM_FAILED_MESSAGE),
            )

    def _complete(self, session_id: str, outcome: CheckoutOutcome) -> CompletionResult:
        existing = self.ledger.find_by_source(session_id)
        if existing:
            logger.info("checkout_already_completed", extra={"session_id": session_id})
            return self._result("duplicate", CompletionResult(record=EntitlementRecord.model_validate(existing)))

        if not outcome.paid:
            logger.info("checkout_not_paid", extra={"session_id": session_id, "outcome": outcome.status.value})
            return self._result(
                "payment_incomplete",
                CompletionResult.fail(FailureKind.PAYMENT_INCOMPLETE, "Payment not completed"),
            )

        if not outcome.user_id or outcome.product_id is None or outcome.purchase_type is None:
            logger.error("checkout_metadata_missing", extra={"session_id": session_id})
            return self._result("invalid_input", CompletionResult.fail(FailureKind.INVALID_INPUT, CONFIRM_FAILED_MESSAGE))

        user = self.db.get(User, outcome.user_id)
        product = self.db.get(Product, outcome.product_id)
        if user is None or product is None:
            logger.error(
                "checkout_unknown_reference",
                extra={"session_id": session_id, "user_id": outcome.user_id, "product_id": outcome.product_id},
            )
            return self._result("invalid_input", CompletionResult.fail(FailureKind.INVALID_INPUT, CONFIRM_FAILED_MESSAGE))

        kind = outcome.purchase_type.kind
        now = self._clock()

        def audit(row: Entitlement) -> None:
            AuditService(self.db).log(
                "user", user.id, "checkout_completed", "entitlement", row.id,
                {"session_id": session_id, "product_id": product.id, "kind": kind.value, "price_cents": outcome.amount_cents},
                commit=False,
            )

        row, created = self.ledger.insert_if_absent(
            Entitlement(
                user_id=user.id,
                product_id=product.id,
                kind=kind.value,
                price_cents=outcome.amount_cents,
                acquired_at=now,
                expires_at=expires_at_for(kind, now),
                source_session_id=session_id,
                provider_subscription_id=outcome.subscription_id,
            ),
            before_commit=audit,
        )
        record = EntitlementRecord.model_validate(row)
        if not created:
            return self._result("duplicate", CompletionResult(record=record))

        logger.info(
            "checkout_completed",
            extra={
                "session_id": session_id,
                "user_id": user.id,
                "product_id": product.id,
                "kind": kind.value,
            },
        )
        notify_safely(
            self.notifier,
            "purchase_confirmation",
            user.email,
            {
                "user_id": user.id,
                "product_name": product.name,
                "purchase_type": record.purchase_type,
                "price_cents": outcome.amount_cents,
                "expires_at": record.expires_at.isoformat() if record.expires_at else None,
            },
        )
        return self._result("created", CompletionResult(record=record, created=True))

    def complete_from_provider(self, session_id: str, *, viewer_id: str | None = None) -> CompletionResult:
        """
        Success-page path: ask the provider what happened, then complete.
        viewer_id, when given, must match the user the session was opened for.
        """
        if self.provider is None or not session_id:
            return CompletionResult.fail(FailureKind.INVALID_INPUT, "Session ID required")
        try:
            outcome = self.provider.get_session_outcome(session_id)
        except UpstreamUnavailableError as e:
            logger.warning("checkout_provider_unavailable", extra={"session_id": session_id, "error": str(e)})
            return self._result(
                "upstream_unavailable",
                CompletionResult.fail(FailureKind.UPSTREAM_UNAVAILABLE, CONFIRM_FAILED_MESSAGE),
            )
        except CheckoutRejectedError as e:
            logger.warning("checkout_session_rejected", extra={"session_id": session_id, "error": str(e)})
            return CompletionResult.fail(FailureKind.NOT_FOUND, "Checkout session not found")

        if viewer_id is not None and outcome.user_id != viewer_id:
            logger.warning("checkout_session_foreign", extra={"session_id": session_id, "user_id": viewer_id})
            return CompletionResult.fail(FailureKind.FORBIDDEN, "Unauthorized session")
        return self.complete(session_id, outcome)

    # ------------------------------------------------------------------
    # Renewal (append-only; expires_at counted from now)
    # ------------------------------------------------------------------

    def renew(self, invoice_id: str, subscription_id: str) -> CompletionResult:
        if not invoice_id or not subscription_id:
            return CompletionResult.fail(FailureKind.INVALID_INPUT, "Invoice and subscription required")
        try:
            return self._renew(invoice_id, subscription_id)
        except OperationalError as e:
            self.db.rollback()
            logger.error("renewal_store_unavailable", extra={"invoice_id": invoice_id, "error": str(e)})
            return self._result(
                "upstream_unavailable",
                CompletionResult.fail(FailureKind.UPSTREAM_UNAVAILABLE, "Could not record renewal"),
            )

    def _renew(self, invoice_id: str, subscription_id: str) -> CompletionResult:
        existing = self.ledger.find_by_source(invoice_id)
        if existing:
            return self._result("duplicate", CompletionResult(record=EntitlementRecord.model_validate(existing)))

        previous = self.ledger.latest_for_subscription(subscription_id)
        if previous is None:
            logger.warning("renewal_unknown_subscription", extra={"invoice_id": invoice_id})
            return CompletionResult.fail(FailureKind.NOT_FOUND, "Subscription not found")
        kind = EntitlementKind(previous.kind)
        if not kind.is_subscription:
            return CompletionResult.fail(FailureKind.INVALID_INPUT, "Not a subscription")

        # An owner who bought the product outright keeps that record; the old subscription adds nothing.
        owned = self.ledger.perpetual_for(previous.user_id, previous.product_id)
        if owned is not None:
            logger.info(
                "renewal_skipped_perpetual_owner",
                extra={"invoice_id": invoice_id, "user_id": owned.user_id, "product_id": owned.product_id},
            )
            return self._result(
                "conflict",
                CompletionResult(
                    record=EntitlementRecord.model_validate(owned),
                    failure=FailureKind.CONFLICT,
                    message="Product already owned",
                ),
            )

        def audit(row: Entitlement) -> None:
            AuditService(self.db).log(
                "webhook", None, "subscription_renewed", "entitlement", row.id,
                {"invoice_id": invoice_id, "subscription_id": subscription_id},
                commit=False,
            )

        now = self._clock()
        row, created = self.ledger.insert_if_absent(
            Entitlement(
                user_id=previous.user_id,
                product_id=previous.product_id,
                kind=kind.value,
                price_cents=previous.price_cents,
                acquired_at=now,
                expires_at=expires_at_for(kind, now),
                source_session_id=invoice_id,
                provider_subscription_id=subscription_id,
            ),
            before_commit=audit,
        )
        record = EntitlementRecord.model_validate(row)
        if created:
            logger.info(
                "subscription_renewed",
                extra={"invoice_id": invoice_id, "user_id": record.user_id, "product_id": record.product_id},
            )
        return self._result("created" if created else "duplicate", CompletionResult(record=record, created=created))

    def _result(self, outcome: str, result: CompletionResult) -> CompletionResult:
        checkout_completions_total.labels(outcome=outcome).inc()
        return result
