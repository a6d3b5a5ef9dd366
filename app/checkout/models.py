"""
DTO checkout: CheckoutRequest / CheckoutSession (session creation), CheckoutOutcome
(what the provider says happened), CompletionResult (what we did about it).
"""
from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, ConfigDict

from app.core.errors import FailureKind
from app.entitlements.models import EntitlementRecord, PurchaseType


class CheckoutStatus(str, Enum):
    PAID = "paid"
    UNPAID = "unpaid"
    CANCELLED = "cancelled"
    FAILED = "failed"


class CheckoutRequest(BaseModel):
    user_id: str
    email: str | None = None
    customer_id: str | None = None
    product_id: int
    product_name: str
    purchase_type: PurchaseType
    amount_cents: int
    success_url: str
    cancel_url: str

    model_config = ConfigDict(frozen=True)


class CheckoutSession(BaseModel):
    session_id: str
    url: str

    model_config = ConfigDict(frozen=True)


class CheckoutOutcome(BaseModel):
    """Provider session outcome. Metadata fields are None when absent or unparseable."""

    session_id: str
    status: CheckoutStatus
    user_id: str | None = None
    product_id: int | None = None
    purchase_type: PurchaseType | None = None
    amount_cents: int = 0
    subscription_id: str | None = None
    payment_intent_id: str | None = None

    model_config = ConfigDict(frozen=True)

    @property
    def paid(self) -> bool:
        return self.status is CheckoutStatus.PAID


class CompletionResult(BaseModel):
    record: EntitlementRecord | None = None
    created: bool = False
    failure: FailureKind | None = None
    message: str = ""

    model_config = ConfigDict(frozen=True)

    @property
    def ok(self) -> bool:
        return self.failure is None and self.record is not None

    @classmethod
    def fail(cls, failure: FailureKind, message: str) -> "CompletionResult":
        return cls(failure=failure, message=message)
