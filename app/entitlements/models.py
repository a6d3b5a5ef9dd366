"""
DTO entitlements: EntitlementRecord (ledger row snapshot), EntitlementContext (resolver input),
EntitlementDecision (resolver output), EntitlementStatus (entitlement check response).
"""
from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, field_validator


class EntitlementKind(str, Enum):
    PERPETUAL = "perpetual"
    SUBSCRIPTION_MONTHLY = "subscriptionMonthly"
    SUBSCRIPTION_YEARLY = "subscriptionYearly"

    @property
    def is_subscription(self) -> bool:
        return self is not EntitlementKind.PERPETUAL


class PurchaseType(str, Enum):
    """What the buyer picks at checkout; maps 1:1 onto an EntitlementKind."""

    DIRECT = "direct"
    MONTHLY = "monthly"
    YEARLY = "yearly"

    @property
    def kind(self) -> EntitlementKind:
        return _KIND_BY_PURCHASE[self]


_KIND_BY_PURCHASE = {
    PurchaseType.DIRECT: EntitlementKind.PERPETUAL,
    PurchaseType.MONTHLY: EntitlementKind.SUBSCRIPTION_MONTHLY,
    PurchaseType.YEARLY: EntitlementKind.SUBSCRIPTION_YEARLY,
}


class ProductStatus(str, Enum):
    ACTIVE = "active"
    MAINTENANCE = "maintenance"
    OFFLINE = "offline"
    DEVELOPMENT = "development"


# Statuses that block downloads without touching ownership.
DOWNLOAD_BLOCKING_STATUSES = frozenset({ProductStatus.MAINTENANCE, ProductStatus.OFFLINE})


class EntitlementLabel(str, Enum):
    NONE = "none"
    DIRECT = "direct"
    SUBSCRIPTION_ACTIVE = "subscriptionActive"
    SUBSCRIPTION_EXPIRED = "subscriptionExpired"
    ADMIN_OVERRIDE = "adminOverride"


def _as_utc(value: datetime | None) -> datetime | None:
    # SQLite hands back naive datetimes; everything here is stored in UTC.
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


# ----- Ledger snapshot -----


class EntitlementRecord(BaseModel):
    id: str
    user_id: str
    product_id: int
    kind: EntitlementKind
    acquired_at: datetime
    expires_at: datetime | None = None  # None = never (perpetual)
    source_session_id: str
    provider_subscription_id: str | None = None
    price_cents: int = 0

    model_config = ConfigDict(frozen=True, from_attributes=True)

    @field_validator("acquired_at", "expires_at")
    @classmethod
    def normalize_tz(cls, v: datetime | None) -> datetime | None:
        return _as_utc(v)

    @property
    def purchase_type(self) -> str:
        """Wire name: 'direct' for perpetual grants, the kind otherwise."""
        return "direct" if self.kind is EntitlementKind.PERPETUAL else self.kind.value

    def is_active_at(self, now: datetime) -> bool:
        if self.kind is EntitlementKind.PERPETUAL:
            return True
        return self.expires_at is not None and _as_utc(now) < self.expires_at


# ----- Resolver input (single contract, keeps signatures from sprawling) -----


class EntitlementContext(BaseModel):
    user_id: str
    product_id: int
    is_admin: bool = False
    product_status: ProductStatus
    now: datetime
    record: EntitlementRecord | None = None  # most recent record for (user_id, product_id)

    model_config = ConfigDict(frozen=True)

    @field_validator("now")
    @classmethod
    def normalize_now(cls, v: datetime) -> datetime:
        return _as_utc(v)


# ----- Resolver output (pure logic, no I/O) -----


class EntitlementDecision(BaseModel):
    has_access: bool = Field(..., description="Viewer owns / subscribes to the product right now")
    label: EntitlementLabel
    can_download_now: bool = Field(
        ...,
        description="has_access narrowed by live product status (maintenance/offline block downloads)",
    )
    record: EntitlementRecord | None = None

    model_config = ConfigDict(frozen=True)


# ----- Entitlement check response -----


class EntitlementStatus(BaseModel):
    has_access: bool = Field(..., alias="hasAccess")
    purchase_type: str | None = Field(None, alias="purchaseType")
    expires_at: datetime | None = Field(None, alias="expiresAt")
    label: EntitlementLabel
    can_download_now: bool = Field(..., alias="canDownloadNow")

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    @classmethod
    def from_decision(cls, decision: EntitlementDecision) -> "EntitlementStatus":
        record = decision.record
        return cls(
            has_access=decision.has_access,
            purchase_type=record.purchase_type if record else None,
            expires_at=record.expires_at if record else None,
            label=decision.label,
            can_download_now=decision.can_download_now,
        )
