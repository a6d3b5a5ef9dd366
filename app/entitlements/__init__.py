"""
Entitlements: who may download what, right now.
Decision (resolver) and storage (ledger) are separate; the contract is EntitlementContext.
"""
from app.entitlements.ledger import EntitlementLedger
from app.entitlements.models import (
    EntitlementContext,
    EntitlementDecision,
    EntitlementKind,
    EntitlementLabel,
    EntitlementRecord,
    EntitlementStatus,
    ProductStatus,
    PurchaseType,
)
from app.entitlements.pricing import expires_at_for, price_cents_for, yearly_price_cents
from app.entitlements.resolver import resolve_entitlement
from app.entitlements.service import EntitlementService

__all__ = [
    "EntitlementContext",
    "EntitlementDecision",
    "EntitlementKind",
    "EntitlementLabel",
    "EntitlementLedger",
    "EntitlementRecord",
    "EntitlementService",
    "EntitlementStatus",
    "ProductStatus",
    "PurchaseType",
    "expires_at_for",
    "price_cents_for",
    "resolve_entitlement",
    "yearly_price_cents",
]
