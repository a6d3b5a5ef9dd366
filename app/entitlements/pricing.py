"""
Pricing policy kept next to grant durations: the yearly discount changes what a year costs,
never how long a yearly grant lasts.
"""
from __future__ import annotations

from datetime import datetime, timedelta
from decimal import ROUND_HALF_UP, Decimal

from app.entitlements.config import (
    get_monthly_period_days,
    get_yearly_discount,
    get_yearly_period_days,
)
from app.entitlements.models import EntitlementKind, PurchaseType


def yearly_price_cents(monthly_price_cents: int, discount: float | None = None) -> int:
    """round(monthly * 12 * discount), halves rounded up: 1000 -> 10200."""
    rate = Decimal(str(discount if discount is not None else get_yearly_discount()))
    raw = Decimal(monthly_price_cents) * 12 * rate
    return int(raw.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def price_cents_for(purchase_type: PurchaseType, price_cents: int, monthly_price_cents: int) -> int:
    if purchase_type is PurchaseType.DIRECT:
        return price_cents
    if purchase_type is PurchaseType.MONTHLY:
        return monthly_price_cents
    return yearly_price_cents(monthly_price_cents)


def period_for(kind: EntitlementKind) -> timedelta | None:
    """Grant duration; None for perpetual."""
    if kind is EntitlementKind.SUBSCRIPTION_MONTHLY:
        return timedelta(days=get_monthly_period_days())
    if kind is EntitlementKind.SUBSCRIPTION_YEARLY:
        return timedelta(days=get_yearly_period_days())
    return None


def expires_at_for(kind: EntitlementKind, acquired_at: datetime) -> datetime | None:
    period = period_for(kind)
    return acquired_at + period if period is not None else None
