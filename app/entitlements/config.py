"""
Entitlement config: typed wrappers over app.core.config for pricing policy and grant durations.
"""
from __future__ import annotations

from app.core.config import settings


def get_yearly_discount() -> float:
    return settings.yearly_discount


def get_monthly_period_days() -> int:
    return settings.monthly_period_days


def get_yearly_period_days() -> int:
    return settings.yearly_period_days
