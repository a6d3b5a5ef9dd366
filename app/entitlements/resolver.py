"""
Decision only: resolve_entitlement(ctx) -> EntitlementDecision.
Pure function, no I/O. Rules, first match wins:
admin -> adminOverride; development -> never owned; no record -> none;
perpetual -> direct; subscription -> active / expired by expires_at.
Ownership (has_access) and availability (can_download_now) are decided separately.
"""
from __future__ import annotations

import logging

from app.entitlements.models import (
    DOWNLOAD_BLOCKING_STATUSES,
    EntitlementContext,
    EntitlementDecision,
    EntitlementKind,
    EntitlementLabel,
    ProductStatus,
)

logger = logging.getLogger(__name__)


def resolve_entitlement(ctx: EntitlementContext) -> EntitlementDecision:
    # Admins see every product, including pre-release; only offline stops their downloads.
    if ctx.is_admin:
        return EntitlementDecision(
            has_access=True,
            label=EntitlementLabel.ADMIN_OVERRIDE,
            can_download_now=ctx.product_status is not ProductStatus.OFFLINE,
            record=ctx.record,
        )

    # Pre-release products cannot be owned, whatever the ledger says.
    if ctx.product_status is ProductStatus.DEVELOPMENT:
        return EntitlementDecision(
            has_access=False,
            label=EntitlementLabel.NONE,
            can_download_now=False,
            record=None,
        )

    record = ctx.record
    if record is None:
        label, has_access = EntitlementLabel.NONE, False
    elif record.kind is EntitlementKind.PERPETUAL:
        label, has_access = EntitlementLabel.DIRECT, True
    elif record.expires_at is not None and ctx.now < record.expires_at:
        label, has_access = EntitlementLabel.SUBSCRIPTION_ACTIVE, True
    else:
        # A subscription without expires_at is malformed; treat it as lapsed.
        label, has_access = EntitlementLabel.SUBSCRIPTION_EXPIRED, False

    return EntitlementDecision(
        has_access=has_access,
        label=label,
        can_download_now=has_access and ctx.product_status not in DOWNLOAD_BLOCKING_STATUSES,
        record=record,
    )
