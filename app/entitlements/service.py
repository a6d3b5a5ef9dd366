"""
EntitlementService: reads the ledger and hands a snapshot to the pure resolver.

Bundles: a product is also owned through an active record on a bundle that
contains it, and a bundle is owned once every member is owned.
"""
import logging
from datetime import datetime, timezone
from typing import Sequence

from sqlalchemy.orm import Session

from app.entitlements.ledger import EntitlementLedger
from app.entitlements.models import (
    EntitlementContext,
    EntitlementDecision,
    EntitlementRecord,
    EntitlementStatus,
    ProductStatus,
)
from app.entitlements.resolver import resolve_entitlement
from app.models.product import Product
from app.utils.metrics import entitlement_resolutions_total

logger = logging.getLogger(__name__)


class EntitlementService:
    def __init__(self, db: Session, ledger: EntitlementLedger | None = None):
        self.db = db
        self.ledger = ledger or EntitlementLedger(db)

    def _record(self, user_id: str, product_id: int) -> EntitlementRecord | None:
        row = self.ledger.latest_for(user_id, product_id)
        return EntitlementRecord.model_validate(row) if row else None

    def _deciding_record(
        self,
        user_id: str,
        product_id: int,
        now: datetime,
        member_ids: Sequence[int],
        bundle_ids: Sequence[int],
    ) -> EntitlementRecord | None:
        own = self._record(user_id, product_id)
        if own is not None and own.is_active_at(now):
            return own
        for bundle_id in bundle_ids:
            covering = self._record(user_id, bundle_id)
            if covering is not None and covering.is_active_at(now):
                return covering
        if member_ids:
            members = [self._record(user_id, member_id) for member_id in member_ids]
            if all(m is not None and m.is_active_at(now) for m in members):
                # The first member's record stands for the bundle.
                return members[0]
        return own

    def resolve(
        self,
        user_id: str,
        product_id: int,
        *,
        is_admin: bool,
        product_status: ProductStatus | str,
        now: datetime | None = None,
        member_ids: Sequence[int] = (),
        bundle_ids: Sequence[int] = (),
    ) -> EntitlementDecision:
        """
        member_ids: products a bundle is made of (empty for a single toolkit).
        bundle_ids: bundles that contain this product.
        """
        now = now or datetime.now(timezone.utc)
        ctx = EntitlementContext(
            user_id=user_id,
            product_id=product_id,
            is_admin=is_admin,
            product_status=ProductStatus(product_status),
            now=now,
            record=self._deciding_record(user_id, product_id, now, member_ids, bundle_ids),
        )
        decision = resolve_entitlement(ctx)
        entitlement_resolutions_total.labels(label=decision.label.value).inc()
        logger.info(
            "entitlement_resolved",
            extra={"user_id": user_id, "product_id": product_id, "label": decision.label.value},
        )
        return decision

    def _bundles_containing(self, product_id: int) -> list[int]:
        # JSON containment is not portable across backends; the catalog is small.
        rows = self.db.query(Product.id, Product.bundled_product_ids).all()
        return [pid for pid, members in rows if members and product_id in members]

    def resolve_for_product(
        self, user_id: str, product: Product, *, is_admin: bool, now: datetime | None = None
    ) -> EntitlementDecision:
        """resolve() with bundle membership looked up from the catalog."""
        return self.resolve(
            user_id,
            product.id,
            is_admin=is_admin,
            product_status=product.status,
            now=now,
            member_ids=product.member_ids,
            bundle_ids=self._bundles_containing(product.id),
        )

    def status(
        self,
        user_id: str,
        product_id: int,
        *,
        is_admin: bool,
        product_status: ProductStatus | str,
        now: datetime | None = None,
    ) -> EntitlementStatus:
        decision = self.resolve(
            user_id, product_id, is_admin=is_admin, product_status=product_status, now=now
        )
        return EntitlementStatus.from_decision(decision)

    def status_for_product(
        self, user_id: str, product: Product, *, is_admin: bool, now: datetime | None = None
    ) -> EntitlementStatus:
        return EntitlementStatus.from_decision(
            self.resolve_for_product(user_id, product, is_admin=is_admin, now=now)
        )

    def history(self, user_id: str) -> list[EntitlementRecord]:
        return [EntitlementRecord.model_validate(row) for row in self.ledger.list_for_user(user_id)]
