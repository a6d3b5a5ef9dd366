from datetime import datetime, timezone

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session

from app.db.session import get_db
from app.entitlements.models import (
    EntitlementContext,
    EntitlementLabel,
    EntitlementStatus,
    ProductStatus,
)
from app.entitlements.resolver import resolve_entitlement
from app.entitlements.service import EntitlementService
from app.schemas.catalog import PurchaseOut
from app.services.auth.identity import Identity, optional_identity, require_identity
from app.services.products.service import ProductService

router = APIRouter(prefix="/api/purchases", tags=["purchases"])


@router.get("", response_model=list[PurchaseOut])
def list_purchases(identity: Identity = Depends(require_identity), db: Session = Depends(get_db)):
    """Full history, newest first; each row labelled as if it were the only record for its product."""
    products = ProductService(db)
    now = datetime.now(timezone.utc)
    out: list[PurchaseOut] = []
    for record in EntitlementService(db).history(identity.user_id):
        product = products.get(record.product_id)
        product_status = ProductStatus(product.status) if product else ProductStatus.OFFLINE
        decision = resolve_entitlement(
            EntitlementContext(
                user_id=identity.user_id,
                product_id=record.product_id,
                product_status=product_status,
                now=now,
                record=record,
            )
        )
        out.append(
            PurchaseOut(
                id=record.id,
                product_id=record.product_id,
                product_name=product.name if product else None,
                purchase_type=record.purchase_type,
                price_cents=record.price_cents,
                acquired_at=record.acquired_at,
                expires_at=record.expires_at,
                label=decision.label,
                can_download_now=decision.can_download_now,
            )
        )
    return out


@router.get("/check/{product_id}", response_model=EntitlementStatus)
def check(
    product_id: int,
    identity: Identity | None = Depends(optional_identity),
    db: Session = Depends(get_db),
):
    product = ProductService(db).get(product_id)
    if product is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Product not found")
    if identity is None:
        return EntitlementStatus(has_access=False, label=EntitlementLabel.NONE, can_download_now=False)
    return EntitlementService(db).status_for_product(identity.user_id, product, is_admin=identity.is_admin)
