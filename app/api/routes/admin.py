"""
Admin API: catalog maintenance. Every route requires an admin session.
"""
import logging

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.api.routes.products import product_out
from app.db.session import get_db
from app.schemas.catalog import ProductOut, ProductUpdateRequest
from app.services.audit.service import AuditService
from app.services.auth.identity import Identity, require_admin
from app.services.products.service import ProductService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/admin", tags=["admin"], dependencies=[Depends(require_admin)])


@router.patch("/products/{product_id}", response_model=ProductOut)
def update_product(
    product_id: int,
    body: ProductUpdateRequest,
    identity: Identity = Depends(require_admin),
    db: Session = Depends(get_db),
):
    """Rename, reprice or change the status of a product (e.g. active -> maintenance)."""
    changes = body.model_dump(exclude_none=True)
    if not changes:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="No fields to update")

    products = ProductService(db)
    product = products.get(product_id)
    if product is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Product not found")

    previous_status = product.status
    try:
        product = products.update(
            product,
            name=body.name,
            monthly_price_cents=body.monthly_price_cents,
            status=body.status,
        )
    except IntegrityError:
        db.rollback()
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Product name already in use")

    AuditService(db).log(
        "user", identity.user_id, "product_updated", "product", product.id,
        {"changes": {k: getattr(v, "value", v) for k, v in changes.items()}, "previous_status": previous_status},
    )
    return product_out(product)
