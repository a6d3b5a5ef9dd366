"""
Catalog routes: listing and entitlement-gated script download.
A bundle downloads as a zip of its member scripts.
"""
import io
import logging
import re
import zipfile

from fastapi import APIRouter, Depends, HTTPException, Response, status
from fastapi.responses import PlainTextResponse
from sqlalchemy.orm import Session

from app.db.session import get_db
from app.entitlements.pricing import yearly_price_cents
from app.entitlements.service import EntitlementService
from app.schemas.catalog import ProductOut
from app.services.audit.service import AuditService
from app.services.auth.identity import Identity, require_identity
from app.services.products.service import ProductService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/products", tags=["products"])


def product_out(product) -> ProductOut:
    return ProductOut(
        id=product.id,
        name=product.name,
        os=product.os,
        description=product.description,
        compliance=product.compliance,
        status=product.status,
        price_cents=product.price_cents,
        monthly_price_cents=product.monthly_price_cents,
        yearly_price_cents=yearly_price_cents(product.monthly_price_cents),
        bundled_product_ids=product.member_ids,
    )


def _bundle_archive(products: ProductService, bundle) -> bytes:
    members = products.members_of(bundle)
    missing = [mid for mid, member in zip(bundle.member_ids, members) if member is None]
    empty = [member.id for member in members if member is not None and not (member.content or "").strip()]
    if missing or empty:
        logger.error(
            "bundle_incomplete",
            extra={"product_id": bundle.id, "error": f"missing={missing} empty={empty}"},
        )
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Bundle could not be prepared")

    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w", zipfile.ZIP_DEFLATED) as archive:
        for member in members:
            archive.writestr(member.filename, member.content)
    return buffer.getvalue()


@router.get("", response_model=list[ProductOut])
def list_products(db: Session = Depends(get_db)):
    return [product_out(p) for p in ProductService(db).list_visible()]


@router.get("/{product_id}/download")
def download(
    product_id: int,
    identity: Identity = Depends(require_identity),
    db: Session = Depends(get_db),
):
    """403 if the viewer does not own the product; 503 if they own it but it is unavailable right now."""
    products = ProductService(db)
    product = products.get(product_id)
    if product is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Product not found")

    decision = EntitlementService(db).resolve_for_product(identity.user_id, product, is_admin=identity.is_admin)
    if not decision.has_access:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Purchase required")
    if not decision.can_download_now:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Product temporarily unavailable",
        )

    if product.is_bundle:
        payload = _bundle_archive(products, product)
        filename = re.sub(r"\s+", "-", product.name.lower()) + ".zip"
        AuditService(db).log(
            "user", identity.user_id, "download", "product", product.id,
            {"label": decision.label.value, "members": product.member_ids},
        )
        return Response(
            payload,
            media_type="application/zip",
            headers={"Content-Disposition": f'attachment; filename="{filename}"'},
        )

    AuditService(db).log(
        "user", identity.user_id, "download", "product", product.id, {"label": decision.label.value}
    )
    return PlainTextResponse(
        product.content,
        headers={"Content-Disposition": f'attachment; filename="{product.filename}"'},
    )
