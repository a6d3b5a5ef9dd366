"""
Catalog and purchase API schemas.
"""
from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

from app.entitlements.models import EntitlementLabel, ProductStatus, PurchaseType


class ProductOut(BaseModel):
    id: int
    name: str
    os: str | None = None
    description: str | None = None
    compliance: str | None = None
    status: str
    price_cents: int = Field(..., alias="priceCents")
    monthly_price_cents: int | None = Field(None, alias="monthlyPriceCents")
    yearly_price_cents: int | None = Field(None, alias="yearlyPriceCents")
    bundled_product_ids: list[int] = Field(default_factory=list, alias="bundledProductIds")

    model_config = ConfigDict(populate_by_name=True)


class PurchaseOut(BaseModel):
    id: str
    product_id: int = Field(..., alias="productId")
    product_name: str | None = Field(None, alias="productName")
    purchase_type: str = Field(..., alias="purchaseType")
    price_cents: int = Field(..., alias="priceCents")
    acquired_at: datetime = Field(..., alias="acquiredAt")
    expires_at: datetime | None = Field(None, alias="expiresAt")
    label: EntitlementLabel
    can_download_now: bool = Field(..., alias="canDownloadNow")

    model_config = ConfigDict(populate_by_name=True)


class CheckoutCreateRequest(BaseModel):
    product_id: int = Field(..., alias="productId")
    purchase_type: PurchaseType = Field(PurchaseType.DIRECT, alias="purchaseType")
    captcha_challenge_id: str = Field(..., alias="captchaChallengeId", min_length=1)

    model_config = ConfigDict(populate_by_name=True)


class CheckoutCreateResponse(BaseModel):
    session_id: str = Field(..., alias="sessionId")
    url: str

    model_config = ConfigDict(populate_by_name=True)


class CheckoutSuccessResponse(BaseModel):
    success: bool
    product_id: int = Field(..., alias="productId")
    purchase_type: str = Field(..., alias="purchaseType")
    expires_at: datetime | None = Field(None, alias="expiresAt")

    model_config = ConfigDict(populate_by_name=True)


class ProductUpdateRequest(BaseModel):
    name: str | None = Field(None, min_length=1, max_length=200)
    monthly_price_cents: int | None = Field(None, alias="monthlyPriceCents", gt=0)
    status: ProductStatus | None = None

    model_config = ConfigDict(populate_by_name=True)
