"""
Checkout routes: session creation, success-page confirmation and provider webhooks.
Confirmation from the success page and from the webhook may race; completion is idempotent.
"""
import json
import logging

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool

from app.api.deps import get_captcha_verifier, get_checkout_provider, get_notifier
from app.captcha.verifier import CaptchaVerifier
from app.checkout.completion import CheckoutCompletionHandler
from app.checkout.models import CheckoutRequest
from app.checkout.provider import CheckoutProvider, CheckoutRejectedError
from app.checkout.webhooks import WebhookSignatureError, handle_event, verify_signature
from app.core.config import settings
from app.core.errors import HTTP_STATUS_BY_FAILURE, FailureKind
from app.db.session import get_db
from app.entitlements.models import ProductStatus
from app.entitlements.pricing import price_cents_for
from app.entitlements.service import EntitlementService
from app.schemas.catalog import CheckoutCreateRequest, CheckoutCreateResponse, CheckoutSuccessResponse
from app.services.auth.identity import Identity, require_identity
from app.services.notifier import Notifier
from app.services.products.service import ProductService
from app.services.users.service import UserService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/checkout", tags=["checkout"])


@router.post("", response_model=CheckoutCreateResponse)
def create_checkout(
    body: CheckoutCreateRequest,
    identity: Identity = Depends(require_identity),
    db: Session = Depends(get_db),
    verifier: CaptchaVerifier = Depends(get_captcha_verifier),
    provider: CheckoutProvider = Depends(get_checkout_provider),
):
    if not verifier.redeem_clearance(body.captcha_challenge_id):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Captcha verification required")
    if not settings.payments_enabled:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Payments are not configured")

    product = ProductService(db).get(body.product_id)
    if product is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Product not found")
    product_status = ProductStatus(product.status)
    if product_status is ProductStatus.OFFLINE:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Product temporarily unavailable")
    if product_status is ProductStatus.DEVELOPMENT:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Product not available for purchase")

    decision = EntitlementService(db).resolve_for_product(identity.user_id, product, is_admin=identity.is_admin)
    if decision.has_access:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="You already have access to this product")

    user = UserService(db).get(identity.user_id)
    request = CheckoutRequest(
        user_id=identity.user_id,
        email=user.email if user else None,
        customer_id=user.checkout_customer_id if user else None,
        product_id=product.id,
        product_name=product.name,
        purchase_type=body.purchase_type,
        amount_cents=price_cents_for(body.purchase_type, product.price_cents, product.monthly_price_cents),
        success_url=f"{settings.public_base_url}/checkout/success?session_id={{CHECKOUT_SESSION_ID}}",
        cancel_url=f"{settings.public_base_url}/products/{product.id}",
    )
    try:
        session = provider.create_session(request)
    except CheckoutRejectedError as e:
        logger.error("checkout_session_rejected", extra={"product_id": product.id, "error": str(e)})
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Could not create checkout session")
    return CheckoutCreateResponse(session_id=session.session_id, url=session.url)


@router.get("/success", response_model=CheckoutSuccessResponse)
def checkout_success(
    session_id: str = Query(""),
    identity: Identity = Depends(require_identity),
    db: Session = Depends(get_db),
    provider: CheckoutProvider = Depends(get_checkout_provider),
    notifier: Notifier = Depends(get_notifier),
):
    """Safe to call repeatedly: the second call returns the record the first one created."""
    handler = CheckoutCompletionHandler(db, provider=provider, notifier=notifier)
    result = handler.complete_from_provider(session_id, viewer_id=identity.user_id)
    if not result.ok:
        failure = result.failure or FailureKind.INVALID_INPUT
        raise HTTPException(status_code=HTTP_STATUS_BY_FAILURE[failure], detail=result.message)
    record = result.record
    return CheckoutSuccessResponse(
        success=True,
        product_id=record.product_id,
        purchase_type=record.purchase_type,
        expires_at=record.expires_at,
    )


def _process_event(event: dict, db: Session, notifier: Notifier):
    handler = CheckoutCompletionHandler(db, notifier=notifier)
    return handle_event(event, handler)


@router.post("/webhook")
async def checkout_webhook(
    request: Request,
    db: Session = Depends(get_db),
    notifier: Notifier = Depends(get_notifier),
):
    payload = await request.body()
    try:
        verify_signature(
            payload,
            request.headers.get("Stripe-Signature"),
            settings.checkout_webhook_secret,
            tolerance_seconds=settings.checkout_webhook_tolerance_seconds,
        )
    except WebhookSignatureError as e:
        logger.warning("webhook_signature_invalid", extra={"error": str(e)})
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid signature")
    try:
        event = json.loads(payload)
    except ValueError:
        event = None
    if not isinstance(event, dict):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid payload")

    result = await run_in_threadpool(_process_event, event, db, notifier)
    # Ask the provider to retry only when we could not reach our own store.
    if result is not None and result.failure is FailureKind.UPSTREAM_UNAVAILABLE:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=result.message)
    return {"received": True}
