"""
HTTP surface tests: FastAPI TestClient with dependency overrides.
No Redis and no payment provider are needed; the captcha store runs in memory.
"""
import io
import json
import zipfile
from datetime import datetime, timezone
from types import SimpleNamespace
from unittest.mock import MagicMock, patch

import pytest
from fastapi.testclient import TestClient

from app.api.deps import (
    get_captcha_verifier,
    get_checkout_provider,
    get_login_rate_limiter,
    get_notifier,
)
from app.captcha.store import MemoryChallengeStore
from app.captcha.verifier import CaptchaVerifier
from app.checkout.models import CheckoutOutcome, CheckoutSession, CheckoutStatus
from app.checkout.provider import CheckoutProvider
from app.core.config import settings
from app.core.errors import UpstreamUnavailableError
from app.db.session import get_db
from app.entitlements.ledger import EntitlementLedger
from app.entitlements.models import PurchaseType
from app.main import app
from app.models.audit_log import AuditLog
from app.models.entitlement import Entitlement
from app.models.product import Product
from app.services.auth.identity import issue_session_token
from app.services.auth.login_rate_limit import LoginRateLimiter
from app.services.notifier import Notifier

STRONG_PASSWORD = "Sup3r$ecret"


@pytest.fixture
def api(session_factory):
    verifier = CaptchaVerifier(MemoryChallengeStore())
    provider = MagicMock(spec=CheckoutProvider)
    notifier = MagicMock(spec=Notifier)
    limiter = MagicMock(spec=LoginRateLimiter)
    limiter.check.return_value = True

    def _db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = _db
    app.dependency_overrides[get_captcha_verifier] = lambda: verifier
    app.dependency_overrides[get_checkout_provider] = lambda: provider
    app.dependency_overrides[get_notifier] = lambda: notifier
    app.dependency_overrides[get_login_rate_limiter] = lambda: limiter
    try:
        yield SimpleNamespace(
            client=TestClient(app),
            verifier=verifier,
            provider=provider,
            notifier=notifier,
            limiter=limiter,
        )
    finally:
        app.dependency_overrides.clear()


def _solve_captcha(client) -> str:
    challenge = client.get("/api/captcha/image-challenge").json()
    answer = [i for i, tag in enumerate(challenge["grid"]) if tag == challenge["targetCategory"]]
    resp = client.post(
        "/api/captcha/image-verify",
        json={"challengeId": challenge["challengeId"], "selectedIndices": answer},
    )
    assert resp.json() == {"success": True}
    return challenge["challengeId"]


def _login_as(client, user) -> None:
    client.cookies.set(settings.session_cookie_name, issue_session_token(user.id))


def _grant(db, user, product, session_id="cs_seed", kind="perpetual", expires_at=None):
    EntitlementLedger(db).insert_if_absent(
        Entitlement(
            user_id=user.id,
            product_id=product.id,
            kind=kind,
            price_cents=product.price_cents,
            acquired_at=datetime.now(timezone.utc),
            expires_at=expires_at,
            source_session_id=session_id,
        )
    )


class TestHealth:
    def test_health(self, api):
        assert api.client.get("/health").json() == {"status": "ok"}

    def test_metrics_exposed(self, api):
        resp = api.client.get("/metrics")
        assert resp.status_code == 200
        assert "captcha_verifications_total" in resp.text


class TestCaptchaRoutes:
    def test_challenge_payload(self, api):
        body = api.client.get("/api/captcha/image-challenge").json()
        assert set(body) == {"challengeId", "targetCategory", "targetLabel", "grid"}
        assert len(body["grid"]) == 9

    def test_verify_is_single_use(self, api):
        challenge = api.client.get("/api/captcha/image-challenge").json()
        answer = [i for i, tag in enumerate(challenge["grid"]) if tag == challenge["targetCategory"]]
        payload = {"challengeId": challenge["challengeId"], "selectedIndices": answer}
        assert api.client.post("/api/captcha/image-verify", json=payload).json() == {"success": True}
        assert api.client.post("/api/captcha/image-verify", json=payload).json() == {"success": False}

    def test_malformed_selection_is_plain_failure(self, api):
        resp = api.client.post("/api/captcha/image-verify", json={"challengeId": "x", "selectedIndices": [-3]})
        assert resp.status_code == 200
        assert resp.json() == {"success": False}

    def test_store_outage_returns_503(self, api):
        broken = MagicMock()
        broken.issue_challenge.side_effect = UpstreamUnavailableError("down")
        app.dependency_overrides[get_captcha_verifier] = lambda: broken
        assert api.client.get("/api/captcha/image-challenge").status_code == 503


class TestAuthRoutes:
    def _register(self, api, email="first@example.com", **overrides):
        body = {
            "email": email,
            "password": STRONG_PASSWORD,
            "firstName": "Grace",
            "captchaChallengeId": _solve_captcha(api.client),
        }
        body.update(overrides)
        return api.client.post("/api/auth/register", json=body)

    def test_first_user_becomes_admin(self, api):
        first = self._register(api)
        second = self._register(api, email="second@example.com")
        assert first.status_code == 201
        assert first.json()["isAdmin"] is True
        assert second.json()["isAdmin"] is False

    def test_register_sets_session_and_sends_welcome(self, api):
        self._register(api)
        assert api.client.get("/api/auth/me").json()["email"] == "first@example.com"
        template, recipient, _ = api.notifier.send.call_args.args
        assert (template, recipient) == ("welcome", "first@example.com")

    def test_register_requires_captcha(self, api):
        resp = api.client.post(
            "/api/auth/register",
            json={"email": "a@example.com", "password": STRONG_PASSWORD, "firstName": "A", "captchaChallengeId": "nope"},
        )
        assert resp.status_code == 400

    def test_clearance_cannot_be_reused(self, api):
        challenge_id = _solve_captcha(api.client)
        assert self._register(api, captchaChallengeId=challenge_id).status_code == 201
        assert self._register(api, email="b@example.com", captchaChallengeId=challenge_id).status_code == 400

    @pytest.mark.parametrize("password", ["short1!", "alllowercase1!", "ALLUPPERCASE1!", "NoDigits!!", "NoSpecial123"])
    def test_password_policy(self, api, password):
        assert self._register(api, password=password).status_code == 422

    def test_duplicate_email(self, api):
        self._register(api)
        assert self._register(api).status_code == 400

    def test_login(self, api):
        self._register(api)
        api.client.cookies.clear()
        resp = api.client.post(
            "/api/auth/login",
            json={"email": "first@example.com", "password": STRONG_PASSWORD, "captchaChallengeId": _solve_captcha(api.client)},
        )
        assert resp.status_code == 200
        assert api.client.get("/api/auth/me").status_code == 200
        api.limiter.reset.assert_called_once()

    def test_login_wrong_password(self, api):
        self._register(api)
        resp = api.client.post(
            "/api/auth/login",
            json={"email": "first@example.com", "password": "Wrong#Pass1", "captchaChallengeId": _solve_captcha(api.client)},
        )
        assert resp.status_code == 401
        api.limiter.reset.assert_not_called()

    def test_login_rate_limited(self, api):
        api.limiter.check.return_value = False
        resp = api.client.post(
            "/api/auth/login",
            json={"email": "x@example.com", "password": STRONG_PASSWORD, "captchaChallengeId": "c"},
        )
        assert resp.status_code == 429

    def test_logout_clears_session(self, api):
        self._register(api)
        api.client.post("/api/auth/logout")
        assert api.client.get("/api/auth/me").status_code == 401

    def test_tampered_cookie_is_anonymous(self, api):
        api.client.cookies.set(settings.session_cookie_name, "forged.token")
        assert api.client.get("/api/auth/me").status_code == 401


class TestCatalogAndPurchases:
    def test_list_hides_development(self, api, make_product):
        make_product(name="Released")
        make_product(name="Upcoming", status="development")
        products = api.client.get("/api/products").json()
        assert [p["name"] for p in products] == ["Released"]
        assert products[0]["yearlyPriceCents"] == 10200

    def test_download_requires_purchase(self, api, make_user, make_product):
        buyer, product = make_user(), make_product()
        _login_as(api.client, buyer)
        assert api.client.get(f"/api/products/{product.id}/download").status_code == 403

    def test_download_after_purchase(self, api, db, make_user, make_product):
        buyer, product = make_user(), make_product()
        _grant(db, buyer, product)
        _login_as(api.client, buyer)
        resp = api.client.get(f"/api/products/{product.id}/download")
        assert resp.status_code == 200
        assert "echo audit" in resp.text
        assert "linux_audit.sh" in resp.headers["content-disposition"]

    def test_maintenance_keeps_ownership_but_blocks_download(self, api, db, make_user, make_product):
        buyer, product = make_user(), make_product(status="maintenance")
        _grant(db, buyer, product)
        _login_as(api.client, buyer)
        assert api.client.get(f"/api/products/{product.id}/download").status_code == 503
        check = api.client.get(f"/api/purchases/check/{product.id}").json()
        assert check["hasAccess"] is True
        assert check["canDownloadNow"] is False
        assert check["label"] == "direct"

    def test_check_anonymous(self, api, make_product):
        product = make_product()
        body = api.client.get(f"/api/purchases/check/{product.id}").json()
        assert body["hasAccess"] is False
        assert body["purchaseType"] is None
        assert body["expiresAt"] is None

    def test_check_unknown_product(self, api):
        assert api.client.get("/api/purchases/check/999").status_code == 404

    def test_purchase_history(self, api, db, make_user, make_product):
        buyer, product = make_user(), make_product()
        _grant(db, buyer, product)
        _login_as(api.client, buyer)
        history = api.client.get("/api/purchases").json()
        assert len(history) == 1
        assert history[0]["purchaseType"] == "direct"
        assert history[0]["label"] == "direct"
        assert history[0]["productName"] == product.name


class TestCheckoutRoutes:
    @pytest.fixture(autouse=True)
    def payments_on(self, sign_webhook):
        self._sign = sign_webhook
        with patch.object(settings, "checkout_api_key", "sk_test"), patch.object(
            settings, "checkout_webhook_secret", "whsec_test"
        ):
            yield

    def _create(self, api, product, purchase_type="direct"):
        return api.client.post(
            "/api/checkout",
            json={"productId": product.id, "purchaseType": purchase_type, "captchaChallengeId": _solve_captcha(api.client)},
        )

    def test_create_session_with_yearly_price(self, api, make_user, make_product):
        buyer, product = make_user(), make_product()
        _login_as(api.client, buyer)
        api.provider.create_session.return_value = CheckoutSession(session_id="cs_1", url="https://pay.test/cs_1")

        resp = self._create(api, product, "yearly")
        assert resp.status_code == 200
        assert resp.json() == {"sessionId": "cs_1", "url": "https://pay.test/cs_1"}
        request = api.provider.create_session.call_args.args[0]
        assert request.amount_cents == 10200
        assert request.purchase_type is PurchaseType.YEARLY

    def test_requires_login(self, api, make_product):
        assert self._create(api, make_product()).status_code == 401

    def test_requires_captcha(self, api, make_user, make_product):
        buyer, product = make_user(), make_product()
        _login_as(api.client, buyer)
        resp = api.client.post("/api/checkout", json={"productId": product.id, "captchaChallengeId": "nope"})
        assert resp.status_code == 400

    def test_already_owned(self, api, db, make_user, make_product):
        buyer, product = make_user(), make_product()
        _grant(db, buyer, product)
        _login_as(api.client, buyer)
        assert self._create(api, product).status_code == 400
        api.provider.create_session.assert_not_called()

    @pytest.mark.parametrize("status,code", [("offline", 503), ("development", 400)])
    def test_unavailable_products(self, api, make_user, make_product, status, code):
        buyer, product = make_user(), make_product(status=status)
        _login_as(api.client, buyer)
        assert self._create(api, product).status_code == code

    def test_payments_disabled(self, api, make_user, make_product):
        buyer, product = make_user(), make_product()
        _login_as(api.client, buyer)
        with patch.object(settings, "checkout_api_key", ""):
            assert self._create(api, product).status_code == 503

    def test_success_is_idempotent(self, api, db, make_user, make_product):
        buyer, product = make_user(), make_product()
        _login_as(api.client, buyer)
        api.provider.get_session_outcome.return_value = CheckoutOutcome(
            session_id="cs_1",
            status=CheckoutStatus.PAID,
            user_id=buyer.id,
            product_id=product.id,
            purchase_type=PurchaseType.MONTHLY,
            amount_cents=1000,
        )
        first = api.client.get("/api/checkout/success", params={"session_id": "cs_1"})
        second = api.client.get("/api/checkout/success", params={"session_id": "cs_1"})
        assert first.status_code == second.status_code == 200
        assert first.json()["purchaseType"] == "subscriptionMonthly"
        assert first.json() == second.json()
        assert db.query(Entitlement).count() == 1
        assert api.client.get(f"/api/purchases/check/{product.id}").json()["label"] == "subscriptionActive"

    def test_success_foreign_session(self, api, make_user, make_product):
        buyer, intruder, product = make_user(), make_user(email="x@example.com"), make_product()
        _login_as(api.client, intruder)
        api.provider.get_session_outcome.return_value = CheckoutOutcome(
            session_id="cs_1",
            status=CheckoutStatus.PAID,
            user_id=buyer.id,
            product_id=product.id,
            purchase_type=PurchaseType.DIRECT,
        )
        assert api.client.get("/api/checkout/success", params={"session_id": "cs_1"}).status_code == 403

    def test_success_unpaid(self, api, make_user, make_product):
        buyer, product = make_user(), make_product()
        _login_as(api.client, buyer)
        api.provider.get_session_outcome.return_value = CheckoutOutcome(
            session_id="cs_1",
            status=CheckoutStatus.UNPAID,
            user_id=buyer.id,
            product_id=product.id,
            purchase_type=PurchaseType.DIRECT,
        )
        assert api.client.get("/api/checkout/success", params={"session_id": "cs_1"}).status_code == 402

    def _post_webhook(self, api, event, secret="whsec_test"):
        payload = json.dumps(event).encode()
        header = self._sign(payload, secret)
        return api.client.post(
            "/api/checkout/webhook",
            content=payload,
            headers={"Stripe-Signature": header, "Content-Type": "application/json"},
        )

    def test_webhook_completes_checkout(self, api, db, make_user, make_product):
        buyer, product = make_user(), make_product()
        event = {
            "type": "checkout.session.completed",
            "data": {
                "object": {
                    "id": "cs_hook",
                    "payment_status": "paid",
                    "metadata": {"userId": buyer.id, "productId": str(product.id), "purchaseType": "direct"},
                    "amount_total": 4900,
                }
            },
        }
        assert self._post_webhook(api, event).json() == {"received": True}
        assert self._post_webhook(api, event).status_code == 200
        assert db.query(Entitlement).filter_by(source_session_id="cs_hook").count() == 1

    def test_webhook_bad_signature(self, api):
        assert self._post_webhook(api, {"type": "ping"}, secret="wrong").status_code == 400


class TestBundleRoutes:
    @pytest.fixture
    def bundle(self, make_product):
        win = make_product(name="Win", filename="win_audit.ps1", content="Write-Host audit\n")
        linux = make_product(name="Linux", filename="linux_audit.sh")
        return make_product(
            name="Infra Bundle", filename="infra.zip", bundled_product_ids=[win.id, linux.id], content=""
        )

    def test_listing_exposes_members(self, api, bundle):
        listed = {p["name"]: p for p in api.client.get("/api/products").json()}
        assert listed["Infra Bundle"]["bundledProductIds"] == bundle.member_ids
        assert listed["Win"]["bundledProductIds"] == []

    def test_bundle_download_is_zip_of_members(self, api, db, make_user, bundle):
        buyer = make_user()
        _grant(db, buyer, bundle)
        _login_as(api.client, buyer)
        resp = api.client.get(f"/api/products/{bundle.id}/download")
        assert resp.status_code == 200
        assert resp.headers["content-type"] == "application/zip"
        assert 'filename="infra-bundle.zip"' in resp.headers["content-disposition"]
        with zipfile.ZipFile(io.BytesIO(resp.content)) as archive:
            assert sorted(archive.namelist()) == ["linux_audit.sh", "win_audit.ps1"]
            assert archive.read("win_audit.ps1") == b"Write-Host audit\n"

    def test_bundle_purchase_unlocks_member(self, api, db, make_user, bundle):
        buyer = make_user()
        _grant(db, buyer, bundle)
        _login_as(api.client, buyer)
        member_id = bundle.member_ids[0]
        assert api.client.get(f"/api/purchases/check/{member_id}").json()["hasAccess"] is True
        assert api.client.get(f"/api/products/{member_id}/download").status_code == 200

    def test_owning_every_member_owns_bundle(self, api, db, make_user, bundle):
        buyer = make_user()
        win_id, linux_id = bundle.member_ids
        _grant(db, buyer, db.get(Product, win_id), session_id="cs_w")
        _login_as(api.client, buyer)
        assert api.client.get(f"/api/purchases/check/{bundle.id}").json()["hasAccess"] is False

        _grant(db, buyer, db.get(Product, linux_id), session_id="cs_l")
        assert api.client.get(f"/api/purchases/check/{bundle.id}").json()["hasAccess"] is True

    def test_incomplete_bundle_download_fails(self, api, db, make_user, make_product):
        buyer = make_user()
        broken = make_product(name="Broken", bundled_product_ids=[999])
        _grant(db, buyer, broken)
        _login_as(api.client, buyer)
        assert api.client.get(f"/api/products/{broken.id}/download").status_code == 500


class TestAdminRoutes:
    def _patch(self, api, product_id, body):
        return api.client.patch(f"/api/admin/products/{product_id}", json=body)

    def test_requires_login(self, api, make_product):
        assert self._patch(api, make_product().id, {"status": "maintenance"}).status_code == 401

    def test_requires_admin(self, api, make_user, make_product):
        product = make_product()
        _login_as(api.client, make_user())
        assert self._patch(api, product.id, {"status": "maintenance"}).status_code == 403

    def test_maintenance_blocks_owner_download(self, api, db, make_user, make_product):
        admin, buyer = make_user(email="admin@example.com", is_admin=True), make_user()
        product = make_product()
        _grant(db, buyer, product)

        _login_as(api.client, admin)
        resp = self._patch(api, product.id, {"status": "maintenance"})
        assert resp.status_code == 200
        assert resp.json()["status"] == "maintenance"

        _login_as(api.client, buyer)
        check = api.client.get(f"/api/purchases/check/{product.id}").json()
        assert check["hasAccess"] is True
        assert check["canDownloadNow"] is False
        assert api.client.get(f"/api/products/{product.id}/download").status_code == 503

    def test_reprice_and_rename(self, api, db, make_user, make_product):
        product = make_product()
        _login_as(api.client, make_user(is_admin=True))
        body = self._patch(api, product.id, {"name": "Linux Audit v2", "monthlyPriceCents": 1500}).json()
        assert body["name"] == "Linux Audit v2"
        assert body["monthlyPriceCents"] == 1500
        assert body["yearlyPriceCents"] == 15300
        assert db.query(AuditLog).filter_by(action="product_updated").count() == 1

    @pytest.mark.parametrize(
        "body,code",
        [({}, 400), ({"status": "archived"}, 422), ({"monthlyPriceCents": 0}, 422)],
    )
    def test_invalid_updates(self, api, make_user, make_product, body, code):
        product = make_product()
        _login_as(api.client, make_user(is_admin=True))
        assert self._patch(api, product.id, body).status_code == code

    def test_unknown_product(self, api, make_user):
        _login_as(api.client, make_user(is_admin=True))
        assert self._patch(api, 999, {"status": "offline"}).status_code == 404
