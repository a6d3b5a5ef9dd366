"""
Shared fixtures. Settings are read at import time, so the environment is prepared
before anything under app/ is imported.
"""
import hashlib
import hmac
import os
import time

os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("REDIS_URL", "redis://localhost:6379/15")
os.environ.setdefault("SESSION_SECRET", "test-session-secret-0123456789")
os.environ.setdefault("CAPTCHA_STORE_BACKEND", "memory")

from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from app.db.base import Base
from app.models import audit_log, entitlement, product, user  # noqa: F401
from app.models.product import Product
from app.models.user import User


@pytest.fixture
def engine():
    eng = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=eng)
    yield eng
    Base.metadata.drop_all(bind=eng)
    eng.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autocommit=False, autoflush=False)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def make_user(db):
    def _make(email="buyer@example.com", is_admin=False, **kwargs):
        u = User(email=email, first_name=kwargs.pop("first_name", "Ada"), is_admin=is_admin, **kwargs)
        db.add(u)
        db.commit()
        db.refresh(u)
        return u

    return _make


@pytest.fixture
def make_product(db):
    def _make(
        name="Linux Hardening Check",
        status="active",
        price_cents=4900,
        monthly_price_cents=1000,
        bundled_product_ids=None,
        content="#!/bin/bash\necho audit\n",
        filename="linux_audit.sh",
    ):
        p = Product(
            name=name,
            os="Linux",
            description="ANSSI checks",
            filename=filename,
            content=content,
            status=status,
            price_cents=price_cents,
            monthly_price_cents=monthly_price_cents,
            bundled_product_ids=bundled_product_ids or [],
        )
        db.add(p)
        db.commit()
        db.refresh(p)
        return p

    return _make


class FrozenClock:
    """Callable clock that tests move forward by hand."""

    def __init__(self, now: datetime | None = None):
        self.now = now or datetime(2025, 1, 15, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


@pytest.fixture
def clock():
    return FrozenClock()


@pytest.fixture
def sign_webhook():
    """Build a Stripe-Signature header the way the provider signs webhook deliveries."""

    def _sign(payload: bytes, secret: str, timestamp: int | None = None) -> str:
        ts = int(time.time()) if timestamp is None else timestamp
        digest = hmac.new(secret.encode(), f"{ts}.".encode() + payload, hashlib.sha256).hexdigest()
        return f"t={ts},v1={digest}"

    return _sign
