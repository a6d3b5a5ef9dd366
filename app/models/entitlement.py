"""
Entitlement model: one row per confirmed checkout session or subscription renewal.
source_session_id is unique: confirming the same session twice never creates a second row.
Rows are append-only; subscription validity is derived from expires_at at read time.
"""
from datetime import datetime, timezone
from uuid import uuid4

from sqlalchemy import Column, DateTime, Index, Integer, String

from app.db.base import Base


class Entitlement(Base):
    __tablename__ = "entitlements"
    __table_args__ = (Index("ix_entitlements_user_product", "user_id", "product_id"),)

    id = Column(String, primary_key=True, default=lambda: str(uuid4()))
    user_id = Column(String, nullable=False, index=True)
    product_id = Column(Integer, nullable=False)
    kind = Column(String, nullable=False)                     # perpetual / subscriptionMonthly / subscriptionYearly
    price_cents = Column(Integer, nullable=False, default=0)
    acquired_at = Column(DateTime(timezone=True), nullable=False)
    expires_at = Column(DateTime(timezone=True), nullable=True)  # null = never (perpetual)
    source_session_id = Column(String, unique=True, nullable=False)
    provider_subscription_id = Column(String, nullable=True, index=True)
    created_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )
