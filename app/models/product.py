"""
Product model: downloadable audit toolkits sold per unit or by subscription.
status drives the entitlement resolver: active / maintenance / offline / development.
A bundle lists its member products in bundled_product_ids; an empty list is a single toolkit.
"""
from datetime import datetime, timezone

from sqlalchemy import JSON, Column, DateTime, Integer, String, Text

from app.db.base import Base


class Product(Base):
    __tablename__ = "products"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String, nullable=False, unique=True)
    os = Column(String, nullable=False)                       # Windows / Linux / VMware / Docker
    description = Column(Text, nullable=False, default="")
    filename = Column(String, nullable=False)
    content = Column(Text, nullable=False, default="")        # script body served on download
    compliance = Column(String, nullable=False, default="ANSSI & CIS")
    status = Column(String, nullable=False, default="active")
    price_cents = Column(Integer, nullable=False)             # one-time price
    monthly_price_cents = Column(Integer, nullable=False)     # yearly price is derived from it
    bundled_product_ids = Column(JSON, nullable=False, default=list)
    created_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )
    updated_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    @property
    def member_ids(self) -> list[int]:
        return [int(i) for i in (self.bundled_product_ids or [])]

    @property
    def is_bundle(self) -> bool:
        return bool(self.bundled_product_ids)
