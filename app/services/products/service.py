"""
ProductService: catalog reads, admin updates and the default toolkit seed.
"""
import logging

from sqlalchemy.orm import Session

from app.entitlements.models import ProductStatus
from app.models.product import Product

logger = logging.getLogger(__name__)

DEFAULT_PRODUCTS = [
    {
        "name": "Windows Security Audit",
        "os": "Windows",
        "description": "Full audit based on ANSSI guides and CIS benchmarks for Windows environments.",
        "filename": "win_audit.ps1",
        "compliance": "ANSSI & CIS",
        "content": '# Windows Security Audit\nWrite-Host "ANSSI/CIS audit..."\n',
        "price_cents": 4900,
        "monthly_price_cents": 1000,
    },
    {
        "name": "Linux Hardening Check",
        "os": "Linux",
        "description": "ANSSI (BP-028) and CIS compliance checks for Linux servers.",
        "filename": "linux_audit.sh",
        "compliance": "ANSSI & CIS",
        "content": '#!/bin/bash\necho "ANSSI/CIS audit..."\n',
        "price_cents": 4900,
        "monthly_price_cents": 1000,
    },
    {
        "name": "ESXi Host Validator",
        "os": "VMware",
        "description": "Security checks for ESXi hosts following CIS recommendations.",
        "filename": "esxi_check.py",
        "compliance": "CIS",
        "content": '#!/usr/bin/env python3\nprint("CIS audit...")\n',
        "price_cents": 5900,
        "monthly_price_cents": 1200,
    },
    {
        "name": "Container Security Scanner",
        "os": "Docker",
        "description": "Docker configuration scan against the CIS benchmark.",
        "filename": "docker_scan.sh",
        "compliance": "CIS",
        "content": '#!/bin/bash\necho "CIS audit..."\n',
        "price_cents": 3900,
        "monthly_price_cents": 800,
    },
]

DEFAULT_BUNDLES = [
    {
        "name": "Infrastructure Audit Bundle",
        "os": "Multi-platform",
        "description": "Windows, Linux and ESXi toolkits in one archive.",
        "filename": "infrastructure_audit.zip",
        "compliance": "ANSSI & CIS",
        "price_cents": 11900,
        "monthly_price_cents": 2500,
        "members": ["Windows Security Audit", "Linux Hardening Check", "ESXi Host Validator"],
    },
]


class ProductService:
    def __init__(self, db: Session):
        self.db = db

    def get(self, product_id: int) -> Product | None:
        return self.db.get(Product, product_id)

    def list_visible(self) -> list[Product]:
        """Catalog shown to buyers: everything except pre-release products."""
        return (
            self.db.query(Product)
            .filter(Product.status != ProductStatus.DEVELOPMENT.value)
            .order_by(Product.id)
            .all()
        )

    def members_of(self, bundle: Product) -> list[Product | None]:
        """Member products in bundle order; None where a listed id no longer exists."""
        return [self.get(member_id) for member_id in bundle.member_ids]

    def update(
        self,
        product: Product,
        *,
        name: str | None = None,
        monthly_price_cents: int | None = None,
        status: ProductStatus | None = None,
    ) -> Product:
        if name is not None:
            product.name = name
        if monthly_price_cents is not None:
            product.monthly_price_cents = monthly_price_cents
        if status is not None:
            product.status = status.value
        self.db.add(product)
        self.db.commit()
        self.db.refresh(product)
        logger.info("product_updated", extra={"product_id": product.id, "outcome": product.status})
        return product

    def seed_default_products(self) -> int:
        """Insert the default toolkits and bundles that are missing (matched by name). Returns how many were added."""
        existing = {name for (name,) in self.db.query(Product.name).all()}
        added = 0
        for spec in DEFAULT_PRODUCTS:
            if spec["name"] in existing:
                continue
            self.db.add(Product(**spec))
            added += 1
        self.db.flush()

        ids_by_name = dict(self.db.query(Product.name, Product.id).all())
        for spec in DEFAULT_BUNDLES:
            if spec["name"] in existing:
                continue
            if any(name not in ids_by_name for name in spec["members"]):
                logger.warning("default_bundle_skipped", extra={"error": f"missing members for {spec['name']}"})
                continue
            members = [ids_by_name[name] for name in spec["members"]]
            fields = {k: v for k, v in spec.items() if k != "members"}
            self.db.add(Product(bundled_product_ids=members, **fields))
            added += 1
        if added:
            self.db.commit()
            logger.info("default_products_seeded", extra={"attempts": added})
        return added
