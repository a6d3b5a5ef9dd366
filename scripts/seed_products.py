#!/usr/bin/env python3
"""
Create tables and insert the default audit toolkits that are not in the catalog yet.
Run from the project root: python -m scripts.seed_products
or: PYTHONPATH=. python scripts/seed_products.py
"""
import os
import sys

# project root on PYTHONPATH
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from app.db.session import SessionLocal, init_db
from app.services.products.service import ProductService


def main():
    init_db()
    db = SessionLocal()
    try:
        service = ProductService(db)
        added = service.seed_default_products()
        products = service.list_visible()
        print(f"Added {added} product(s); catalog now lists {len(products)}:\n")
        for p in products:
            print(f"  [{p.id}] {p.name} ({p.os}) - {p.price_cents / 100:.2f} / {p.monthly_price_cents / 100:.2f} monthly")
    finally:
        db.close()


if __name__ == "__main__":
    main()
