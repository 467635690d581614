# Overview: Catalog lookups and product creation (used by the storefront listing and seeding).

from __future__ import annotations

from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import Product
from ..models.catalog import VALID_STOCK_STATUSES
from ..pagination import paginate
from ..validation import (
    ConflictError,
    ModelValidationPolicy,
    NotFoundError,
    ValidationError,
    enforce_rules_product,
    validate_payload,
)

PRODUCT_POLICY = ModelValidationPolicy(
    writable_fields={
        "sku", "name", "description", "base_price_cents",
        "unit", "units_per_case", "stock_status", "is_active",
    },
    required_on_create={"sku", "name", "base_price_cents"},
)


def list_products(
    *,
    search: str | None = None,
    include_inactive: bool = False,
    page: int | None = None,
    per_page: int | None = None,
) -> dict:
    query = db.session.query(Product)
    if not include_inactive:
        query = query.filter(Product.is_active.is_(True))
    if search:
        like = f"%{search.strip()}%"
        query = query.filter(Product.name.ilike(like) | Product.sku.ilike(like))
    query = query.order_by(Product.name.asc(), Product.id.asc())
    return paginate(query, page=page, per_page=per_page, serialize=lambda p: p.to_dict())


def get_product(product_id: int) -> Product:
    product = db.session.get(Product, product_id)
    if product is None:
        raise NotFoundError(f"Product {product_id} not found")
    return product


def create_product(payload: dict) -> Product:
    patch = validate_payload(model=Product, payload=payload, policy=PRODUCT_POLICY, partial=False)
    enforce_rules_product(patch)
    if "stock_status" in patch and patch["stock_status"] not in VALID_STOCK_STATUSES:
        raise ValidationError(f"stock_status must be one of: {', '.join(sorted(VALID_STOCK_STATUSES))}")

    product = Product(**patch)
    db.session.add(product)
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        raise ConflictError(f"SKU {patch['sku']} already exists")
    return product
