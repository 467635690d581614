# Overview: Catalog price resolution; customer price-list override, else product base price.

from __future__ import annotations

from dataclasses import dataclass

from ..extensions import db
from ..models import Customer, Product, PriceList, PriceListItem
from ..validation import NotFoundError


class ProductNotFoundError(NotFoundError):
    """Product is missing or inactive."""


@dataclass(frozen=True)
class ResolvedPrice:
    product_id: int
    unit_price_cents: int
    unit: str
    source: str  # "price_list" | "base"
    price_list_id: int | None = None

    def to_dict(self) -> dict:
        return {
            "product_id": self.product_id,
            "unit_price_cents": self.unit_price_cents,
            "unit": self.unit,
            "source": self.source,
            "price_list_id": self.price_list_id,
        }


@dataclass(frozen=True)
class PricedLine:
    """A cart line with its currently resolved unit price (input to discounts and totals)."""
    product_id: int
    quantity: int
    unit_price_cents: int
    is_free_item: bool = False
    source_discount_id: int | None = None

    @property
    def line_total_cents(self) -> int:
        if self.is_free_item:
            return 0
        return self.unit_price_cents * self.quantity


def get_active_product(product_id: int) -> Product:
    product = db.session.get(Product, product_id)
    if product is None or not product.is_active:
        raise ProductNotFoundError(f"Product {product_id} not found")
    return product


def get_price_list_override(price_list_id: int | None, product_id: int) -> int | None:
    if not price_list_id:
        return None
    row = (
        db.session.query(PriceListItem.price_cents)
        .join(PriceList, PriceList.id == PriceListItem.price_list_id)
        .filter(
            PriceListItem.price_list_id == price_list_id,
            PriceListItem.product_id == product_id,
            PriceList.is_active.is_(True),
        )
        .first()
    )
    return row[0] if row else None


def resolve_price_for(customer: Customer | None, product: Product) -> ResolvedPrice:
    price_list_id = customer.price_list_id if customer is not None else None
    override = get_price_list_override(price_list_id, product.id)
    if override is not None:
        return ResolvedPrice(
            product_id=product.id,
            unit_price_cents=override,
            unit=product.unit,
            source="price_list",
            price_list_id=price_list_id,
        )
    return ResolvedPrice(
        product_id=product.id,
        unit_price_cents=product.base_price_cents,
        unit=product.unit,
        source="base",
    )


def resolve_unit_price(customer_id: int | None, product_id: int) -> ResolvedPrice:
    """
    Resolve the unit price a customer pays for a product.

    Raises ProductNotFoundError if the product is missing or inactive and
    NotFoundError if customer_id is given but unknown. No side effects.
    """
    product = get_active_product(product_id)
    customer = None
    if customer_id is not None:
        customer = db.session.get(Customer, customer_id)
        if customer is None:
            raise NotFoundError(f"Customer {customer_id} not found")
    return resolve_price_for(customer, product)
