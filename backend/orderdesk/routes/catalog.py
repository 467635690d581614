# Overview: Flask API routes for the catalog; product listing, price resolution and price lists.

from flask import Blueprint, current_app, request

from ..api import DOMAIN_ERRORS, api_error, api_ok, api_page, domain_error, json_body
from ..services import catalog_service, customer_service, pricing_service

catalog_bp = Blueprint("catalog", __name__, url_prefix="/api")


@catalog_bp.get("/products")
def list_products():
    """
    List active products.

    Query params:
    - q: str (optional) - name/SKU search
    - include_inactive: bool (optional)
    - page, per_page: int (optional) - default 20, max 100
    """
    try:
        result = catalog_service.list_products(
            search=request.args.get("q"),
            include_inactive=request.args.get("include_inactive", "false").lower() == "true",
            page=request.args.get("page", type=int),
            per_page=request.args.get("per_page", type=int),
        )
        return api_page(result)
    except DOMAIN_ERRORS as exc:
        return domain_error(exc)


@catalog_bp.post("/products")
def create_product():
    try:
        product = catalog_service.create_product(json_body())
        return api_ok(product.to_dict(), status=201)
    except DOMAIN_ERRORS as exc:
        return domain_error(exc)
    except Exception:
        current_app.logger.exception("Failed to create product")
        return api_error("Internal server error", 500)


@catalog_bp.get("/products/<int:product_id>")
def get_product(product_id: int):
    try:
        return api_ok(catalog_service.get_product(product_id).to_dict())
    except DOMAIN_ERRORS as exc:
        return domain_error(exc)


@catalog_bp.get("/products/<int:product_id>/price")
def product_price(product_id: int):
    """Unit price for a customer (price-list override, else base price)."""
    customer_id = request.args.get("customer_id", type=int)
    try:
        resolved = pricing_service.resolve_unit_price(customer_id, product_id)
        return api_ok(resolved.to_dict())
    except DOMAIN_ERRORS as exc:
        return domain_error(exc)


@catalog_bp.post("/price-lists")
def create_price_list():
    try:
        price_list = customer_service.create_price_list(json_body())
        return api_ok(price_list.to_dict(), status=201)
    except DOMAIN_ERRORS as exc:
        return domain_error(exc)
    except Exception:
        current_app.logger.exception("Failed to create price list")
        return api_error("Internal server error", 500)


@catalog_bp.put("/price-lists/<int:price_list_id>/items/<int:product_id>")
def set_price_override(price_list_id: int, product_id: int):
    data = json_body()
    if "price_cents" not in data:
        return api_error("price_cents is required", 400)
    try:
        item = customer_service.set_price_override(price_list_id, product_id, data["price_cents"])
        return api_ok(item.to_dict())
    except DOMAIN_ERRORS as exc:
        return domain_error(exc)
    except Exception:
        current_app.logger.exception("Failed to set price override")
        return api_error("Internal server error", 500)
