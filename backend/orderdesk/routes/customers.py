# Overview: Flask API routes for customers; account, price-list assignment, order and payment history.

from flask import Blueprint, current_app, request

from ..api import DOMAIN_ERRORS, api_error, api_ok, api_page, domain_error, json_body
from ..services import customer_service, order_service, payment_service

customers_bp = Blueprint("customers", __name__, url_prefix="/api/customers")


@customers_bp.post("")
def create_customer():
    try:
        customer = customer_service.create_customer(json_body())
        return api_ok(customer.to_dict(), status=201)
    except DOMAIN_ERRORS as exc:
        return domain_error(exc)
    except Exception:
        current_app.logger.exception("Failed to create customer")
        return api_error("Internal server error", 500)


@customers_bp.get("/<int:customer_id>")
def get_customer(customer_id: int):
    """Customer with credit limit, credit used, available credit and wallet."""
    try:
        return api_ok(customer_service.get_customer(customer_id).to_dict())
    except DOMAIN_ERRORS as exc:
        return domain_error(exc)


@customers_bp.put("/<int:customer_id>/price-list")
def assign_price_list(customer_id: int):
    data = json_body()
    if not isinstance(data, dict) or "price_list_id" not in data:
        return api_error("price_list_id is required (null clears it)", 400)
    price_list_id = data["price_list_id"]
    if price_list_id is not None and (isinstance(price_list_id, bool) or not isinstance(price_list_id, int)):
        return api_error("price_list_id must be an integer or null", 400)
    try:
        customer = customer_service.assign_price_list(customer_id, price_list_id)
        return api_ok(customer.to_dict())
    except DOMAIN_ERRORS as exc:
        return domain_error(exc)


@customers_bp.get("/<int:customer_id>/orders")
def customer_orders(customer_id: int):
    """
    Order history, newest first.

    Query params:
    - status: str (optional)
    - page, per_page: int (optional)
    """
    try:
        result = order_service.list_orders(
            customer_id=customer_id,
            status=request.args.get("status"),
            page=request.args.get("page", type=int),
            per_page=request.args.get("per_page", type=int),
        )
        return api_page(result)
    except DOMAIN_ERRORS as exc:
        return domain_error(exc)


@customers_bp.get("/<int:customer_id>/orders/<int:order_id>")
def customer_order(customer_id: int, order_id: int):
    try:
        order = order_service.get_order(order_id, customer_id=customer_id)
        return api_ok(order.to_dict(include_items=True))
    except DOMAIN_ERRORS as exc:
        return domain_error(exc)


@customers_bp.get("/<int:customer_id>/payments")
def customer_payments(customer_id: int):
    try:
        customer_service.get_customer(customer_id)
        payments = payment_service.list_customer_payments(customer_id)
        return api_ok([p.to_dict() for p in payments])
    except DOMAIN_ERRORS as exc:
        return domain_error(exc)
