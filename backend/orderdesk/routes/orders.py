# Overview: Flask API routes for order administration; listing, detail, status transitions, cancellation.

from flask import Blueprint, current_app, request

from ..api import DOMAIN_ERRORS, api_error, api_ok, api_page, domain_error, json_body
from ..services import order_service

orders_bp = Blueprint("orders", __name__, url_prefix="/api/orders")


@orders_bp.get("")
def list_orders():
    """
    All orders, newest first.

    Query params:
    - status: str (optional)
    - customer_id: int (optional)
    - page, per_page: int (optional)
    """
    try:
        result = order_service.list_orders(
            customer_id=request.args.get("customer_id", type=int),
            status=request.args.get("status"),
            page=request.args.get("page", type=int),
            per_page=request.args.get("per_page", type=int),
        )
        return api_page(result)
    except DOMAIN_ERRORS as exc:
        return domain_error(exc)


@orders_bp.get("/<int:order_id>")
def get_order(order_id: int):
    try:
        return api_ok(order_service.get_order(order_id).to_dict(include_items=True))
    except DOMAIN_ERRORS as exc:
        return domain_error(exc)


@orders_bp.put("/<int:order_id>/status")
def update_status(order_id: int):
    """Body: {"status": "confirmed" | "processing" | "shipped" | "delivered" | "cancelled", "note"?: str}"""
    data = json_body()
    if not isinstance(data, dict) or "status" not in data:
        return api_error("status is required", 400)
    try:
        order = order_service.update_order_status(order_id, data["status"], note=data.get("note"))
        return api_ok(order.to_dict(include_items=True))
    except DOMAIN_ERRORS as exc:
        return domain_error(exc)
    except Exception:
        current_app.logger.exception("Failed to update order status")
        return api_error("Internal server error", 500)


@orders_bp.post("/<int:order_id>/cancel")
def cancel_order(order_id: int):
    data = json_body()
    note = data.get("note") if isinstance(data, dict) else None
    try:
        order = order_service.cancel_order(order_id, note=note)
        return api_ok(order.to_dict(include_items=True))
    except DOMAIN_ERRORS as exc:
        return domain_error(exc)
    except Exception:
        current_app.logger.exception("Failed to cancel order")
        return api_error("Internal server error", 500)
