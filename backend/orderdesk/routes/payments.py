# Overview: Flask API routes for payment administration; list, detail, record, status change, delete.

from flask import Blueprint, current_app, request

from ..api import DOMAIN_ERRORS, api_error, api_ok, api_page, domain_error, json_body
from ..services import payment_service

payments_bp = Blueprint("payments", __name__, url_prefix="/api/payments")


@payments_bp.get("")
def list_payments():
    """
    All payments, newest first, with customer name and order number.

    Query params:
    - customer_id, order_id: int (optional)
    - status: pending | completed | failed | refunded (optional)
    - payment_type: order | reward | manual (optional)
    - page, per_page: int (optional)
    """
    try:
        result = payment_service.list_payments(
            customer_id=request.args.get("customer_id", type=int),
            order_id=request.args.get("order_id", type=int),
            status=request.args.get("status"),
            payment_type=request.args.get("payment_type"),
            page=request.args.get("page", type=int),
            per_page=request.args.get("per_page", type=int),
        )
        return api_page(result)
    except DOMAIN_ERRORS as exc:
        return domain_error(exc)


@payments_bp.get("/<int:payment_id>")
def get_payment(payment_id: int):
    try:
        return api_ok(payment_service.get_payment(payment_id).to_dict(include_refs=True))
    except DOMAIN_ERRORS as exc:
        return domain_error(exc)


@payments_bp.post("")
def record_payment():
    """
    Body:
    {
        "customer_id": int,
        "amount_cents": int,
        "method": "cash" | "bank_transfer" | "cheque" | "card",
        "order_id"?: int,
        "status"?: "completed" | "pending",
        "reference"?: str,
        "notes"?: str
    }
    """
    try:
        payment = payment_service.record_payment(json_body())
        return api_ok(payment.to_dict(include_refs=True), status=201)
    except DOMAIN_ERRORS as exc:
        return domain_error(exc)
    except Exception:
        current_app.logger.exception("Failed to record payment")
        return api_error("Internal server error", 500)


@payments_bp.put("/<int:payment_id>/status")
def update_payment_status(payment_id: int):
    data = json_body()
    if not isinstance(data, dict) or not data.get("status"):
        return api_error("status is required", 400)
    try:
        payment = payment_service.update_payment_status(payment_id, data["status"])
        return api_ok(payment.to_dict(include_refs=True))
    except DOMAIN_ERRORS as exc:
        return domain_error(exc)
    except Exception:
        current_app.logger.exception("Failed to update payment status")
        return api_error("Internal server error", 500)


@payments_bp.delete("/<int:payment_id>")
def delete_payment(payment_id: int):
    try:
        return api_ok(payment_service.delete_payment(payment_id))
    except DOMAIN_ERRORS as exc:
        return domain_error(exc)
    except Exception:
        current_app.logger.exception("Failed to delete payment")
        return api_error("Internal server error", 500)
