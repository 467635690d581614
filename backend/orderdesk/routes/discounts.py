from __future__ import annotations

from flask import Blueprint, current_app, request

from ..api import DOMAIN_ERRORS, api_error, api_ok, api_page, domain_error, json_body
from ..services import discount_service
from orderdesk.time_utils import utcnow

discounts_bp = Blueprint("discounts", __name__, url_prefix="/api/discounts")


@discounts_bp.get("")
def list_discounts():
    try:
        result = discount_service.list_discounts(
            status=request.args.get("status"),
            page=request.args.get("page", type=int),
            per_page=request.args.get("per_page", type=int),
        )
        return api_page(result)
    except DOMAIN_ERRORS as exc:
        return domain_error(exc)


@discounts_bp.post("")
def create_discount():
    try:
        discount = discount_service.create_discount(json_body())
        return api_ok(discount.to_dict(now=utcnow()), status=201)
    except DOMAIN_ERRORS as exc:
        return domain_error(exc)
    except Exception:
        current_app.logger.exception("Failed to create discount")
        return api_error("Internal server error", 500)


@discounts_bp.get("/<int:discount_id>")
def get_discount(discount_id: int):
    try:
        return api_ok(discount_service.get_discount(discount_id).to_dict(now=utcnow()))
    except DOMAIN_ERRORS as exc:
        return domain_error(exc)


@discounts_bp.patch("/<int:discount_id>")
def update_discount(discount_id: int):
    try:
        discount = discount_service.update_discount(discount_id, json_body())
        return api_ok(discount.to_dict(now=utcnow()))
    except DOMAIN_ERRORS as exc:
        return domain_error(exc)
    except Exception:
        current_app.logger.exception("Failed to update discount")
        return api_error("Internal server error", 500)
