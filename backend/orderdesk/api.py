# Overview: JSON response envelope and domain-error mapping shared by all blueprints.

from __future__ import annotations

from flask import jsonify, request

from .services.checkout_service import InsufficientCreditError
from .services.order_service import InvalidStatusTransition
from .services.payment_service import PaymentDeclinedError
from .validation import ConflictError, NotFoundError, ValidationError


def api_ok(data=None, *, status: int = 200, pagination: dict | None = None):
    body = {"success": True, "data": data}
    if pagination is not None:
        body["pagination"] = pagination
    return jsonify(body), status


def api_error(message: str, status: int = 400, **details):
    body = {"success": False, "error": message}
    body.update(details)
    return jsonify(body), status


def api_page(result: dict):
    """Envelope for a paginate() result."""
    return api_ok(result["items"], pagination=result["pagination"])


def json_body():
    data = request.get_json(silent=True)
    return data if data is not None else {}


# =============================================================================
# DOMAIN ERROR MAPPING
# =============================================================================

DOMAIN_ERRORS = (
    ValidationError,
    ConflictError,
    NotFoundError,
    InsufficientCreditError,
    InvalidStatusTransition,
    PaymentDeclinedError,
)


def domain_error(exc: Exception):
    """Map a domain exception to its HTTP status and envelope."""
    if isinstance(exc, InsufficientCreditError):
        return api_error(str(exc), 409, code="insufficient_credit", **exc.to_details())
    if isinstance(exc, PaymentDeclinedError):
        return api_error(str(exc), 402, code="payment_declined")
    if isinstance(exc, InvalidStatusTransition):
        return api_error(
            str(exc), 409, code="invalid_status_transition",
            from_status=exc.from_status, to_status=exc.to_status,
        )
    if isinstance(exc, ConflictError):
        return api_error(str(exc), 409, code="conflict")
    if isinstance(exc, NotFoundError):
        return api_error(str(exc), 404, code="not_found")
    if isinstance(exc, ValidationError):
        return api_error(str(exc), 400, code="validation_error", **exc.details)
    raise exc
