# Overview: Flask API routes for the storefront cart; priced cart, line edits, free-item claims, checkout.

"""
Cart routes.

The cart is addressed by customer id; every response carries the freshly
priced cart (lines, applied discounts, subtotal/discount/tax/total).
"""

from flask import Blueprint, current_app

from ..api import DOMAIN_ERRORS, api_error, api_ok, domain_error, json_body
from ..services import cart_service, checkout_service, free_item_service

carts_bp = Blueprint("carts", __name__, url_prefix="/api/customers")


@carts_bp.get("/<int:customer_id>/cart")
def get_cart(customer_id: int):
    try:
        return api_ok(cart_service.get_cart(customer_id).to_dict())
    except DOMAIN_ERRORS as exc:
        return domain_error(exc)
    except Exception:
        current_app.logger.exception("Failed to load cart")
        return api_error("Internal server error", 500)


@carts_bp.post("/<int:customer_id>/cart")
def add_to_cart(customer_id: int):
    """Body: {"product_id": int, "quantity": int = 1}"""
    data = json_body()
    if not isinstance(data, dict) or "product_id" not in data:
        return api_error("product_id is required", 400)
    if data.get("is_free_item"):
        return api_error("Free items can only be added by claiming a discount", 400)
    try:
        view = cart_service.add_item(customer_id, data["product_id"], data.get("quantity", 1))
        return api_ok(view.to_dict(), status=201)
    except DOMAIN_ERRORS as exc:
        return domain_error(exc)
    except Exception:
        current_app.logger.exception("Failed to add cart item")
        return api_error("Internal server error", 500)


@carts_bp.delete("/<int:customer_id>/cart")
def clear_cart(customer_id: int):
    try:
        return api_ok(cart_service.clear_cart(customer_id).to_dict())
    except DOMAIN_ERRORS as exc:
        return domain_error(exc)
    except Exception:
        current_app.logger.exception("Failed to clear cart")
        return api_error("Internal server error", 500)


@carts_bp.put("/<int:customer_id>/cart/items/<int:item_id>")
def update_cart_item(customer_id: int, item_id: int):
    """Body: {"quantity": int}; 0 removes the line."""
    data = json_body()
    if not isinstance(data, dict) or "quantity" not in data:
        return api_error("quantity is required", 400)
    try:
        view = cart_service.set_quantity(customer_id, item_id, data["quantity"])
        return api_ok(view.to_dict())
    except DOMAIN_ERRORS as exc:
        return domain_error(exc)
    except Exception:
        current_app.logger.exception("Failed to update cart item")
        return api_error("Internal server error", 500)


@carts_bp.delete("/<int:customer_id>/cart/items/<int:item_id>")
def remove_cart_item(customer_id: int, item_id: int):
    try:
        return api_ok(cart_service.remove_item(customer_id, item_id).to_dict())
    except DOMAIN_ERRORS as exc:
        return domain_error(exc)
    except Exception:
        current_app.logger.exception("Failed to remove cart item")
        return api_error("Internal server error", 500)


@carts_bp.post("/<int:customer_id>/cart/discounts/<int:discount_id>/claim")
def claim_free_items(customer_id: int, discount_id: int):
    """
    Claim the free items of a buy_get discount.

    Body: {"selections": [{"product_id": int, "quantity": int}, ...]}

    Returns 201 when lines were added, 200 when the same claim already exists.
    """
    data = json_body()
    selections = data.get("selections") if isinstance(data, dict) else None
    try:
        result = free_item_service.claim_free_items(customer_id, discount_id, selections)
        cart = cart_service.get_cart(customer_id).to_dict()
        return api_ok({"claim": result, "cart": cart}, status=201 if result["created"] else 200)
    except DOMAIN_ERRORS as exc:
        return domain_error(exc)
    except Exception:
        current_app.logger.exception("Failed to claim free items")
        return api_error("Internal server error", 500)


@carts_bp.post("/<int:customer_id>/checkout")
def checkout(customer_id: int):
    """
    Place an order from the cart.

    Body:
    - payment_method: "credit" | "card" | "wallet"
    - card: {"holder_name", "number", "expiry": "MM/YY", "cvv"} (card only)
    - notes: str (optional)

    Errors:
    - 400 validation (empty cart, unavailable items, card form)
    - 402 card declined
    - 409 insufficient credit / wallet, with required_cents and available_cents
    """
    data = json_body()
    if not isinstance(data, dict) or "payment_method" not in data:
        return api_error("payment_method is required", 400)
    try:
        order = checkout_service.checkout(
            customer_id,
            payment_method=data["payment_method"],
            card=data.get("card"),
            notes=data.get("notes"),
        )
        return api_ok(order.to_dict(include_items=True), status=201)
    except DOMAIN_ERRORS as exc:
        return domain_error(exc)
    except Exception:
        current_app.logger.exception("Checkout failed")
        return api_error("Internal server error", 500)
