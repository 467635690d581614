# Overview: Flask API routes for quarterly rewards; tier administration, reward review and batch processing.

from flask import Blueprint, current_app, request

from ..api import DOMAIN_ERRORS, api_error, api_ok, domain_error, json_body
from ..services import reward_service
from orderdesk.time_utils import current_quarter

rewards_bp = Blueprint("rewards", __name__, url_prefix="/api")


def _period_args() -> tuple:
    """quarter/year query params, defaulting to the current quarter."""
    now = current_quarter()
    quarter = request.args.get("quarter", default=now.quarter)
    year = request.args.get("year", default=now.year)
    return quarter, year


# =============================================================================
# REWARD TIERS
# =============================================================================

@rewards_bp.get("/reward-tiers")
def list_tiers():
    quarter = request.args.get("quarter")
    year = request.args.get("year")
    try:
        tiers = reward_service.list_tiers(quarter, year)
        return api_ok([t.to_dict() for t in tiers])
    except DOMAIN_ERRORS as exc:
        return domain_error(exc)


@rewards_bp.post("/reward-tiers")
def create_tier():
    try:
        tier = reward_service.create_tier(json_body())
        return api_ok(tier.to_dict(), status=201)
    except DOMAIN_ERRORS as exc:
        return domain_error(exc)
    except Exception:
        current_app.logger.exception("Failed to create reward tier")
        return api_error("Internal server error", 500)


@rewards_bp.put("/reward-tiers/<int:tier_id>")
def update_tier(tier_id: int):
    try:
        tier = reward_service.update_tier(tier_id, json_body())
        return api_ok(tier.to_dict())
    except DOMAIN_ERRORS as exc:
        return domain_error(exc)
    except Exception:
        current_app.logger.exception("Failed to update reward tier")
        return api_error("Internal server error", 500)


@rewards_bp.delete("/reward-tiers/<int:tier_id>")
def delete_tier(tier_id: int):
    try:
        reward_service.delete_tier(tier_id)
        return api_ok({"id": tier_id, "deleted": True})
    except DOMAIN_ERRORS as exc:
        return domain_error(exc)


# =============================================================================
# CUSTOMER REWARDS
# =============================================================================

@rewards_bp.get("/customer-rewards")
def list_customer_rewards():
    """
    Rewards for a quarter (default: current). Pending rows are recalculated
    from delivered orders first unless recalculate=false.
    """
    quarter, year = _period_args()
    recalculate = request.args.get("recalculate", "true").lower() != "false"
    try:
        rewards = reward_service.list_rewards(quarter, year, recalculate=recalculate)
        return api_ok([r.to_dict() for r in rewards])
    except DOMAIN_ERRORS as exc:
        return domain_error(exc)
    except Exception:
        current_app.logger.exception("Failed to list customer rewards")
        return api_error("Internal server error", 500)


@rewards_bp.put("/customer-rewards/<int:reward_id>")
def update_customer_reward(reward_id: int):
    """
    Body: {"manual_adjustment_cents": int, "notes"?: str}
       or {"status": "cancelled", "notes"?: str}
    Only pending rewards can change.
    """
    data = json_body()
    if not isinstance(data, dict):
        return api_error("Invalid JSON payload", 400)
    try:
        if data.get("status") == "cancelled":
            reward = reward_service.cancel_reward(reward_id, notes=data.get("notes"))
        elif "manual_adjustment_cents" in data:
            reward = reward_service.set_adjustment(
                reward_id, data["manual_adjustment_cents"], notes=data.get("notes")
            )
        else:
            return api_error("manual_adjustment_cents or status=cancelled is required", 400)
        return api_ok(reward.to_dict())
    except DOMAIN_ERRORS as exc:
        return domain_error(exc)
    except Exception:
        current_app.logger.exception("Failed to update customer reward")
        return api_error("Internal server error", 500)


@rewards_bp.post("/customer-rewards/process")
def process_rewards():
    """
    Pay all pending rewards of a quarter into customer wallets.

    Body: {"quarter": int, "year": int, "processed_by"?: str}

    Always 200 with a per-customer result list; individual failures do not
    fail the request.
    """
    data = json_body()
    if not isinstance(data, dict) or "quarter" not in data or "year" not in data:
        return api_error("quarter and year are required", 400)
    try:
        summary = reward_service.process_quarter(
            data["quarter"],
            data["year"],
            processed_by=str(data.get("processed_by") or "admin"),
        )
        return api_ok(summary)
    except DOMAIN_ERRORS as exc:
        return domain_error(exc)
    except Exception:
        current_app.logger.exception("Reward batch failed")
        return api_error("Internal server error", 500)


@rewards_bp.get("/customer-rewards/customer/<int:customer_id>")
def customer_reward_history(customer_id: int):
    try:
        rewards = reward_service.customer_reward_history(customer_id)
        return api_ok([r.to_dict() for r in rewards])
    except DOMAIN_ERRORS as exc:
        return domain_error(exc)
