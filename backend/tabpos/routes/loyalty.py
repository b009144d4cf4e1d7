# Overview: Flask API routes for the loyalty program; parses input and returns JSON responses.

from flask import Blueprint, jsonify, request

from ..errors import CheckoutError
from ..responses import actor_id, error_response, internal_error, json_body
from ..services import loyalty_service, reward_config_service
from tabpos.time_utils import parse_iso_datetime


loyalty_bp = Blueprint("loyalty", __name__, url_prefix="/api/loyalty")


# =============================================================================
# CONFIGURATION
# =============================================================================

@loyalty_bp.get("/config")
def get_config_route():
    try:
        return jsonify({"config": reward_config_service.get_loyalty_config().to_dict()}), 200
    except CheckoutError as e:
        return error_response(e)


@loyalty_bp.put("/config")
def update_config_route():
    """
    Request body (all optional):
    {
        "points_per_real": "1.0",
        "min_purchase_for_points_cents": 0,
        "points_expiration_days": 365,
        "min_points_to_redeem": 100,
        "points_redemption_value": "0.01",
        "is_active": true,
        "apply_to_all_products": true
    }
    """
    try:
        config = reward_config_service.update_loyalty_config(json_body())
        return jsonify({"config": config.to_dict()}), 200
    except CheckoutError as e:
        return error_response(e)
    except Exception:
        return internal_error("Failed to update loyalty config")


# =============================================================================
# CUSTOMER LEDGER
# =============================================================================

@loyalty_bp.get("/customers/<int:customer_id>/statement")
def statement_route(customer_id: int):
    try:
        statement = loyalty_service.get_statement(
            customer_id,
            page=request.args.get("page", 1, type=int),
            per_page=request.args.get("per_page", 50, type=int),
        )
        return jsonify(statement), 200
    except CheckoutError as e:
        return error_response(e)


@loyalty_bp.post("/customers/<int:customer_id>/adjust")
def adjust_route(customer_id: int):
    """Request body: {"points": -20, "reason": "...", "user_id": 7}"""
    try:
        data = json_body()
        entry = loyalty_service.adjust(customer_id, data.get("points"), data.get("reason"), user_id=actor_id(data))
        return jsonify({"transaction": entry.to_dict()}), 201
    except CheckoutError as e:
        return error_response(e)
    except Exception:
        return internal_error("Failed to adjust loyalty points")


@loyalty_bp.post("/customers/<int:customer_id>/redeem")
def redeem_route(customer_id: int):
    """Request body: {"points": 150, "user_id": 7}"""
    try:
        data = json_body()
        entry = loyalty_service.redeem(customer_id, data.get("points"), user_id=actor_id(data))
        return jsonify({"transaction": entry.to_dict()}), 201
    except CheckoutError as e:
        return error_response(e)
    except Exception:
        return internal_error("Failed to redeem loyalty points")


@loyalty_bp.get("/customers/<int:customer_id>/verify")
def verify_route(customer_id: int):
    try:
        return jsonify(loyalty_service.verify_ledger(customer_id)), 200
    except CheckoutError as e:
        return error_response(e)


# =============================================================================
# REWARDS CATALOGUE
# =============================================================================

@loyalty_bp.post("/rewards")
def create_reward_route():
    try:
        reward = loyalty_service.create_reward(json_body())
        return jsonify({"reward": reward.to_dict()}), 201
    except CheckoutError as e:
        return error_response(e)
    except Exception:
        return internal_error("Failed to create reward")


@loyalty_bp.get("/rewards")
def list_rewards_route():
    active_only = request.args.get("include_inactive", "false").lower() != "true"
    rewards = loyalty_service.list_rewards(active_only=active_only)
    return jsonify({"rewards": [r.to_dict() for r in rewards]}), 200


@loyalty_bp.patch("/rewards/<int:reward_id>")
def update_reward_route(reward_id: int):
    try:
        reward = loyalty_service.update_reward(reward_id, json_body())
        return jsonify({"reward": reward.to_dict()}), 200
    except CheckoutError as e:
        return error_response(e)
    except Exception:
        return internal_error("Failed to update reward")


@loyalty_bp.delete("/rewards/<int:reward_id>")
def delete_reward_route(reward_id: int):
    try:
        loyalty_service.delete_reward(reward_id)
        return jsonify({"deleted": reward_id}), 200
    except CheckoutError as e:
        return error_response(e)
    except Exception:
        return internal_error("Failed to delete reward")


@loyalty_bp.post("/rewards/<int:reward_id>/redeem")
def redeem_reward_route(reward_id: int):
    """Request body: {"customer_id": 3, "user_id": 7}"""
    try:
        data = json_body()
        entry = loyalty_service.redeem_reward(data.get("customer_id"), reward_id, user_id=actor_id(data))
        return jsonify({"transaction": entry.to_dict()}), 201
    except CheckoutError as e:
        return error_response(e)
    except Exception:
        return internal_error("Failed to redeem reward")


# =============================================================================
# PROGRAM
# =============================================================================

@loyalty_bp.post("/expire")
def expire_route():
    """Request body: {"now": "2027-01-01T00:00:00Z"}  (optional)"""
    try:
        data = json_body()
        now = parse_iso_datetime(data.get("now")) if data.get("now") else None
        return jsonify(loyalty_service.expire_due(now)), 200
    except ValueError:
        return jsonify({"error": "now must be an ISO-8601 datetime", "details": {}}), 400
    except CheckoutError as e:
        return error_response(e)
    except Exception:
        return internal_error("Failed to expire loyalty points")


@loyalty_bp.get("/statistics")
def statistics_route():
    return jsonify(loyalty_service.get_statistics()), 200
