# Overview: Flask API routes for the cashback program; parses input and returns JSON responses.

from flask import Blueprint, jsonify, request

from ..errors import CheckoutError
from ..responses import actor_id, error_response, internal_error, json_body
from ..services import cashback_service, reward_config_service
from tabpos.time_utils import parse_iso_datetime


cashback_bp = Blueprint("cashback", __name__, url_prefix="/api/cashback")


@cashback_bp.get("/config")
def get_config_route():
    try:
        return jsonify({"config": reward_config_service.get_cashback_config().to_dict()}), 200
    except CheckoutError as e:
        return error_response(e)


@cashback_bp.put("/config")
def update_config_route():
    """
    Request body (all optional):
    {
        "cashback_percentage": "5.00",
        "min_purchase_for_cashback_cents": 0,
        "max_cashback_per_purchase_cents": null,
        "cashback_expiration_days": 180,
        "min_cashback_to_use_cents": 500,
        "is_active": true,
        "apply_to_all_products": true
    }
    """
    try:
        config = reward_config_service.update_cashback_config(json_body())
        return jsonify({"config": config.to_dict()}), 200
    except CheckoutError as e:
        return error_response(e)
    except Exception:
        return internal_error("Failed to update cashback config")


@cashback_bp.get("/customers/<int:customer_id>/statement")
def statement_route(customer_id: int):
    try:
        statement = cashback_service.get_statement(
            customer_id,
            page=request.args.get("page", 1, type=int),
            per_page=request.args.get("per_page", 50, type=int),
        )
        return jsonify(statement), 200
    except CheckoutError as e:
        return error_response(e)


@cashback_bp.post("/customers/<int:customer_id>/adjust")
def adjust_route(customer_id: int):
    """Request body: {"amount_cents": -250, "reason": "...", "user_id": 7}"""
    try:
        data = json_body()
        entry = cashback_service.adjust(
            customer_id, data.get("amount_cents"), data.get("reason"), user_id=actor_id(data)
        )
        return jsonify({"transaction": entry.to_dict()}), 201
    except CheckoutError as e:
        return error_response(e)
    except Exception:
        return internal_error("Failed to adjust cashback")


@cashback_bp.post("/customers/<int:customer_id>/redeem")
def redeem_route(customer_id: int):
    """Request body: {"amount_cents": 500, "ticket_id": 12, "user_id": 7}"""
    try:
        data = json_body()
        entry = cashback_service.redeem(
            customer_id,
            data.get("amount_cents"),
            ticket_id=data.get("ticket_id"),
            user_id=actor_id(data),
        )
        return jsonify({"transaction": entry.to_dict()}), 201
    except CheckoutError as e:
        return error_response(e)
    except Exception:
        return internal_error("Failed to redeem cashback")


@cashback_bp.post("/customers/<int:customer_id>/transfer")
def transfer_route(customer_id: int):
    """Request body: {"to_customer_id": 4, "amount_cents": 300, "user_id": 7}"""
    try:
        data = json_body()
        out_entry, in_entry = cashback_service.transfer(
            customer_id,
            data.get("to_customer_id"),
            data.get("amount_cents"),
            user_id=actor_id(data),
        )
        return jsonify({"out": out_entry.to_dict(), "in": in_entry.to_dict()}), 201
    except CheckoutError as e:
        return error_response(e)
    except Exception:
        return internal_error("Failed to transfer cashback")


@cashback_bp.get("/customers/<int:customer_id>/verify")
def verify_route(customer_id: int):
    try:
        return jsonify(cashback_service.verify_ledger(customer_id)), 200
    except CheckoutError as e:
        return error_response(e)


@cashback_bp.post("/expire")
def expire_route():
    try:
        data = json_body()
        now = parse_iso_datetime(data.get("now")) if data.get("now") else None
        return jsonify(cashback_service.expire_due(now)), 200
    except ValueError:
        return jsonify({"error": "now must be an ISO-8601 datetime", "details": {}}), 400
    except CheckoutError as e:
        return error_response(e)
    except Exception:
        return internal_error("Failed to expire cashback")


@cashback_bp.get("/statistics")
def statistics_route():
    return jsonify(cashback_service.get_statistics()), 200
