# Overview: Flask API routes for coupons; parses input and returns JSON responses.

from flask import Blueprint, jsonify, request

from ..errors import CheckoutError
from ..responses import actor_id, error_response, internal_error, json_body
from ..services import coupon_service
from tabpos.time_utils import parse_iso_datetime


coupons_bp = Blueprint("coupons", __name__, url_prefix="/api/coupons")


@coupons_bp.post("/")
@coupons_bp.post("")
def create_coupon_route():
    """
    Request body:
    {
        "code": "SAVE10",
        "coupon_type": "PERCENTAGE" | "FIXED",
        "discount_value": 1000,          (basis points for PERCENTAGE, cents for FIXED)
        "min_purchase_cents": 5000,      (optional)
        "max_discount_cents": 2000,      (optional)
        "usage_limit": 100,              (optional)
        "valid_from": "2026-01-01T00:00:00Z",  (optional, default now)
        "valid_to": "2026-12-31T23:59:59Z",    (optional)
        "user_id": 7                     (optional)
    }
    """
    try:
        data = json_body()
        user_id = actor_id(data)
        payload = {k: v for k, v in data.items() if k != "user_id"}
        coupon = coupon_service.create_coupon(payload, user_id=user_id)
        return jsonify({"coupon": coupon.to_dict()}), 201
    except CheckoutError as e:
        return error_response(e)
    except Exception:
        return internal_error("Failed to create coupon")


@coupons_bp.get("/")
@coupons_bp.get("")
def list_coupons_route():
    coupons = coupon_service.list_coupons(status=request.args.get("status"))
    return jsonify({"coupons": [c.to_dict() for c in coupons]}), 200


@coupons_bp.get("/<int:coupon_id>")
def get_coupon_route(coupon_id: int):
    try:
        return jsonify({"coupon": coupon_service.get_coupon(coupon_id).to_dict()}), 200
    except CheckoutError as e:
        return error_response(e)


@coupons_bp.patch("/<int:coupon_id>")
def update_coupon_route(coupon_id: int):
    try:
        coupon = coupon_service.update_coupon(coupon_id, json_body())
        return jsonify({"coupon": coupon.to_dict()}), 200
    except CheckoutError as e:
        return error_response(e)
    except Exception:
        return internal_error("Failed to update coupon")


@coupons_bp.post("/validate")
def validate_coupon_route():
    """
    Preview a coupon discount without using it.

    Request body: {"code": "SAVE10", "base_amount_cents": 10000, "customer_id": 3}
    """
    try:
        data = json_body()
        base = data.get("base_amount_cents")
        if isinstance(base, bool) or not isinstance(base, int) or base < 0:
            return jsonify({"error": "base_amount_cents must be an integer >= 0", "details": {}}), 400
        result = coupon_service.validate_coupon(data.get("code"), base, data.get("customer_id"))
        return jsonify({"coupon": result.coupon.to_dict(), "discount_cents": result.discount_cents}), 200
    except CheckoutError as e:
        return error_response(e)


@coupons_bp.delete("/<int:coupon_id>")
def delete_coupon_route(coupon_id: int):
    try:
        coupon_service.delete_coupon(coupon_id)
        return jsonify({"deleted": coupon_id}), 200
    except CheckoutError as e:
        return error_response(e)
    except Exception:
        return internal_error("Failed to delete coupon")


@coupons_bp.post("/expire")
def expire_coupons_route():
    """Request body: {"now": "2027-01-01T00:00:00Z"}  (optional)"""
    try:
        data = json_body()
        now = parse_iso_datetime(data.get("now")) if data.get("now") else None
        return jsonify({"expired": coupon_service.expire_coupons(now)}), 200
    except ValueError:
        return jsonify({"error": "now must be an ISO-8601 datetime", "details": {}}), 400
    except CheckoutError as e:
        return error_response(e)
    except Exception:
        return internal_error("Failed to expire coupons")


@coupons_bp.get("/usages")
def usage_report_route():
    """
    Query params: coupon_id, customer_id, start, end (ISO-8601),
    page (default 1), per_page (default 50, max 200)
    """
    try:
        report = coupon_service.get_usage_report(
            coupon_id=request.args.get("coupon_id", type=int),
            customer_id=request.args.get("customer_id", type=int),
            start=parse_iso_datetime(request.args.get("start")),
            end=parse_iso_datetime(request.args.get("end")),
            page=request.args.get("page", 1, type=int),
            per_page=request.args.get("per_page", 50, type=int),
        )
        return jsonify(report), 200
    except ValueError:
        return jsonify({"error": "start and end must be ISO-8601 datetimes", "details": {}}), 400
    except Exception:
        return internal_error("Failed to load coupon usage report")


@coupons_bp.get("/statistics")
def statistics_route():
    return jsonify(coupon_service.get_statistics()), 200
