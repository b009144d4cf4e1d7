# Overview: Flask API routes for products and customers; parses input and returns JSON responses.

from flask import Blueprint, jsonify, request

from ..errors import CheckoutError
from ..responses import error_response, internal_error, json_body
from ..services import catalog_service


catalog_bp = Blueprint("catalog", __name__, url_prefix="/api/catalog")


@catalog_bp.post("/products")
def create_product_route():
    """
    Request body:
    {
        "sku": "CAFE-001",
        "name": "Espresso",
        "sale_price_cents": 850,
        "cost_price_cents": 200,      (optional)
        "track_stock": true,          (optional)
        "current_stock": 40           (optional)
    }
    """
    try:
        product = catalog_service.create_product(json_body())
        return jsonify({"product": product.to_dict()}), 201
    except CheckoutError as e:
        return error_response(e)
    except Exception:
        return internal_error("Failed to create product")


@catalog_bp.get("/products")
def list_products_route():
    active_only = request.args.get("include_inactive", "false").lower() != "true"
    products = catalog_service.list_products(active_only=active_only)
    return jsonify({"products": [p.to_dict() for p in products]}), 200


@catalog_bp.get("/products/<int:product_id>")
def get_product_route(product_id: int):
    try:
        return jsonify({"product": catalog_service.get_product(product_id).to_dict()}), 200
    except CheckoutError as e:
        return error_response(e)


@catalog_bp.post("/customers")
def create_customer_route():
    try:
        customer = catalog_service.create_customer(json_body())
        return jsonify({"customer": customer.to_dict()}), 201
    except CheckoutError as e:
        return error_response(e)
    except Exception:
        return internal_error("Failed to create customer")


@catalog_bp.get("/customers/<int:customer_id>")
def get_customer_route(customer_id: int):
    try:
        return jsonify({"customer": catalog_service.get_customer(customer_id).to_dict()}), 200
    except CheckoutError as e:
        return error_response(e)
