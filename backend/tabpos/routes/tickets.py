# Overview: Flask API routes for tickets; parses input and returns JSON responses.

"""
Ticket API Routes

Thin surface over checkout_service. Every mutation returns the full ticket
with items and payments so clients never patch totals themselves.
"""

from flask import Blueprint, jsonify, request

from ..errors import CheckoutError
from ..responses import actor_id, error_response, internal_error, json_body
from ..services import checkout_service
from ..services.audit_service import list_ticket_events


tickets_bp = Blueprint("tickets", __name__, url_prefix="/api/tickets")


def _ticket_response(ticket, status: int = 200):
    return jsonify({"ticket": ticket.to_dict(include_items=True)}), status


@tickets_bp.post("/")
@tickets_bp.post("")
def open_ticket_route():
    """
    Open a ticket.

    Request body:
    {
        "till_session_id": 1,
        "kind": "SALE" | "COMANDA",    (optional, default SALE)
        "customer_id": 3,              (optional)
        "table_number": "12",          (optional, comanda)
        "customer_name": "Ana",        (optional, comanda)
        "user_id": 7                   (optional)
    }
    """
    try:
        data = json_body()
        ticket = checkout_service.open_ticket(
            data.get("till_session_id"),
            kind=data.get("kind", "SALE"),
            customer_id=data.get("customer_id"),
            table_number=data.get("table_number"),
            customer_name=data.get("customer_name"),
            opened_by_user_id=actor_id(data),
        )
        return _ticket_response(ticket, 201)
    except CheckoutError as e:
        return error_response(e)
    except Exception:
        return internal_error("Failed to open ticket")


@tickets_bp.get("/")
@tickets_bp.get("")
def list_tickets_route():
    """
    Query params: status, till_session_id, customer_id, kind, table_number,
    page (default 1), per_page (default 50, max 200)
    """
    try:
        result = checkout_service.list_tickets(
            status=request.args.get("status"),
            till_session_id=request.args.get("till_session_id", type=int),
            customer_id=request.args.get("customer_id", type=int),
            kind=request.args.get("kind"),
            table_number=request.args.get("table_number"),
            page=request.args.get("page", 1, type=int),
            per_page=request.args.get("per_page", 50, type=int),
        )
        return jsonify(result), 200
    except CheckoutError as e:
        return error_response(e)
    except Exception:
        return internal_error("Failed to list tickets")


@tickets_bp.get("/<int:ticket_id>")
def get_ticket_route(ticket_id: int):
    try:
        return _ticket_response(checkout_service.get_ticket(ticket_id))
    except CheckoutError as e:
        return error_response(e)


@tickets_bp.get("/<int:ticket_id>/events")
def ticket_events_route(ticket_id: int):
    try:
        checkout_service.get_ticket(ticket_id)
        return jsonify({"events": [e.to_dict() for e in list_ticket_events(ticket_id)]}), 200
    except CheckoutError as e:
        return error_response(e)


@tickets_bp.post("/<int:ticket_id>/items")
def add_item_route(ticket_id: int):
    """
    Request body:
    {
        "product_id": 5,
        "quantity": 2,
        "discount_cents": 0,   (optional)
        "user_id": 7           (optional)
    }
    """
    try:
        data = json_body()
        checkout_service.add_item(
            ticket_id,
            data.get("product_id"),
            data.get("quantity"),
            discount_cents=data.get("discount_cents", 0),
            added_by_user_id=actor_id(data),
        )
        return _ticket_response(checkout_service.get_ticket(ticket_id), 201)
    except CheckoutError as e:
        return error_response(e)
    except Exception:
        return internal_error("Failed to add ticket item")


@tickets_bp.patch("/<int:ticket_id>/items/<int:item_id>")
def update_item_route(ticket_id: int, item_id: int):
    """Request body: {"quantity": 3, "user_id": 7}"""
    try:
        data = json_body()
        checkout_service.update_item_quantity(
            ticket_id,
            item_id,
            data.get("quantity"),
            updated_by_user_id=actor_id(data),
        )
        return _ticket_response(checkout_service.get_ticket(ticket_id))
    except CheckoutError as e:
        return error_response(e)
    except Exception:
        return internal_error("Failed to update ticket item")


@tickets_bp.post("/<int:ticket_id>/items/<int:item_id>/cancel")
def cancel_item_route(ticket_id: int, item_id: int):
    """Request body: {"reason": "customer changed mind", "user_id": 7}"""
    try:
        data = json_body()
        checkout_service.cancel_item(ticket_id, item_id, data.get("reason"), actor_id(data))
        return _ticket_response(checkout_service.get_ticket(ticket_id))
    except CheckoutError as e:
        return error_response(e)
    except Exception:
        return internal_error("Failed to cancel ticket item")


@tickets_bp.post("/<int:ticket_id>/close")
def close_ticket_route(ticket_id: int):
    """
    Settle a ticket.

    Request body:
    {
        "payments": [{"payment_method": "CASH", "amount_cents": 5000}],
        "discount_cents": 0,              (optional, whole-ticket discount)
        "additional_fee_cents": 0,        (optional, e.g. service charge)
        "coupon_code": "SAVE10",          (optional, requires customer)
        "loyalty_points_to_redeem": 150,  (optional, requires customer)
        "user_id": 7                      (optional)
    }

    Errors:
    - 409: ticket not OPEN
    - 400: no items / payments, invalid coupon, redemption rules
    - 422: payments do not match total, insufficient points
    """
    try:
        data = json_body()
        ticket = checkout_service.close_ticket(
            ticket_id,
            payments=data.get("payments"),
            closed_by_user_id=actor_id(data),
            discount_cents=data.get("discount_cents", 0),
            additional_fee_cents=data.get("additional_fee_cents", 0),
            coupon_code=data.get("coupon_code"),
            loyalty_points_to_redeem=data.get("loyalty_points_to_redeem", 0),
        )
        return _ticket_response(ticket)
    except CheckoutError as e:
        return error_response(e)
    except Exception:
        return internal_error("Failed to close ticket")


@tickets_bp.post("/<int:ticket_id>/cancel")
def cancel_ticket_route(ticket_id: int):
    """Request body: {"reason": "...", "user_id": 7}"""
    try:
        data = json_body()
        ticket = checkout_service.cancel_ticket(ticket_id, data.get("reason"), actor_id(data))
        return _ticket_response(ticket)
    except CheckoutError as e:
        return error_response(e)
    except Exception:
        return internal_error("Failed to cancel ticket")


@tickets_bp.post("/<int:ticket_id>/reopen")
def reopen_ticket_route(ticket_id: int):
    """Request body: {"reason": "...", "user_id": 7}"""
    try:
        data = json_body()
        ticket = checkout_service.reopen_ticket(ticket_id, data.get("reason"), actor_id(data))
        return _ticket_response(ticket)
    except CheckoutError as e:
        return error_response(e)
    except Exception:
        return internal_error("Failed to reopen ticket")
