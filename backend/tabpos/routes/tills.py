# Overview: Flask API routes for registers and till sessions; parses input and returns JSON responses.

"""
Till API Routes

DESIGN:
- Register setup
- Till session lifecycle: open -> close (immutable once closed)
- Running totals are read-only here; only ticket settlement moves them
"""

from flask import Blueprint, jsonify, request

from ..errors import CheckoutError
from ..responses import actor_id, error_response, internal_error, json_body
from ..services import till_service
from tabpos.time_utils import parse_iso_datetime


tills_bp = Blueprint("tills", __name__, url_prefix="/api/tills")


@tills_bp.post("/registers")
def create_register_route():
    """
    Request body:
    {
        "register_number": "REG-01",
        "name": "Front Counter",
        "location": "Main Floor"  (optional)
    }
    """
    try:
        data = json_body()
        register = till_service.create_register(
            register_number=data.get("register_number"),
            name=data.get("name"),
            location=data.get("location"),
        )
        return jsonify({"register": register.to_dict()}), 201
    except CheckoutError as e:
        return error_response(e)
    except Exception:
        return internal_error("Failed to create register")


@tills_bp.get("/registers")
def list_registers_route():
    active_only = request.args.get("include_inactive", "false").lower() != "true"
    result = []
    for register in till_service.list_registers(active_only=active_only):
        d = register.to_dict()
        current_session = till_service.get_open_session(register.id)
        d["current_session"] = current_session.to_dict() if current_session else None
        result.append(d)
    return jsonify({"registers": result}), 200


@tills_bp.post("/registers/<int:register_id>/sessions")
def open_session_route(register_id: int):
    """
    Request body:
    {
        "opening_cash_cents": 10000,
        "user_id": 7               (optional)
    }
    """
    try:
        data = json_body()
        session = till_service.open_till_session(
            register_id,
            data.get("opening_cash_cents", 0),
            user_id=actor_id(data),
        )
        return jsonify({"session": session.to_dict()}), 201
    except CheckoutError as e:
        return error_response(e)
    except Exception:
        return internal_error("Failed to open till session")


@tills_bp.get("/sessions")
def session_history_route():
    """
    Query params: register_id, status, start, end (ISO-8601 on opened_at),
    page (default 1), per_page (default 20, max 200)
    """
    try:
        result = till_service.list_session_history(
            register_id=request.args.get("register_id", type=int),
            status=request.args.get("status"),
            start=parse_iso_datetime(request.args.get("start")),
            end=parse_iso_datetime(request.args.get("end")),
            page=request.args.get("page", 1, type=int),
            per_page=request.args.get("per_page", 20, type=int),
        )
        return jsonify(result), 200
    except ValueError:
        return jsonify({"error": "start and end must be ISO-8601 datetimes", "details": {}}), 400
    except Exception:
        return internal_error("Failed to list till sessions")


@tills_bp.get("/sessions/<int:session_id>")
def get_session_route(session_id: int):
    try:
        return jsonify({"session": till_service.get_till_session(session_id).to_dict()}), 200
    except CheckoutError as e:
        return error_response(e)


@tills_bp.get("/sessions/<int:session_id>/report")
def session_report_route(session_id: int):
    try:
        return jsonify(till_service.get_session_report(session_id)), 200
    except CheckoutError as e:
        return error_response(e)
    except Exception:
        return internal_error("Failed to build till session report")


@tills_bp.post("/sessions/<int:session_id>/close")
def close_session_route(session_id: int):
    """
    Request body:
    {
        "counted_cash_cents": 15230,
        "notes": "..."             (optional)
    }
    """
    try:
        data = json_body()
        session = till_service.close_till_session(
            session_id,
            data.get("counted_cash_cents"),
            data.get("notes"),
            user_id=actor_id(data),
        )
        return jsonify({"session": session.to_dict()}), 200
    except CheckoutError as e:
        return error_response(e)
    except Exception:
        return internal_error("Failed to close till session")
