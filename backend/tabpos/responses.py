# Overview: Shared helpers for blueprint request parsing and error responses.

from __future__ import annotations

from flask import current_app, jsonify, request

from .errors import CheckoutError, ValidationError


def error_response(exc: CheckoutError):
    """Map a typed error to its JSON body and status code."""
    if exc.status_code >= 500:
        current_app.logger.warning("%s: %s", exc.__class__.__name__, exc.message)
    response = jsonify(exc.to_dict())
    if exc.retryable:
        response.headers["Retry-After"] = "1"
    return response, exc.status_code


def internal_error(message: str):
    current_app.logger.exception(message)
    return jsonify({"error": "Internal server error"}), 500


def json_body() -> dict:
    data = request.get_json(silent=True)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValidationError("Invalid JSON payload")
    return data


def actor_id(data: dict) -> int | None:
    """Acting user id from the request body (no authentication layer)."""
    user_id = data.get("user_id")
    if user_id is None:
        return None
    if isinstance(user_id, bool) or not isinstance(user_id, int):
        raise ValidationError("user_id must be an integer")
    return user_id
