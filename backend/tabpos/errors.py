# Overview: Typed error taxonomy shared by services and routes.

"""
Checkout error taxonomy.

Every business rejection is raised before the first write of the operation,
so callers can correct the input and resubmit. Only InfrastructureError is
safe to retry unchanged.

    NotFoundError              404  ticket/item/customer/coupon/config absent
    ValidationError            400  malformed or out-of-policy input
    ConflictError              409  duplicate key or illegal state transition
    InsufficientResourceError  422  stock, points or cashback too low
    PaymentMismatchError       422  payments do not reconcile to the total
    InfrastructureError        503  store unavailable / transaction aborted
"""

from __future__ import annotations


class CheckoutError(Exception):
    """Base class for typed errors surfaced to the HTTP layer."""

    status_code = 400
    retryable = False

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict:
        return {"error": self.message, "details": self.details}


class NotFoundError(CheckoutError):
    status_code = 404


class ValidationError(CheckoutError):
    status_code = 400


class ConflictError(CheckoutError):
    status_code = 409


class InsufficientResourceError(CheckoutError):
    status_code = 422


class PaymentMismatchError(CheckoutError):
    status_code = 422


class InfrastructureError(CheckoutError):
    status_code = 503
    retryable = True
