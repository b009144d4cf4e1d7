# Overview: Service-layer operations for inventory; stock reservation paired with ticket item changes.

"""
Inventory invariants (authoritative)

- current_stock is mutated only here, through single atomic
  `UPDATE products SET current_stock = current_stock +/- n` statements,
  never read-then-write, so concurrent tickets cannot oversell.
- reserve_stock refuses to go below zero; release_stock has no upper bound.
- Products with track_stock=False are never touched.
- Neither function commits. They run inside the caller's unit of work and are
  always paired 1:1 with a ticket item state change.
"""

from __future__ import annotations

from ..errors import InsufficientResourceError, NotFoundError, ValidationError
from ..extensions import db
from ..models import Product
from .concurrency import increment_counters


def _get_product(product_id: int) -> Product:
    product = db.session.get(Product, product_id)
    if product is None:
        raise NotFoundError("Product not found", details={"product_id": product_id})
    return product


def reserve_stock(product_id: int, quantity: int) -> Product:
    """Take quantity units out of stock, or raise InsufficientResourceError."""
    if quantity <= 0:
        raise ValidationError("quantity must be > 0")

    product = _get_product(product_id)
    if not product.track_stock:
        return product

    updated = increment_counters(
        Product,
        product_id,
        {"current_stock": -quantity},
        guard={"current_stock": quantity},
    )
    if not updated:
        db.session.refresh(product)
        raise InsufficientResourceError(
            "Insufficient stock",
            details={
                "product_id": product_id,
                "requested": quantity,
                "available": product.current_stock,
            },
        )
    return product


def release_stock(product_id: int, quantity: int) -> Product:
    """Return quantity units to stock."""
    if quantity <= 0:
        raise ValidationError("quantity must be > 0")

    product = _get_product(product_id)
    if not product.track_stock:
        return product

    increment_counters(Product, product_id, {"current_stock": quantity})
    return product
