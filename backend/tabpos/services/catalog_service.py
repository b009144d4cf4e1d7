# Overview: Service-layer operations for products and customers consumed by checkout.

from __future__ import annotations

from ..errors import ConflictError, NotFoundError
from ..extensions import db
from ..models import Customer, Product
from ..validation import (
    CUSTOMER_POLICY,
    PRODUCT_POLICY,
    enforce_rules_product,
    validate_payload,
)
from .concurrency import run_in_transaction


def create_product(data: dict) -> Product:
    patch = validate_payload(model=Product, payload=data, policy=PRODUCT_POLICY, partial=False)
    enforce_rules_product(patch)

    def _op() -> Product:
        if db.session.query(Product.id).filter_by(sku=patch["sku"]).first():
            raise ConflictError(f"SKU '{patch['sku']}' already exists", details={"sku": patch["sku"]})
        product = Product(**patch)
        db.session.add(product)
        db.session.flush()
        return product

    return run_in_transaction(_op)


def get_product(product_id: int) -> Product:
    product = db.session.get(Product, product_id)
    if product is None:
        raise NotFoundError("Product not found", details={"product_id": product_id})
    return product


def list_products(active_only: bool = True) -> list[Product]:
    q = db.session.query(Product)
    if active_only:
        q = q.filter_by(is_active=True)
    return q.order_by(Product.name).all()


def create_customer(data: dict) -> Customer:
    """Customers start with zero balances; only the ledgers move them."""
    patch = validate_payload(model=Customer, payload=data, policy=CUSTOMER_POLICY, partial=False)
    if patch.get("email"):
        patch["email"] = patch["email"].lower()

    def _op() -> Customer:
        if patch.get("email") and db.session.query(Customer.id).filter_by(email=patch["email"]).first():
            raise ConflictError("Email already registered", details={"email": patch["email"]})
        customer = Customer(**patch)
        db.session.add(customer)
        db.session.flush()
        return customer

    return run_in_transaction(_op)


def get_customer(customer_id: int) -> Customer:
    customer = db.session.get(Customer, customer_id)
    if customer is None:
        raise NotFoundError("Customer not found", details={"customer_id": customer_id})
    return customer
