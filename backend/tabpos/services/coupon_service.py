# Overview: Service-layer operations for coupons; management, validation and usage recording.

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP

from flask import current_app
from sqlalchemy import func, or_, update

from ..errors import ConflictError, NotFoundError, ValidationError
from ..extensions import db
from ..models import Coupon, CouponUsage, Customer
from ..validation import COUPON_POLICY, enforce_rules_coupon, validate_payload
from tabpos.time_utils import utcnow
from .concurrency import lock_for_update, run_in_transaction


@dataclass(frozen=True)
class CouponValidation:
    coupon: Coupon
    discount_cents: int


def normalize_code(code: str | None) -> str:
    return (code or "").strip().upper()


def compute_discount(coupon: Coupon, base_amount_cents: int) -> int:
    """
    Discount for a base amount, clamped to max_discount_cents then to the base.

    PERCENTAGE discount_value is basis points (1000 = 10%), rounded half-up.
    """
    if coupon.coupon_type == "PERCENTAGE":
        raw = (Decimal(base_amount_cents) * Decimal(coupon.discount_value) / Decimal(10_000))
        discount = int(raw.quantize(Decimal("1"), rounding=ROUND_HALF_UP))
    else:
        discount = coupon.discount_value

    if coupon.max_discount_cents is not None:
        discount = min(discount, coupon.max_discount_cents)
    return max(min(discount, base_amount_cents), 0)


def get_coupon(coupon_id: int) -> Coupon:
    coupon = db.session.get(Coupon, coupon_id)
    if coupon is None:
        raise NotFoundError("Coupon not found", details={"coupon_id": coupon_id})
    return coupon


def get_coupon_by_code(code: str) -> Coupon:
    normalized = normalize_code(code)
    coupon = db.session.query(Coupon).filter_by(code=normalized).first()
    if coupon is None:
        raise NotFoundError("Coupon not found", details={"code": normalized})
    return coupon


def list_coupons(status: str | None = None) -> list[Coupon]:
    q = db.session.query(Coupon)
    if status:
        q = q.filter_by(status=status.upper())
    return q.order_by(Coupon.created_at.desc(), Coupon.id.desc()).all()


def _check_window(valid_from, valid_to) -> None:
    if valid_from and valid_to and valid_to <= valid_from:
        raise ValidationError("valid_to must be after valid_from")


def create_coupon(data: dict, user_id: int | None = None) -> Coupon:
    patch = validate_payload(model=Coupon, payload=data, policy=COUPON_POLICY, partial=False)
    enforce_rules_coupon(patch)
    patch.setdefault("valid_from", utcnow())
    _check_window(patch["valid_from"], patch.get("valid_to"))

    def _op() -> Coupon:
        if db.session.query(Coupon.id).filter_by(code=patch["code"]).first():
            raise ConflictError(f"Coupon code '{patch['code']}' already exists", details={"code": patch["code"]})
        coupon = Coupon(created_by_user_id=user_id, **patch)
        db.session.add(coupon)
        db.session.flush()
        return coupon

    coupon = run_in_transaction(_op)
    current_app.logger.info("Coupon %s created", coupon.code)
    return coupon


def update_coupon(coupon_id: int, data: dict) -> Coupon:
    """
    Patch a coupon.

    EXPIRED coupons are read-only. The code cannot change once created.
    """
    patch = validate_payload(model=Coupon, payload=data, policy=COUPON_POLICY, partial=True)
    if "code" in patch:
        raise ValidationError("code cannot be changed")

    def _op() -> Coupon:
        coupon = lock_for_update(db.session.query(Coupon).filter_by(id=coupon_id)).first()
        if coupon is None:
            raise NotFoundError("Coupon not found", details={"coupon_id": coupon_id})
        if coupon.status == "EXPIRED":
            raise ConflictError("Expired coupons cannot be modified", details={"coupon_id": coupon_id})

        enforce_rules_coupon({"coupon_type": coupon.coupon_type, "discount_value": coupon.discount_value, **patch})
        _check_window(patch.get("valid_from", coupon.valid_from), patch.get("valid_to", coupon.valid_to))

        for key, value in patch.items():
            setattr(coupon, key, value)
        return coupon

    return run_in_transaction(_op)


def validate_coupon(code: str, base_amount_cents: int, customer_id: int | None = None, *, now=None) -> CouponValidation:
    """
    Validate a coupon for a base amount; pure read, never mutates.

    Raises:
        NotFoundError: unknown code (or unknown customer)
        ValidationError: inactive, outside its window, below minimum purchase,
            or usage limit reached
    """
    coupon = get_coupon_by_code(code)
    if customer_id is not None and db.session.get(Customer, customer_id) is None:
        raise NotFoundError("Customer not found", details={"customer_id": customer_id})

    now = now or utcnow()
    details = {"code": coupon.code}

    if coupon.status != "ACTIVE":
        raise ValidationError("Coupon is not active", details={**details, "status": coupon.status})
    if coupon.valid_from and now < coupon.valid_from:
        raise ValidationError("Coupon is not valid yet", details=details)
    if coupon.valid_to and now > coupon.valid_to:
        raise ValidationError("Coupon has expired", details=details)
    if base_amount_cents < coupon.min_purchase_cents:
        raise ValidationError(
            "Purchase amount below coupon minimum",
            details={**details, "min_purchase_cents": coupon.min_purchase_cents, "base_amount_cents": base_amount_cents},
        )
    if coupon.usage_limit is not None and coupon.usage_count >= coupon.usage_limit:
        raise ValidationError("Coupon usage limit reached", details={**details, "usage_limit": coupon.usage_limit})

    return CouponValidation(coupon=coupon, discount_cents=compute_discount(coupon, base_amount_cents))


def apply_usage(
    coupon_id: int,
    customer_id: int,
    discount_applied_cents: int,
    ticket_id: int | None = None,
    *,
    commit: bool = False,
) -> CouponUsage:
    """
    Record one redemption: usage row + atomic usage_count increment.

    The increment re-checks the usage limit in the same statement, so two
    concurrent settlements cannot both take the last use.
    """
    def _op() -> CouponUsage:
        stmt = (
            update(Coupon)
            .where(Coupon.id == coupon_id)
            .where(or_(Coupon.usage_limit.is_(None), Coupon.usage_count < Coupon.usage_limit))
            .values(usage_count=Coupon.usage_count + 1)
            .execution_options(synchronize_session="fetch")
        )
        if not db.session.execute(stmt).rowcount:
            raise ConflictError("Coupon usage limit reached", details={"coupon_id": coupon_id})

        usage = CouponUsage(
            coupon_id=coupon_id,
            customer_id=customer_id,
            ticket_id=ticket_id,
            discount_applied_cents=discount_applied_cents,
            used_at=utcnow(),
        )
        db.session.add(usage)
        db.session.flush()
        return usage

    if commit:
        return run_in_transaction(_op)
    return _op()


def delete_coupon(coupon_id: int) -> None:
    """Delete a coupon that has never been used; used coupons keep their history."""
    def _op() -> None:
        coupon = lock_for_update(db.session.query(Coupon).filter_by(id=coupon_id)).first()
        if coupon is None:
            raise NotFoundError("Coupon not found", details={"coupon_id": coupon_id})
        if db.session.query(CouponUsage.id).filter_by(coupon_id=coupon_id).first():
            raise ConflictError("Coupons that have been used cannot be deleted", details={"coupon_id": coupon_id})
        db.session.delete(coupon)

    run_in_transaction(_op)
    current_app.logger.info("Coupon %s deleted", coupon_id)


def expire_coupons(now=None) -> int:
    """Move ACTIVE coupons whose valid_to has passed to EXPIRED. Returns the count."""
    now = now or utcnow()

    def _op() -> int:
        stmt = (
            update(Coupon)
            .where(Coupon.status == "ACTIVE")
            .where(Coupon.valid_to.is_not(None))
            .where(Coupon.valid_to < now)
            .values(status="EXPIRED", version_id=Coupon.version_id + 1)
            .execution_options(synchronize_session="fetch")
        )
        return db.session.execute(stmt).rowcount

    count = run_in_transaction(_op)
    if count:
        current_app.logger.info("Expired %s coupons", count)
    return count


def get_usage_report(
    *,
    coupon_id: int | None = None,
    customer_id: int | None = None,
    start=None,
    end=None,
    page: int = 1,
    per_page: int = 50,
) -> dict:
    """Paginated coupon usages, newest first, with totals for the whole filter."""
    q = db.session.query(CouponUsage)
    if coupon_id is not None:
        q = q.filter(CouponUsage.coupon_id == coupon_id)
    if customer_id is not None:
        q = q.filter(CouponUsage.customer_id == customer_id)
    if start is not None:
        q = q.filter(CouponUsage.used_at >= start)
    if end is not None:
        q = q.filter(CouponUsage.used_at <= end)

    page = max(page, 1)
    per_page = min(max(per_page, 1), 200)
    total = q.count()
    total_discount = q.with_entities(func.coalesce(func.sum(CouponUsage.discount_applied_cents), 0)).scalar()
    usages = (
        q.order_by(CouponUsage.used_at.desc(), CouponUsage.id.desc())
        .offset((page - 1) * per_page)
        .limit(per_page)
        .all()
    )

    rows = []
    for usage in usages:
        row = usage.to_dict()
        row["coupon_code"] = usage.coupon.code
        rows.append(row)
    return {
        "usages": rows,
        "page": page,
        "per_page": per_page,
        "total": total,
        "summary": {"total_usages": total, "total_discount_cents": int(total_discount)},
    }


def get_statistics(top: int = 10) -> dict:
    counts = dict(db.session.query(Coupon.status, func.count(Coupon.id)).group_by(Coupon.status).all())
    usages, discount = db.session.query(
        func.count(CouponUsage.id),
        func.coalesce(func.sum(CouponUsage.discount_applied_cents), 0),
    ).one()
    top_coupons = (
        db.session.query(Coupon)
        .order_by(Coupon.usage_count.desc(), Coupon.id)
        .limit(top)
        .all()
    )
    return {
        "total_active": counts.get("ACTIVE", 0),
        "total_inactive": counts.get("INACTIVE", 0),
        "total_expired": counts.get("EXPIRED", 0),
        "total_usages": usages,
        "total_discount_cents": int(discount),
        "top_coupons": [coupon.to_dict() for coupon in top_coupons],
    }
