from __future__ import annotations

from ..extensions import db
from tabpos.time_utils import to_utc_z


class Coupon(db.Model):
    """
    Discount coupon redeemable at checkout.

    discount_value is basis points for PERCENTAGE (1000 = 10%) and cents for
    FIXED. code is stored upper-cased and is unique.

    usage_count is incremented only by coupon_service.apply_usage, in the
    same transaction that settles the ticket.
    """
    __tablename__ = "coupons"
    __table_args__ = (
        db.UniqueConstraint("code", name="uq_coupons_code"),
        db.Index("ix_coupons_status", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    code = db.Column(db.String(64), nullable=False)
    description = db.Column(db.String(255), nullable=True)

    coupon_type = db.Column(db.String(16), nullable=False)  # PERCENTAGE, FIXED
    discount_value = db.Column(db.Integer, nullable=False)

    min_purchase_cents = db.Column(db.Integer, nullable=False, default=0)
    max_discount_cents = db.Column(db.Integer, nullable=True)
    usage_limit = db.Column(db.Integer, nullable=True)
    usage_count = db.Column(db.Integer, nullable=False, default=0)

    valid_from = db.Column(db.DateTime(timezone=True), nullable=False)
    valid_to = db.Column(db.DateTime(timezone=True), nullable=True)

    status = db.Column(db.String(16), nullable=False, default="ACTIVE")  # ACTIVE, INACTIVE, EXPIRED

    created_by_user_id = db.Column(db.Integer, nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())
    version_id = db.Column(db.Integer, nullable=False, default=1)

    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "code": self.code,
            "description": self.description,
            "coupon_type": self.coupon_type,
            "discount_value": self.discount_value,
            "min_purchase_cents": self.min_purchase_cents,
            "max_discount_cents": self.max_discount_cents,
            "usage_limit": self.usage_limit,
            "usage_count": self.usage_count,
            "valid_from": to_utc_z(self.valid_from),
            "valid_to": to_utc_z(self.valid_to) if self.valid_to else None,
            "status": self.status,
            "created_by_user_id": self.created_by_user_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class CouponUsage(db.Model):
    """
    One row per coupon redemption.

    IMMUTABLE: Records are never updated or deleted.
    """
    __tablename__ = "coupon_usages"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    coupon_id = db.Column(db.Integer, db.ForeignKey("coupons.id"), nullable=False, index=True)
    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=False, index=True)
    ticket_id = db.Column(db.Integer, db.ForeignKey("tickets.id"), nullable=True, index=True)

    discount_applied_cents = db.Column(db.Integer, nullable=False)
    used_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    coupon = db.relationship("Coupon", backref=db.backref("usages", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "coupon_id": self.coupon_id,
            "customer_id": self.customer_id,
            "ticket_id": self.ticket_id,
            "discount_applied_cents": self.discount_applied_cents,
            "used_at": to_utc_z(self.used_at),
        }
