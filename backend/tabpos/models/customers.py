from __future__ import annotations

from ..extensions import db
from tabpos.time_utils import to_utc_z


class Customer(db.Model):
    """
    Customer master data and denormalized reward balances.

    WHY: loyalty_points and cashback_balance_cents are read on every checkout,
    so they live on the customer row. They are mutated ONLY by the loyalty and
    cashback ledgers, in the same transaction as the ledger row that explains
    the change. Replaying the ledger must reproduce them exactly.

    CONCURRENCY: settlements lock this row (SELECT ... FOR UPDATE) and the
    version_id_col turns any lost update into a StaleDataError (retried).
    """
    __tablename__ = "customers"
    __table_args__ = (
        db.UniqueConstraint("email", name="uq_customers_email"),
        db.Index("ix_customers_active", "is_active"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    name = db.Column(db.String(255), nullable=False)
    document = db.Column(db.String(32), nullable=True)
    email = db.Column(db.String(255), nullable=True)
    phone = db.Column(db.String(32), nullable=True)

    is_active = db.Column(db.Boolean, nullable=False, default=True)

    # Reward balances (ledger-backed)
    loyalty_points = db.Column(db.Integer, nullable=False, default=0)
    cashback_balance_cents = db.Column(db.Integer, nullable=False, default=0)

    # Denormalized aggregates (updated when tickets are settled)
    purchase_count = db.Column(db.Integer, nullable=False, default=0)
    total_purchases_cents = db.Column(db.Integer, nullable=False, default=0)
    total_cashback_earned_cents = db.Column(db.Integer, nullable=False, default=0)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())
    version_id = db.Column(db.Integer, nullable=False, default=1)

    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "document": self.document,
            "email": self.email,
            "phone": self.phone,
            "is_active": self.is_active,
            "loyalty_points": self.loyalty_points,
            "cashback_balance_cents": self.cashback_balance_cents,
            "purchase_count": self.purchase_count,
            "total_purchases_cents": self.total_purchases_cents,
            "total_cashback_earned_cents": self.total_cashback_earned_cents,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
            "version_id": self.version_id,
        }
